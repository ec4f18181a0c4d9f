"""
FastAPI数据模型
"""

from .api import CheckoutRequest, CheckoutResponse, GenerateRequest, GenerateResponse, WebhookResponse
from .auth import UserInfo
from .subscription import (
    UNBOUNDED,
    BillingIdentity,
    CheckoutIntent,
    Entitlement,
    GenerationRecord,
    SubscriptionStatus,
    Tier,
    TierFeatures,
    UserSubscription,
)
from .webhook import StripeSubscription, WebhookEvent, WebhookResult

__all__ = [
    'UserInfo',
    'GenerateRequest',
    'GenerateResponse',
    'CheckoutRequest',
    'CheckoutResponse',
    'WebhookResponse',
    'UNBOUNDED',
    'BillingIdentity',
    'CheckoutIntent',
    'Entitlement',
    'GenerationRecord',
    'SubscriptionStatus',
    'Tier',
    'TierFeatures',
    'UserSubscription',
    'StripeSubscription',
    'WebhookEvent',
    'WebhookResult',
]
