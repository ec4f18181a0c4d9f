"""
FastAPI服务层模块
"""

from .supabase_service import SupabaseService, get_supabase_service
from .tier_catalog import TierCatalog, get_tier_catalog
from .usage_service import UsageService, get_usage_service
from .entitlement_service import EntitlementService, get_entitlement_service
from .replicate_service import ReplicateService, get_replicate_service
from .admission_service import AdmissionResult, AdmissionService, get_admission_service
from .stripe_service import StripeService, get_stripe_service
from .checkout_service import CheckoutService, get_checkout_service
from .webhook_service import WebhookService, get_webhook_service

__all__ = [
    'SupabaseService', 'get_supabase_service',
    'TierCatalog', 'get_tier_catalog',
    'UsageService', 'get_usage_service',
    'EntitlementService', 'get_entitlement_service',
    'ReplicateService', 'get_replicate_service',
    'AdmissionResult', 'AdmissionService', 'get_admission_service',
    'StripeService', 'get_stripe_service',
    'CheckoutService', 'get_checkout_service',
    'WebhookService', 'get_webhook_service',
]
