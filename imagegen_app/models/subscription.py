"""
套餐、订阅与用量的 Pydantic 模型
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNBOUNDED = "unbounded"


class SubscriptionStatus(str, Enum):
    active = "active"
    past_due = "past_due"
    canceled = "canceled"
    incomplete = "incomplete"


class TierFeatures(BaseModel):
    """套餐功能；images_per_month 为 None 表示不限量"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    images_per_month: int | None = Field(default=None, ge=0)
    resolution: str = "standard"
    priority_support: bool = False
    custom_models: bool = False


class Tier(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str
    price_id: str
    features: TierFeatures
    price_cents: int | None = None
    sort_order: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("features", mode="before")
    @classmethod
    def _parse_features(cls, value: Any) -> Any:
        # 表里的 features 列可能是 JSON 字符串，也可能是 jsonb 对象
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def is_unbounded(self) -> bool:
        return self.features.images_per_month is None


class UserSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    tier_id: str
    subscription_id: str
    status: SubscriptionStatus
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    last_event_at: datetime | None = None

    @field_validator("tier_id", mode="before")
    @classmethod
    def _coerce_tier_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    def to_row(self) -> dict[str, Any]:
        """写入 user_subscriptions 的行数据（只包含事件派生字段）"""
        return self.model_dump(mode="json")


class GenerationRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    prompt: str
    created_at: datetime


class CheckoutIntent(BaseModel):
    """Stripe checkout session metadata 中携带的 {user_id, tier_id}"""

    checkout_session_id: str
    user_id: str = Field(min_length=1)
    tier_id: str = Field(min_length=1)


class BillingIdentity(BaseModel):
    """Stripe customer 与内部用户的映射"""

    customer_id: str
    email: str | None = None
    user_id: str = Field(min_length=1)


class Entitlement(BaseModel):
    tier: Tier
    period_start: datetime
    period_end: datetime | None = None
    used_this_period: int
    remaining: int | Literal["unbounded"]
    subscription_status: SubscriptionStatus | None = None

    @property
    def is_unbounded(self) -> bool:
        return self.remaining == UNBOUNDED

    @property
    def exhausted(self) -> bool:
        return not self.is_unbounded and self.remaining <= 0
