"""
Stripe Webhook 事件模型

只解析对账用到的字段，其余字段忽略。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_EVENTS = {SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED}


class EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    object: dict[str, Any]


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int
    data: EventData

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created, tz=timezone.utc)


class StripeSubscription(BaseModel):
    """customer.subscription.* 事件中的订阅对象"""

    model_config = ConfigDict(extra="ignore")

    id: str
    customer: str
    status: str
    current_period_end: int | None = None
    cancel_at_period_end: bool = False
    items: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, value: Any) -> Any:
        # 展开后的 customer 是对象
        if isinstance(value, dict):
            return value.get("id")
        return value

    def period_end(self) -> datetime | None:
        """当前周期结束时间；新版 API 把它挪到了订阅项上"""
        end = self.current_period_end
        if end is None:
            item_ends = [
                item.get("current_period_end")
                for item in (self.items.get("data") or [])
                if isinstance(item, dict) and item.get("current_period_end")
            ]
            end = max(item_ends) if item_ends else None
        return datetime.fromtimestamp(end, tz=timezone.utc) if end is not None else None


class WebhookResult(BaseModel):
    event_id: str
    event_type: str
    handled: bool = False
    applied: bool = False
    reason: str | None = None
