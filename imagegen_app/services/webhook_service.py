#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Stripe Webhook 对账服务

处理 customer.subscription.created / updated / deleted：
1. 校验签名（失败不改任何状态）
2. Stripe 客户 -> 内部用户（客户 metadata.user_id）
3. 订阅 -> 发起它的结账会话 -> metadata.tier_id
4. 按 user_id upsert user_subscriptions

写入的每个字段都来自事件本身（不写 updated_at 之类的当前时间），
同一事件重放得到完全相同的行。事件乱序时按事件时间戳“后到者胜”，
比已存储事件更旧的事件直接跳过。
"""
from __future__ import annotations

import json
from typing import Any, Optional

from loguru import logger
from pydantic import ValidationError

from imagegen_app.models.subscription import CheckoutIntent, SubscriptionStatus, UserSubscription
from imagegen_app.models.webhook import (
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_EVENTS,
    StripeSubscription,
    WebhookEvent,
    WebhookResult,
)
from imagegen_app.services.supabase_service import SupabaseService, get_supabase_service
from imagegen_app.services.stripe_service import StripeService, get_stripe_service
from imagegen_app.services.tier_catalog import TierCatalog, get_tier_catalog
from imagegen_app.utils.errors import DataIntegrityError, InvalidEvent, MissingTierContext, UnknownCustomer

# Stripe 订阅状态 -> 本地状态
STATUS_MAP = {
    "active": SubscriptionStatus.active,
    "trialing": SubscriptionStatus.active,
    "past_due": SubscriptionStatus.past_due,
    "unpaid": SubscriptionStatus.past_due,
    "paused": SubscriptionStatus.past_due,
    "canceled": SubscriptionStatus.canceled,
    "incomplete": SubscriptionStatus.incomplete,
    "incomplete_expired": SubscriptionStatus.canceled,
}


def _metadata_value(metadata: dict[str, Any], *keys: str) -> Optional[str]:
    # 早期版本写入的是 supabaseUid / tierId
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


class WebhookService:
    def __init__(self, db: SupabaseService, catalog: TierCatalog, payments: StripeService):
        self.db = db
        self.catalog = catalog
        self.payments = payments

    # -------- 解析 --------
    def parse_event(self, payload: bytes | str, signature: Optional[str]) -> WebhookEvent:
        body = self.payments.verify_signature(payload, signature)
        try:
            return WebhookEvent.model_validate(json.loads(body))
        except (ValueError, ValidationError) as e:
            raise InvalidEvent() from e

    @staticmethod
    def normalize_status(event_type: str, stripe_status: str) -> SubscriptionStatus:
        if event_type == SUBSCRIPTION_DELETED:
            return SubscriptionStatus.canceled
        status = STATUS_MAP.get(stripe_status)
        if status is None:
            raise InvalidEvent(f"Unknown subscription status: {stripe_status}")
        return status

    # -------- 身份与套餐映射 --------
    async def resolve_user_id(self, customer_id: str) -> str:
        customer = await self.payments.retrieve_customer(customer_id)
        user_id = _metadata_value(customer.get("metadata") or {}, "user_id", "supabaseUid")
        if not user_id:
            logger.error(f"Stripe 客户缺少 user_id 关联: {customer_id}")
            raise UnknownCustomer(details={"customer_id": customer_id})
        return user_id

    async def resolve_checkout_intent(self, subscription_id: str) -> CheckoutIntent:
        session = await self.payments.find_checkout_session_for_subscription(subscription_id)
        if session is None:
            logger.error(f"订阅没有对应的结账会话: {subscription_id}")
            raise MissingTierContext(details={"subscription_id": subscription_id})

        metadata = session.get("metadata") or {}
        try:
            return CheckoutIntent(
                checkout_session_id=session.get("id") or "",
                user_id=_metadata_value(metadata, "user_id", "supabaseUid") or "",
                tier_id=_metadata_value(metadata, "tier_id", "tierId") or "",
            )
        except ValidationError as e:
            logger.error(f"结账会话缺少套餐信息: session={session.get('id')} subscription={subscription_id}")
            raise MissingTierContext(
                "Checkout session metadata is missing tier context",
                details={"subscription_id": subscription_id, "checkout_session_id": session.get("id")},
            ) from e

    # -------- 对账 --------
    async def handle_webhook(self, payload: bytes | str, signature: Optional[str]) -> WebhookResult:
        event = self.parse_event(payload, signature)
        logger.info(f"收到 Webhook 事件: {event.type} ({event.id})")

        if event.type not in SUBSCRIPTION_EVENTS:
            logger.info(f"忽略未处理的事件类型: {event.type}")
            return WebhookResult(event_id=event.id, event_type=event.type, reason="unhandled event type")

        try:
            subscription = StripeSubscription.model_validate(event.data.object)
        except ValidationError as e:
            raise InvalidEvent("Malformed subscription object") from e

        return await self.reconcile(event, subscription)

    async def reconcile(self, event: WebhookEvent, subscription: StripeSubscription) -> WebhookResult:
        status = self.normalize_status(event.type, subscription.status)
        user_id = await self.resolve_user_id(subscription.customer)
        intent = await self.resolve_checkout_intent(subscription.id)

        if intent.user_id != user_id:
            raise DataIntegrityError(
                "Checkout session and billing customer belong to different users",
                details={"subscription_id": subscription.id, "customer_user": user_id, "checkout_user": intent.user_id},
            )
        tier = await self.catalog.find_tier(intent.tier_id)
        if tier is None:
            raise DataIntegrityError(
                "Checkout session references an unknown tier",
                details={"subscription_id": subscription.id, "tier_id": intent.tier_id},
            )

        new_state = UserSubscription(
            user_id=user_id,
            tier_id=tier.id,
            subscription_id=subscription.id,
            status=status,
            current_period_end=subscription.period_end(),
            cancel_at_period_end=subscription.cancel_at_period_end,
            last_event_at=event.created_at,
        )

        skip_reason = await self._stale_reason(new_state)
        if skip_reason:
            logger.info(f"跳过事件 {event.id}: {skip_reason}")
            return WebhookResult(event_id=event.id, event_type=event.type, handled=True, reason=skip_reason)

        await self.db.upsert_subscription_row(new_state.to_row())
        logger.info(f"订阅已同步: user={user_id} tier={tier.name} status={status.value}")
        return WebhookResult(event_id=event.id, event_type=event.type, handled=True, applied=True)

    async def _stale_reason(self, new_state: UserSubscription) -> Optional[str]:
        row = await self.db.get_subscription_row(new_state.user_id)
        if row is None:
            return None
        try:
            current = UserSubscription.model_validate(row)
        except ValidationError:
            logger.warning(f"已存储订阅数据无效，将被覆盖: user={new_state.user_id}")
            return None

        if current.subscription_id == new_state.subscription_id:
            if current.last_event_at and new_state.last_event_at and new_state.last_event_at < current.last_event_at:
                return "stale event"
            return None

        # 每个用户只保留一个订阅：旧订阅的非 active 事件不能覆盖新的 active 订阅
        if current.status == SubscriptionStatus.active and new_state.status != SubscriptionStatus.active:
            return "superseded subscription"
        return None


_webhook_service: Optional[WebhookService] = None


async def get_webhook_service() -> WebhookService:
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService(
            await get_supabase_service(),
            await get_tier_catalog(),
            get_stripe_service(),
        )
    return _webhook_service
