#!/usr/bin/env python3
"""
Stripe 服务

封装客户查找/创建、结账会话创建与查询、Webhook 签名校验。
stripe SDK 为同步调用，统一放到线程池执行。
"""

from __future__ import annotations

from typing import Any, Optional

import stripe
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from imagegen_app.config import settings
from imagegen_app.utils.errors import InvalidSignature, UpstreamUnavailable


def to_plain_dict(obj: Any) -> dict[str, Any]:
    """StripeObject / dict -> 普通 dict"""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


class StripeService:
    """Stripe 支付服务"""

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None, tolerance: int | None = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance or settings.STRIPE_WEBHOOK_TOLERANCE
        stripe.api_key = self.api_key
        logger.info("Stripe 服务初始化完成")

    async def _call(self, description: str, fn, *args, **kwargs):
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {description}失败: {e}")
            raise UpstreamUnavailable("Payment service temporarily unavailable, please retry") from e

    # -------- Customers --------
    async def find_customer_by_email(self, email: str) -> Optional[dict[str, Any]]:
        result = await self._call("查询客户", stripe.Customer.list, email=email, limit=1)
        customers = list(result.data)
        return to_plain_dict(customers[0]) if customers else None

    async def create_customer(self, email: str, user_id: str) -> dict[str, Any]:
        customer = await self._call(
            "创建客户", stripe.Customer.create, email=email, metadata={"user_id": user_id}
        )
        logger.info(f"已创建 Stripe 客户: {customer.id} (user={user_id})")
        return to_plain_dict(customer)

    async def tag_customer(self, customer_id: str, user_id: str) -> dict[str, Any]:
        customer = await self._call(
            "更新客户", stripe.Customer.modify, customer_id, metadata={"user_id": user_id}
        )
        logger.info(f"已为 Stripe 客户 {customer_id} 补充 user_id={user_id}")
        return to_plain_dict(customer)

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        customer = await self._call("获取客户", stripe.Customer.retrieve, customer_id)
        return to_plain_dict(customer)

    # -------- Checkout --------
    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> dict[str, Any]:
        session = await self._call(
            "创建结账会话",
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            mode="subscription",
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return to_plain_dict(session)

    async def find_checkout_session_for_subscription(self, subscription_id: str) -> Optional[dict[str, Any]]:
        result = await self._call(
            "查询结账会话", stripe.checkout.Session.list, subscription=subscription_id, limit=1
        )
        sessions = list(result.data)
        return to_plain_dict(sessions[0]) if sessions else None

    # -------- Webhooks --------
    def verify_signature(self, payload: bytes | str, signature: str | None) -> str:
        """校验 Stripe-Signature，返回解码后的原始请求体"""
        if not signature:
            raise InvalidSignature("No signature")
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidSignature() from e
        try:
            stripe.WebhookSignature.verify_header(payload, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook 签名校验失败: {e}")
            raise InvalidSignature() from e
        return payload


_stripe_service: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    global _stripe_service
    if _stripe_service is None:
        _stripe_service = StripeService()
    return _stripe_service
