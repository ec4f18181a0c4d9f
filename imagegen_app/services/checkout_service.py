#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
结账会话服务

把用户选择的套餐映射为 Stripe 托管结账页面：
- 免费套餐不允许结账
- 按邮箱复用 Stripe 客户，不存在则创建并写入 user_id
- 会话 metadata 写入 {user_id, tier_id}，这是 Webhook 对账时得知套餐的唯一渠道
本服务不写本地数据库。
"""

from typing import Optional

from loguru import logger

from imagegen_app.config import settings
from imagegen_app.models.auth import UserInfo
from imagegen_app.models.subscription import BillingIdentity
from imagegen_app.services.stripe_service import StripeService, get_stripe_service
from imagegen_app.services.tier_catalog import TierCatalog, get_tier_catalog
from imagegen_app.utils.errors import DataIntegrityError, InvalidInput, InvalidTier, UpstreamUnavailable


class CheckoutService:
    def __init__(self, catalog: TierCatalog, payments: StripeService):
        self.catalog = catalog
        self.payments = payments

    async def get_or_create_billing_identity(self, user: UserInfo) -> BillingIdentity:
        if not user.email:
            raise InvalidInput("An email address is required to start checkout")

        customer = await self.payments.find_customer_by_email(user.email)
        if customer is None:
            customer = await self.payments.create_customer(user.email, user.id)
        else:
            logger.debug(f"复用 Stripe 客户: {customer.get('id')}")

        metadata = customer.get("metadata") or {}
        linked_user = metadata.get("user_id") or metadata.get("supabaseUid")
        if not linked_user:
            # 历史客户没有关联信息时补打标签，否则对账时会报 UnknownCustomer
            customer = await self.payments.tag_customer(customer["id"], user.id)
            linked_user = user.id
        elif linked_user != user.id:
            # 客户与当前用户不一致时，Webhook 对账必然失败
            logger.error(f"Stripe 客户 {customer.get('id')} 已关联其他用户 {linked_user}，当前用户 {user.id}")
            raise DataIntegrityError(
                "Billing customer for this email belongs to another account",
                details={"customer_id": customer.get("id")},
            )

        return BillingIdentity(customer_id=customer["id"], email=user.email, user_id=linked_user)

    async def create_checkout_session(self, user: UserInfo, tier_id: str, origin: Optional[str] = None) -> dict:
        tier = await self.catalog.get_tier_by_id(tier_id)
        if self.catalog.is_free_tier(tier):
            raise InvalidTier()

        identity = await self.get_or_create_billing_identity(user)

        base_url = (origin or settings.SITE_URL).rstrip("/")
        session = await self.payments.create_checkout_session(
            customer_id=identity.customer_id,
            price_id=tier.price_id,
            success_url=f"{base_url}/",
            cancel_url=f"{base_url}/pricing",
            metadata={"user_id": user.id, "tier_id": tier.id},
        )
        url = session.get("url")
        if not url:
            raise UpstreamUnavailable("Payment service returned no checkout URL")

        logger.info(f"结账会话已创建: {session.get('id')} user={user.id} tier={tier.name}")
        return {"url": url}


_checkout_service: Optional[CheckoutService] = None


async def get_checkout_service() -> CheckoutService:
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService(await get_tier_catalog(), get_stripe_service())
    return _checkout_service
