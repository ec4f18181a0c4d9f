#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
权益解析服务

职责：
- 根据用户订阅确定当前套餐（无订阅或订阅非 active 时回落到免费套餐）
- 结合本月用量计算剩余配额
"""
from __future__ import annotations

from typing import Optional

from loguru import logger
from pydantic import ValidationError

from imagegen_app.models.subscription import UNBOUNDED, Entitlement, SubscriptionStatus, UserSubscription
from imagegen_app.services.supabase_service import SupabaseService, get_supabase_service
from imagegen_app.services.tier_catalog import TierCatalog, get_tier_catalog
from imagegen_app.services.usage_service import UsageService, get_usage_service
from imagegen_app.utils.errors import DataIntegrityError


class EntitlementService:
    def __init__(self, db: SupabaseService, catalog: TierCatalog, usage: UsageService):
        self.db = db
        self.catalog = catalog
        self.usage = usage

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        row = await self.db.get_subscription_row(user_id)
        if row is None:
            return None
        try:
            return UserSubscription.model_validate(row)
        except ValidationError as e:
            raise DataIntegrityError("Stored subscription is invalid", details={"user_id": user_id}) from e

    async def resolve(self, user_id: str) -> Entitlement:
        subscription = await self.get_subscription(user_id)
        free_tier = await self.catalog.get_free_tier()

        tier = free_tier
        period_end = None
        status = None
        if subscription is not None:
            subscribed_tier = await self.catalog.find_tier(subscription.tier_id)
            if subscribed_tier is None:
                logger.error(f"订阅引用了不存在的套餐: user={user_id} tier_id={subscription.tier_id}")
                raise DataIntegrityError(
                    "Subscription references an unknown tier",
                    details={"user_id": user_id, "tier_id": subscription.tier_id},
                )
            status = subscription.status
            period_end = subscription.current_period_end
            # 只有 active 订阅享受付费套餐，其余状态按免费套餐计
            if status == SubscriptionStatus.active:
                tier = subscribed_tier

        period_start = self.usage.current_period_start()
        used = await self.usage.count_usage(user_id, period_start)

        limit = tier.features.images_per_month
        remaining = UNBOUNDED if limit is None else max(0, limit - used)

        return Entitlement(
            tier=tier,
            period_start=period_start,
            period_end=period_end,
            used_this_period=used,
            remaining=remaining,
            subscription_status=status,
        )


_entitlement_service: Optional[EntitlementService] = None


async def get_entitlement_service() -> EntitlementService:
    global _entitlement_service
    if _entitlement_service is None:
        _entitlement_service = EntitlementService(
            await get_supabase_service(),
            await get_tier_catalog(),
            await get_usage_service(),
        )
    return _entitlement_service
