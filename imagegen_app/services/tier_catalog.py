#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
套餐目录服务

套餐表变化很少，进程内加载一次并校验 features 结构，之后只读。
免费套餐通过 price_id == FREE_TIER_PRICE_REF 标识，部署时必须存在。
"""
from __future__ import annotations

from typing import Optional

from loguru import logger
from pydantic import ValidationError

from imagegen_app.config import settings
from imagegen_app.models.subscription import Tier
from imagegen_app.services.supabase_service import SupabaseService, get_supabase_service
from imagegen_app.utils.errors import ConfigError, TierNotFound


class TierCatalog:
    def __init__(self, db: SupabaseService, free_price_ref: str | None = None):
        self.db = db
        self.free_price_ref = free_price_ref or settings.FREE_TIER_PRICE_REF
        self._tiers: tuple[Tier, ...] | None = None

    async def refresh(self) -> tuple[Tier, ...]:
        rows = await self.db.list_tier_rows()
        tiers = []
        for row in rows:
            try:
                tiers.append(Tier.model_validate(row))
            except (ValidationError, ValueError) as e:
                raise ConfigError(f"Invalid tier row: id={row.get('id')}: {e}") from e

        tiers.sort(key=lambda t: (t.sort_order, t.price_cents or 0, t.name))
        self._tiers = tuple(tiers)
        logger.info(f"套餐目录已加载: {[t.name for t in self._tiers]}")
        return self._tiers

    async def _ensure_loaded(self) -> tuple[Tier, ...]:
        if self._tiers is None:
            return await self.refresh()
        return self._tiers

    # -------- 查询 --------
    async def list_tiers(self) -> list[Tier]:
        return list(await self._ensure_loaded())

    async def find_tier(self, tier_id: str) -> Optional[Tier]:
        tier_id = str(tier_id)
        for tier in await self._ensure_loaded():
            if tier.id == tier_id:
                return tier
        return None

    async def get_tier_by_id(self, tier_id: str) -> Tier:
        tier = await self.find_tier(tier_id)
        if tier is None:
            raise TierNotFound(details={"tier_id": str(tier_id)})
        return tier

    async def get_tier_by_price_ref(self, price_ref: str) -> Tier:
        for tier in await self._ensure_loaded():
            if tier.price_id == price_ref:
                return tier
        raise TierNotFound(details={"price_id": price_ref})

    async def get_free_tier(self) -> Tier:
        for tier in await self._ensure_loaded():
            if tier.price_id == self.free_price_ref:
                return tier
        raise ConfigError(f"No free tier configured (price_id={self.free_price_ref})")

    def is_free_tier(self, tier: Tier) -> bool:
        return tier.price_id == self.free_price_ref


_tier_catalog: Optional[TierCatalog] = None


async def get_tier_catalog() -> TierCatalog:
    global _tier_catalog
    if _tier_catalog is None:
        _tier_catalog = TierCatalog(await get_supabase_service())
    return _tier_catalog
