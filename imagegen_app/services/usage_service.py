#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
用量统计服务

配额周期为自然月，起点是参考时区下当月第一刻；
用量即 created_at 落在本周期内的生成记录条数（快照读，不加锁）。
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from loguru import logger

from imagegen_app.config import settings
from imagegen_app.models.subscription import GenerationRecord
from imagegen_app.services.supabase_service import SupabaseService, get_supabase_service


class UsageService:
    """生成用量统计与记录"""

    def __init__(self, db: SupabaseService, tz_name: str | None = None):
        self.db = db
        self.tz = ZoneInfo(tz_name or settings.QUOTA_TIMEZONE)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def current_period_start(self, now: Optional[datetime] = None) -> datetime:
        """当前配额周期的起点（参考时区当月 1 日 00:00）"""
        local = (now or self._now()).astimezone(self.tz)
        return local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def next_period_start(self, now: Optional[datetime] = None) -> datetime:
        """下一个配额周期的起点，即本周期配额重置时间"""
        start = self.current_period_start(now)
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)

    async def count_usage(self, user_id: str, period_start: datetime) -> int:
        return await self.db.count_generations_since(user_id, period_start)

    async def record_generation(
        self, user_id: str, prompt: str, created_at: Optional[datetime] = None
    ) -> GenerationRecord:
        record = GenerationRecord(user_id=user_id, prompt=prompt, created_at=created_at or self._now())
        await self.db.insert_generation_row(record.model_dump(mode="json"))
        logger.debug(f"记录生成: user={user_id}")
        return record


_usage_service: Optional[UsageService] = None


async def get_usage_service() -> UsageService:
    global _usage_service
    if _usage_service is None:
        _usage_service = UsageService(await get_supabase_service())
    return _usage_service
