#!/usr/bin/env python3
"""
Supabase 数据库服务
套餐、订阅与生成记录三张表的读写入口
"""

from datetime import datetime
from typing import Any

from fastapi.concurrency import run_in_threadpool
from loguru import logger

from imagegen_app.config.supabase_config import get_supabase_client
from imagegen_app.utils.errors import UpstreamUnavailable

TIERS_TABLE = "subscription_tiers"
SUBSCRIPTIONS_TABLE = "user_subscriptions"
GENERATIONS_TABLE = "image_generations"


class SupabaseService:
    """Supabase 数据库服务"""

    def __init__(self, client=None):
        """初始化 Supabase 服务"""
        # 使用 service role key 以绕过 RLS 策略
        self.client = client if client is not None else get_supabase_client(use_service_key=True)
        logger.info("SupabaseService 初始化完成（使用 service role key）")

    async def _execute(self, query, description: str):
        """在线程池中执行 PostgREST 查询；失败统一转换为 UpstreamUnavailable"""
        try:
            return await run_in_threadpool(query.execute)
        except Exception as e:
            logger.error(f"{description}失败: {e}")
            raise UpstreamUnavailable("Database temporarily unavailable") from e

    # ==================== 通用辅助方法 ====================

    async def _get_record_by_field(self, table_name: str, field_name: str, field_value: Any) -> dict[str, Any] | None:
        """通用方法：根据单个字段获取记录"""
        query = self.client.table(table_name).select("*").eq(field_name, field_value).limit(1)
        result = await self._execute(query, f"从表 {table_name} 获取记录")
        return result.data[0] if result.data else None

    # ==================== 套餐 ====================

    async def list_tier_rows(self) -> list[dict[str, Any]]:
        """获取全部套餐行"""
        query = self.client.table(TIERS_TABLE).select("*")
        result = await self._execute(query, "获取套餐")
        return result.data or []

    # ==================== 订阅 ====================

    async def get_subscription_row(self, user_id: str) -> dict[str, Any] | None:
        """获取用户订阅（每个用户至多一行）"""
        return await self._get_record_by_field(SUBSCRIPTIONS_TABLE, "user_id", user_id)

    async def upsert_subscription_row(self, data: dict[str, Any]) -> dict[str, Any] | None:
        """按 user_id 冲突键写入订阅"""
        query = self.client.table(SUBSCRIPTIONS_TABLE).upsert(data, on_conflict="user_id")
        result = await self._execute(query, "写入用户订阅")
        logger.info(f"用户订阅已写入: user={data.get('user_id')} status={data.get('status')}")
        return result.data[0] if result.data else None

    # ==================== 生成记录 ====================

    async def count_generations_since(self, user_id: str, since: datetime) -> int:
        """统计 created_at >= since 的生成次数"""
        query = (
            self.client.table(GENERATIONS_TABLE)
            .select("id", count="exact")
            .eq("user_id", user_id)
            .gte("created_at", since.isoformat())
        )
        result = await self._execute(query, "统计生成次数")
        return int(result.count or 0)

    async def insert_generation_row(self, data: dict[str, Any]) -> dict[str, Any] | None:
        """追加一条生成记录"""
        query = self.client.table(GENERATIONS_TABLE).insert(data)
        result = await self._execute(query, "写入生成记录")
        return result.data[0] if result.data else None

    # ==================== 健康检查 ====================

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            await self._execute(self.client.table(TIERS_TABLE).select("id").limit(1), "健康检查")
            return True
        except UpstreamUnavailable:
            return False


# 全局服务实例
_supabase_service = None


async def get_supabase_service() -> SupabaseService:
    """获取 Supabase 服务实例"""
    global _supabase_service
    if _supabase_service is None:
        _supabase_service = SupabaseService()
    return _supabase_service
