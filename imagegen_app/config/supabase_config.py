"""
Supabase 客户端工厂
"""

from functools import lru_cache

from loguru import logger
from supabase import Client, create_client

from imagegen_app.config import settings


@lru_cache(maxsize=2)
def get_supabase_client(use_service_key: bool = False) -> Client | None:
    """创建（并缓存）Supabase 客户端。

    use_service_key=True 时使用 service role key 绕过 RLS，
    服务端读写订阅与用量表都需要这个权限。
    """
    key = settings.SUPABASE_SERVICE_ROLE_KEY if use_service_key else settings.SUPABASE_ANON_KEY
    if not settings.SUPABASE_URL or not key:
        logger.error("Supabase 配置缺失，无法创建客户端")
        return None
    return create_client(settings.SUPABASE_URL, key)
