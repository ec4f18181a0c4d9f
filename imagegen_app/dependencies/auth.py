"""
认证依赖：每个请求独立从 Bearer 令牌解析用户，不做进程级缓存

- 配置了 JWKS / JWT 密钥时本地校验（Authlib）
- 否则调用 Supabase Auth 的 get_user 接口
"""

from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from imagegen_app.config.supabase_config import get_supabase_client
from imagegen_app.models.auth import UserInfo
from imagegen_app.security.jwt import has_local_key_material, verify_jwt_and_get_claims
from imagegen_app.utils.errors import Unauthorized

optional_security = HTTPBearer(auto_error=False)


async def _user_from_supabase_auth(token: str) -> UserInfo:
    client = get_supabase_client(use_service_key=False)
    if client is None:
        raise Unauthorized("Authentication service is not configured")
    try:
        response = await run_in_threadpool(client.auth.get_user, token)
    except Exception as e:
        logger.info(f"Supabase Auth 拒绝了令牌: {e}")
        raise Unauthorized() from e
    user = getattr(response, "user", None)
    if user is None or not getattr(user, "id", None):
        raise Unauthorized()
    return UserInfo(id=str(user.id), email=getattr(user, "email", None))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
) -> UserInfo:
    if credentials is None:
        raise Unauthorized("Missing authentication token")
    token = (credentials.credentials or "").strip()
    # 基本校验，避免空值/占位符进入解码
    if not token or token.lower() in {"null", "undefined", "none"}:
        raise Unauthorized()

    if not has_local_key_material():
        return await _user_from_supabase_auth(token)

    claims = await verify_jwt_and_get_claims(token)
    if not claims:
        raise Unauthorized()
    user_id = claims.get("sub") or claims.get("user_id")
    if not user_id:
        raise Unauthorized("Token has no subject")
    return UserInfo(id=str(user_id), email=claims.get("email"))
