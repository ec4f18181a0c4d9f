#!/usr/bin/env python3
"""
JWT 校验实用工具（Authlib + JWKS + HS256 兼容）

- 优先使用 JWKS（RS256 / ES256 等非对称算法，支持密钥轮换）
- 回退 HS256（Supabase 项目的共享 JWT 密钥）
- 可选校验 iss/aud，默认关闭 aud 校验以提升兼容性
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from authlib.jose import JoseError, JsonWebKey, JsonWebToken
from loguru import logger

from imagegen_app.config import settings

_jwt = JsonWebToken(["RS256", "ES256", "HS256"])
_jwks_keyset = None
_jwks_cached_at = 0.0


def has_local_key_material() -> bool:
    return bool(settings.SUPABASE_JWKS_URL or settings.SUPABASE_JWT_SECRET)


async def _get_jwks_keyset():
    """获取并缓存 JWKS 公钥集。失败返回 None。"""
    global _jwks_keyset, _jwks_cached_at
    jwks_url = settings.SUPABASE_JWKS_URL
    if not jwks_url:
        return None

    now = time.time()
    if _jwks_keyset is not None and (now - _jwks_cached_at) < settings.SUPABASE_JWKS_TTL_SECONDS:
        return _jwks_keyset

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(jwks_url)
            resp.raise_for_status()
            jwks_data = resp.json()
        _jwks_keyset = JsonWebKey.import_key_set(jwks_data)
        _jwks_cached_at = now
        logger.debug("JWKS 公钥集已刷新并缓存")
        return _jwks_keyset
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"获取 JWKS 失败: {e}")
        return None


def _claims_options() -> dict[str, Any]:
    """根据配置生成 iss/aud 校验选项。未启用的校验不加入。"""
    options: dict[str, Any] = {}
    if settings.JWT_VERIFY_ISSUER and settings.SUPABASE_JWT_ISSUER:
        options["iss"] = {"essential": True, "value": settings.SUPABASE_JWT_ISSUER}
    if settings.JWT_VERIFY_AUDIENCE and settings.SUPABASE_JWT_AUDIENCE:
        options["aud"] = {"essential": True, "value": settings.SUPABASE_JWT_AUDIENCE}
    return options


def _decode(token: str, key) -> dict[str, Any]:
    claims = _jwt.decode(token, key, claims_options=_claims_options())
    claims.validate()  # exp / nbf / iat 以及按需开启的 iss / aud
    return dict(claims)


async def verify_jwt_and_get_claims(token: str) -> dict[str, Any] | None:
    """验证 JWT 并返回 claims 字典。

    按顺序尝试：
    1) JWKS（若配置了 SUPABASE_JWKS_URL）
    2) HS256 + 共享密钥（若配置了 SUPABASE_JWT_SECRET）
    任一成功即返回 claims；全部失败返回 None。
    """
    keyset = await _get_jwks_keyset()
    if keyset is not None:
        try:
            return _decode(token, keyset)
        except (JoseError, ValueError) as e:
            logger.debug(f"JWKS 校验失败: {e}")

    secret = settings.SUPABASE_JWT_SECRET
    if secret:
        try:
            key = JsonWebKey.import_key(secret, {"kty": "oct"})
            return _decode(token, key)
        except (JoseError, ValueError) as e:
            logger.debug(f"HS256 校验失败: {e}")

    return None
