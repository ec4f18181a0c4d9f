#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
FastAPI 应用配置设置 - Supabase + Stripe + Replicate
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# 加载环境变量文件
backend_root = Path(__file__).parent.parent.parent
env_path = backend_root / ".env"
load_dotenv(env_path)

# 基本配置
DEBUG = os.getenv("DEBUG", "False").lower() == "true"

# Supabase 配置（数据库和认证）
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
SUPABASE_JWKS_URL = os.getenv("SUPABASE_JWKS_URL")
SUPABASE_JWKS_TTL_SECONDS = int(os.getenv("SUPABASE_JWKS_TTL_SECONDS", "900"))
SUPABASE_JWT_ISSUER = os.getenv("SUPABASE_JWT_ISSUER")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
JWT_VERIFY_ISSUER = os.getenv("JWT_VERIFY_ISSUER", "false").lower() == "true"
JWT_VERIFY_AUDIENCE = os.getenv("JWT_VERIFY_AUDIENCE", "false").lower() == "true"

# Stripe 配置
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))  # 秒

# Replicate 图像生成配置
REPLICATE_API_KEY = os.getenv("REPLICATE_API_KEY")
REPLICATE_API_URL = os.getenv("REPLICATE_API_URL", "https://api.replicate.com/v1")
REPLICATE_MODEL = os.getenv(
    "REPLICATE_MODEL",
    "stability-ai/sdxl:7762fd07cf82c948538e41f63f77d685e02b063e37e496e96eefd46c929f9bdc",
)
REPLICATE_TIMEOUT_SECONDS = float(os.getenv("REPLICATE_TIMEOUT_SECONDS", "120"))
REPLICATE_POLL_INTERVAL_SECONDS = float(os.getenv("REPLICATE_POLL_INTERVAL_SECONDS", "1.0"))
GENERATION_STEPS = int(os.getenv("GENERATION_STEPS", "25"))

# 套餐与配额配置
FREE_TIER_PRICE_REF = os.getenv("FREE_TIER_PRICE_REF", "free_tier")
QUOTA_TIMEZONE = os.getenv("QUOTA_TIMEZONE", "UTC")

# 日志配置
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# 网站配置（用于 Stripe 回跳地址）
SITE_URL = os.getenv("SITE_URL", "http://localhost:5173")

# CORS 配置：生成与结账接口由浏览器直接调用，预检请求一律放行
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# 应用信息
APP_NAME = "ImageGen API"
APP_VERSION = "1.0.0"
APP_DESCRIPTION = "按订阅套餐计量的图像生成服务"


# 配置验证
def validate_config():
    """验证必需的密钥配置，缺失时抛出 ConfigError（启动即失败）"""
    from imagegen_app.utils.errors import ConfigError

    errors = []

    if not settings.SUPABASE_URL:
        errors.append("SUPABASE_URL is required")
    if not settings.SUPABASE_SERVICE_ROLE_KEY:
        errors.append("SUPABASE_SERVICE_ROLE_KEY is required")
    if not settings.STRIPE_SECRET_KEY:
        errors.append("STRIPE_SECRET_KEY is required")
    if not settings.STRIPE_WEBHOOK_SECRET:
        errors.append("STRIPE_WEBHOOK_SECRET is required")
    if not settings.REPLICATE_API_KEY:
        errors.append("REPLICATE_API_KEY is required")
    # 无本地 JWT 密钥时认证回落到 Supabase Auth，需要 anon key
    if not (settings.SUPABASE_JWT_SECRET or settings.SUPABASE_JWKS_URL or settings.SUPABASE_ANON_KEY):
        errors.append("SUPABASE_ANON_KEY is required when neither SUPABASE_JWT_SECRET nor SUPABASE_JWKS_URL is set")

    if errors:
        raise ConfigError(f"Configuration errors: {', '.join(errors)}")


# 配置摘要
def get_config_summary():
    """获取配置摘要（不含密钥）"""
    return {
        "app_name": APP_NAME,
        "app_version": APP_VERSION,
        "debug": settings.DEBUG,
        "database": "Supabase",
        "payments": "Stripe" if settings.STRIPE_SECRET_KEY else "None",
        "generation_model": settings.REPLICATE_MODEL,
        "quota_timezone": settings.QUOTA_TIMEZONE,
    }


# 创建settings对象以便导入
class Settings:
    """配置设置类"""
    def __init__(self):
        # 基本配置
        self.DEBUG = DEBUG
        self.APP_NAME = APP_NAME
        self.APP_VERSION = APP_VERSION
        self.APP_DESCRIPTION = APP_DESCRIPTION
        self.LOG_LEVEL = LOG_LEVEL

        # 数据库与认证配置（Supabase）
        self.SUPABASE_URL = SUPABASE_URL
        self.SUPABASE_ANON_KEY = SUPABASE_ANON_KEY
        self.SUPABASE_SERVICE_ROLE_KEY = SUPABASE_SERVICE_ROLE_KEY
        self.SUPABASE_JWT_SECRET = SUPABASE_JWT_SECRET
        self.SUPABASE_JWKS_URL = SUPABASE_JWKS_URL
        self.SUPABASE_JWKS_TTL_SECONDS = SUPABASE_JWKS_TTL_SECONDS
        self.SUPABASE_JWT_ISSUER = SUPABASE_JWT_ISSUER
        self.SUPABASE_JWT_AUDIENCE = SUPABASE_JWT_AUDIENCE
        self.JWT_VERIFY_ISSUER = JWT_VERIFY_ISSUER
        self.JWT_VERIFY_AUDIENCE = JWT_VERIFY_AUDIENCE

        # 支付配置
        self.STRIPE_SECRET_KEY = STRIPE_SECRET_KEY
        self.STRIPE_WEBHOOK_SECRET = STRIPE_WEBHOOK_SECRET
        self.STRIPE_WEBHOOK_TOLERANCE = STRIPE_WEBHOOK_TOLERANCE

        # 生成服务配置
        self.REPLICATE_API_KEY = REPLICATE_API_KEY
        self.REPLICATE_API_URL = REPLICATE_API_URL
        self.REPLICATE_MODEL = REPLICATE_MODEL
        self.REPLICATE_TIMEOUT_SECONDS = REPLICATE_TIMEOUT_SECONDS
        self.REPLICATE_POLL_INTERVAL_SECONDS = REPLICATE_POLL_INTERVAL_SECONDS
        self.GENERATION_STEPS = GENERATION_STEPS

        # 套餐与配额
        self.FREE_TIER_PRICE_REF = FREE_TIER_PRICE_REF
        self.QUOTA_TIMEZONE = QUOTA_TIMEZONE

        # 站点与 CORS
        self.SITE_URL = SITE_URL
        self.CORS_ORIGINS = CORS_ORIGINS

    def get_config_summary(self):
        """获取配置摘要"""
        return get_config_summary()


# 创建全局settings实例
settings = Settings()
