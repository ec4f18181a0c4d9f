#!/usr/bin/env python3
"""
FastAPI应用启动脚本
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from loguru import logger

# 导入配置
from imagegen_app.config import settings, validate_config
from imagegen_app.utils.errors import register_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    from imagegen_app.config.logging_config import setup_logging

    setup_logging(level=settings.LOG_LEVEL)
    logger.info("🚀 ImageGen API 启动中...")

    # 缺少必需密钥或免费套餐时直接启动失败
    validate_config()

    from imagegen_app.services.supabase_service import get_supabase_service
    from imagegen_app.services.tier_catalog import get_tier_catalog

    supabase_service = await get_supabase_service()
    if await supabase_service.health_check():
        logger.info("✅ Supabase 数据库连接正常")
    else:
        logger.warning("⚠️ Supabase 数据库连接异常")

    catalog = await get_tier_catalog()
    await catalog.refresh()
    free_tier = await catalog.get_free_tier()
    logger.info(f"✅ 套餐目录加载完成，免费套餐: {free_tier.name}")

    logger.info(f"✅ ImageGen API 启动完成: {settings.get_config_summary()}")

    yield

    logger.info("👋 ImageGen API 已停止")


def create_fastapi_app() -> FastAPI:
    """创建FastAPI应用"""

    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        debug=settings.DEBUG,
    )

    # CORS：预检请求无条件放行
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # 注册路由
    from imagegen_app.routers import checkout, generation, subscription, webhook

    app.include_router(generation.router, prefix="/api", tags=["生成"])
    app.include_router(checkout.router, prefix="/api", tags=["结账"])
    app.include_router(webhook.router, prefix="/api", tags=["Webhook"])
    app.include_router(subscription.router, prefix="/api/subscription", tags=["订阅"])

    # 根路径
    @app.get("/")
    async def root():
        return {
            "message": f"{settings.APP_NAME} - {'调试' if settings.DEBUG else '生产'}模式",
            "version": settings.APP_VERSION,
            "docs": "/docs",
        }

    # 健康检查
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "framework": "FastAPI"}

    # 不带 CORS 请求头的 OPTIONS 也直接返回 ok
    @app.options("/{path:path}", include_in_schema=False)
    async def options_ok(path: str):
        return PlainTextResponse("ok")

    return app


# 创建应用实例
app = create_fastapi_app()


if __name__ == "__main__":
    import uvicorn

    host = os.environ.get('SERVER_HOST', '0.0.0.0')
    port = int(os.environ.get('SERVER_PORT', 8000))

    logger.info(f"🚀 启动FastAPI服务器于 http://{host}:{port}")
    logger.info(f"📚 API文档: http://localhost:{port}/docs")

    uvicorn.run(
        "main_fastapi:app",
        host=host,
        port=port,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
        reload_dirs=["./imagegen_app"] if settings.DEBUG else None,
    )
