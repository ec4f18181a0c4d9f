#!/usr/bin/env python3
"""
标准化错误处理模块

服务层抛出 AppError 子类，由 register_exception_handlers 注册的处理器
在请求边界统一转换为 HTTP 状态码 + {"error": message} 响应体。
"""

from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel


class ErrorCode(Enum):
    """标准错误代码枚举"""

    # 认证与输入
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_INPUT = "INVALID_INPUT"

    # 配额
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # 套餐
    TIER_NOT_FOUND = "TIER_NOT_FOUND"
    INVALID_TIER = "INVALID_TIER"

    # Webhook 对账
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_EVENT = "INVALID_EVENT"
    UNKNOWN_CUSTOMER = "UNKNOWN_CUSTOMER"
    MISSING_TIER_CONTEXT = "MISSING_TIER_CONTEXT"

    # 系统
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class StandardErrorResponse(BaseModel):
    """标准错误响应模型"""

    error: str
    error_code: str
    details: dict[str, Any] | None = None

    # 配额相关信息
    quota_info: dict[str, Any] | None = None

    # 建议操作
    suggested_actions: list[str] | None = None
    retryable: bool = False


class AppError(Exception):
    """业务错误基类"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"
    retryable: bool = False

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> StandardErrorResponse:
        return StandardErrorResponse(
            error=self.message,
            error_code=self.code.value,
            details=self.details,
            retryable=self.retryable,
        )


class Unauthorized(AppError):
    code = ErrorCode.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid authentication token"


class InvalidInput(AppError):
    code = ErrorCode.INVALID_INPUT
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class QuotaExceeded(AppError):
    """本月生成配额已用完（提示升级，而不是修改输入）"""

    code = ErrorCode.QUOTA_EXCEEDED
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Monthly image generation limit reached"

    def __init__(self, tier_name: str, used: int, limit: int, reset_at: str | None = None):
        super().__init__()
        self.quota_info = {
            "tier": tier_name,
            "used_this_period": used,
            "monthly_limit": limit,
            "remaining": max(0, limit - used),
            "reset_at": reset_at,
        }

    def to_response(self) -> StandardErrorResponse:
        response = super().to_response()
        response.quota_info = self.quota_info
        response.suggested_actions = ["Upgrade to a higher tier for more generations", "Wait for the monthly quota to reset"]
        return response


class TierNotFound(AppError):
    code = ErrorCode.TIER_NOT_FOUND
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Subscription tier not found"


class InvalidTier(AppError):
    code = ErrorCode.INVALID_TIER
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Cannot create checkout session for free tier"


class DataIntegrityError(AppError):
    code = ErrorCode.DATA_INTEGRITY_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Data integrity error"


class InvalidSignature(AppError):
    code = ErrorCode.INVALID_SIGNATURE
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid webhook signature"


class InvalidEvent(AppError):
    code = ErrorCode.INVALID_EVENT
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Malformed webhook event"


class UnknownCustomer(AppError):
    code = ErrorCode.UNKNOWN_CUSTOMER
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No user ID found in customer metadata"


class MissingTierContext(AppError):
    code = ErrorCode.MISSING_TIER_CONTEXT
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "No checkout session found for subscription"


class UpstreamUnavailable(AppError):
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Upstream service temporarily unavailable, please retry"
    retryable = True


class ConfigError(AppError):
    code = ErrorCode.CONFIG_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Service misconfigured"


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """AppError -> 结构化 JSON 响应"""
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(f"{request.method} {request.url.path} -> {exc.code.value}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(exclude_none=True),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体校验失败统一按 InvalidInput 处理"""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return await app_error_handler(request, InvalidInput(message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """兜底：未知异常不暴露内部信息"""
    logger.exception(f"{request.method} {request.url.path} 未处理异常: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=StandardErrorResponse(
            error="Internal server error",
            error_code=ErrorCode.INTERNAL_ERROR.value,
        ).model_dump(exclude_none=True),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
