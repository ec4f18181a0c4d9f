"""
Stripe Webhook 路由

任何处理错误都返回 4xx，由 Stripe 的重试策略决定是否重投。
"""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from imagegen_app.models.api import WebhookResponse
from imagegen_app.services.webhook_service import get_webhook_service
from imagegen_app.utils.errors import AppError, ErrorCode, StandardErrorResponse

router = APIRouter()


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    service = await get_webhook_service()
    try:
        await service.handle_webhook(payload, signature)
    except AppError as e:
        logger.error(f"Webhook 处理失败: {e.code.value}: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=e.to_response().model_dump(exclude_none=True),
        )
    except Exception as e:
        logger.exception(f"Webhook 处理出现未预期的异常: {e}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=StandardErrorResponse(
                error="Webhook processing failed",
                error_code=ErrorCode.INTERNAL_ERROR.value,
            ).model_dump(exclude_none=True),
        )
    return WebhookResponse(received=True)
