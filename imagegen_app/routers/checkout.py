"""
结账路由
"""

from fastapi import APIRouter, Depends, Request

from imagegen_app.dependencies.auth import get_current_user
from imagegen_app.models.api import CheckoutRequest, CheckoutResponse
from imagegen_app.models.auth import UserInfo
from imagegen_app.services.checkout_service import get_checkout_service

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    payload: CheckoutRequest,
    request: Request,
    current_user: UserInfo = Depends(get_current_user),
):
    service = await get_checkout_service()
    session = await service.create_checkout_session(current_user, payload.tier_id, origin=request.headers.get("origin"))
    return CheckoutResponse(url=session["url"])
