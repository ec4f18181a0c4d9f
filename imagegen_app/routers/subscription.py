"""
订阅相关路由：查看套餐、查看自己的套餐与本月用量
"""

from fastapi import APIRouter, Depends

from imagegen_app.dependencies.auth import get_current_user
from imagegen_app.models.auth import UserInfo
from imagegen_app.services.entitlement_service import get_entitlement_service
from imagegen_app.services.tier_catalog import get_tier_catalog
from imagegen_app.services.usage_service import get_usage_service

router = APIRouter()


@router.get("/tiers")
async def list_tiers():
    catalog = await get_tier_catalog()
    tiers = await catalog.list_tiers()
    return {"tiers": [tier.model_dump() for tier in tiers]}


@router.get("/me")
async def get_my_entitlement(current_user: UserInfo = Depends(get_current_user)):
    service = await get_entitlement_service()
    usage = await get_usage_service()
    entitlement = await service.resolve(current_user.id)
    return {
        "tier": entitlement.tier.model_dump(),
        "subscription_status": entitlement.subscription_status,
        "period_start": entitlement.period_start,
        "period_end": entitlement.period_end,
        "resets_at": usage.next_period_start(),
        "used_this_period": entitlement.used_this_period,
        "remaining": entitlement.remaining,
    }
