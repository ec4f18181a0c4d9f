"""
图像生成路由
"""

from fastapi import APIRouter, Depends

from imagegen_app.dependencies.auth import get_current_user
from imagegen_app.models.api import GenerateRequest, GenerateResponse
from imagegen_app.models.auth import UserInfo
from imagegen_app.services.admission_service import get_admission_service

router = APIRouter()


@router.post("/generate", response_model=GenerateResponse)
async def generate_image(request: GenerateRequest, current_user: UserInfo = Depends(get_current_user)):
    service = await get_admission_service()
    result = await service.admit(current_user, request.prompt)
    return GenerateResponse(output=result.output)
