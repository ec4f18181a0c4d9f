"""
HTTP 请求/响应模型
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerateRequest(BaseModel):
    prompt: str = Field(..., description="图像提示词")

    model_config = ConfigDict(json_schema_extra={"example": {"prompt": "a lighthouse at dusk, oil painting"}})


class GenerateResponse(BaseModel):
    output: list[str]


class CheckoutRequest(BaseModel):
    tier_id: str = Field(..., alias="tierId", description="套餐ID")

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={"example": {"tierId": "2"}})

    @field_validator("tier_id", mode="before")
    @classmethod
    def _coerce_tier_id(cls, value: Any) -> Any:
        # 前端可能直接传数据库里的整数 id
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class CheckoutResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    received: bool = True
