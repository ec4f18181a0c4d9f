"""
认证相关的Pydantic模型
"""
from pydantic import BaseModel, Field


class UserInfo(BaseModel):
    """当前请求的用户（每个请求独立从令牌解析）"""
    id: str = Field(..., description="用户ID")
    email: str | None = Field(None, description="邮箱")
