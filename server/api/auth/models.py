# 认证相关的数据模型

from typing import Optional
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """邮箱密码登录请求模型"""
    email: str = Field(..., min_length=3, max_length=254, description="登录邮箱")
    password: str = Field(..., min_length=1, max_length=128, description="密码")


class UserInfo(BaseModel):
    """用户信息模型"""
    user_id: int
    email: str
    name: Optional[str] = None
    role: str
    vendor_id: Optional[int] = None


class LoginResponse(BaseModel):
    """登录响应模型"""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 86400  # 秒
    user_info: UserInfo
