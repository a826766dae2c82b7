# 认证模块

from .routes import router as auth_router
from .models import LoginRequest, LoginResponse, UserInfo

__all__ = [
    "auth_router",
    "LoginRequest",
    "LoginResponse",
    "UserInfo"
]
