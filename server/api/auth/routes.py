# 认证相关API路由

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends

from .models import LoginRequest, LoginResponse, UserInfo
from api.dependencies import (
    AppServices, get_services, get_current_user, get_supporting_operations
)
from db.supporting_operations import SupportingOperations
from utils.errors import UnauthorizedError
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["认证"])


def _user_info(user: Dict[str, Any]) -> UserInfo:
    return UserInfo(
        user_id=user["user_id"],
        email=user["email"],
        name=user.get("name"),
        role=user["role"],
        vendor_id=user.get("vendor_id")
    )


@router.post("/login", response_model=Dict[str, Any])
def login(
    login_request: LoginRequest,
    services: AppServices = Depends(get_services),
    support_ops: SupportingOperations = Depends(get_supporting_operations)
):
    """
    邮箱密码登录，返回JWT
    """
    user = support_ops.authenticate(login_request.email, login_request.password)
    if user is None:
        # 邮箱不存在与密码错误返回同一个错误
        raise UnauthorizedError(f"登录失败: {login_request.email}", code="INVALID_CREDENTIALS")

    jwt_manager = services.jwt_manager
    access_token = jwt_manager.create_access_token({
        "user_id": user["user_id"],
        "role": user["role"]
    })

    response_data = LoginResponse(
        access_token=access_token,
        expires_in=jwt_manager.access_token_expire_minutes * 60,
        user_info=_user_info(user)
    )

    logger.info(f"用户登录: {user['user_id']} ({user['role']})")
    return create_success_response(data=response_data.model_dump(), message="登录成功")


@router.get("/me", response_model=Dict[str, Any])
def get_me(current_user: Dict[str, Any] = Depends(get_current_user)):
    """
    获取当前登录用户
    """
    return create_success_response(data=_user_info(current_user).model_dump())
