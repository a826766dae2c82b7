# 购物车相关API路由

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Path

from .models import AbandonedCartRequest
from api.dependencies import get_optional_user, get_job_operations
from db.job_operations import JobOperations
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/carts", tags=["购物车"])


@router.post("/abandoned", response_model=Dict[str, Any])
def record_abandoned_cart(
    cart_request: AbandonedCartRequest,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    job_ops: JobOperations = Depends(get_job_operations)
):
    """
    上报弃购（登录用户自动关联账户）
    """
    cart = job_ops.record_abandoned_cart(
        session_id=cart_request.session_id,
        products=[p.model_dump() for p in cart_request.products],
        cart_total_cents=cart_request.cart_total_cents,
        user_id=current_user["user_id"] if current_user else None,
        email=cart_request.email
    )
    return create_success_response(data=cart)


@router.post("/{session_id}/recovered", response_model=Dict[str, Any])
def mark_cart_recovered(
    session_id: str = Path(..., max_length=100),
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    job_ops: JobOperations = Depends(get_job_operations)
):
    """
    会话已完成下单（关联账户的购物车需要该账户登录）
    """
    recovered = job_ops.mark_cart_recovered(
        session_id, user_id=current_user["user_id"] if current_user else None
    )
    return create_success_response(data={"recovered": recovered})
