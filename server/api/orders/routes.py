# 订单相关API路由（顾客和游客）

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query, Path

from .models import GuestLookupRequest, RefundRequestBody, CancelOrderRequest
from api.dependencies import (
    get_current_user, get_optional_user, get_order_operations, get_refund_operations
)
from db.order_operations import OrderOperations
from db.refund_operations import RefundOperations
from utils.errors import UnauthorizedError
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["订单"])


def _requester(user: Optional[Dict[str, Any]], email: Optional[str]) -> Dict[str, Any]:
    """登录用户优先，否则以游客邮箱作为身份"""
    if user is not None:
        return user
    if email:
        return {"user_id": None, "role": "guest", "email": email}
    raise UnauthorizedError("未登录且未提供游客邮箱")


@router.get("", response_model=Dict[str, Any])
def list_my_orders(
    search: Optional[str] = Query(None, max_length=50, description="订单号搜索"),
    status: Optional[str] = Query(None, description="订单状态"),
    date_from: Optional[str] = Query(None, alias="from", description="起始日期"),
    date_to: Optional[str] = Query(None, alias="to", description="截止日期"),
    page: Optional[str] = Query(None, description="页码"),
    limit: Optional[str] = Query(None, description="每页数量（1-50）"),
    current_user: Dict[str, Any] = Depends(get_current_user),
    order_ops: OrderOperations = Depends(get_order_operations)
):
    """
    当前用户的订单列表
    """
    result = order_ops.list_orders(
        owner_id=current_user["user_id"],
        search=search,
        status=status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit
    )
    return create_success_response(data=result)


@router.get("/lookup", response_model=Dict[str, Any])
def lookup_guest_order_by_query(
    email: str = Query(..., max_length=254),
    order_number: str = Query(..., max_length=20),
    order_ops: OrderOperations = Depends(get_order_operations)
):
    """
    游客查单（查询参数）
    """
    return create_success_response(data=order_ops.lookup_guest_order(email, order_number))


@router.post("/lookup", response_model=Dict[str, Any])
def lookup_guest_order(
    lookup_request: GuestLookupRequest,
    order_ops: OrderOperations = Depends(get_order_operations)
):
    """
    游客查单（JSON请求体）
    """
    return create_success_response(
        data=order_ops.lookup_guest_order(lookup_request.email, lookup_request.order_number)
    )


@router.get("/{order_number}", response_model=Dict[str, Any])
def get_order(
    order_number: str = Path(..., max_length=20, description="订单号"),
    current_user: Dict[str, Any] = Depends(get_current_user),
    order_ops: OrderOperations = Depends(get_order_operations)
):
    """
    订单详情（顾客本人、订单商家或管理员）
    """
    return create_success_response(data=order_ops.get_order_by_number(order_number, current_user))


@router.get("/{order_number}/tracking", response_model=Dict[str, Any])
def get_order_tracking(
    order_number: str = Path(..., max_length=20, description="订单号"),
    order_ops: OrderOperations = Depends(get_order_operations)
):
    """
    公开物流跟踪信息
    """
    return create_success_response(data=order_ops.get_order_tracking(order_number))


@router.post("/{order_number}/refund-request", response_model=Dict[str, Any])
def request_refund(
    refund_request: RefundRequestBody,
    order_number: str = Path(..., max_length=20, description="订单号"),
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    refund_ops: RefundOperations = Depends(get_refund_operations)
):
    """
    申请退款/取消（登录顾客或提供邮箱的游客）
    """
    result = refund_ops.request_refund(
        order_number,
        refund_request.reason,
        _requester(current_user, refund_request.email)
    )
    return create_success_response(data=result, message="退款申请已提交")


@router.post("/{order_number}/cancel", response_model=Dict[str, Any])
def cancel_order(
    cancel_request: CancelOrderRequest,
    order_number: str = Path(..., max_length=20, description="订单号"),
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    refund_ops: RefundOperations = Depends(get_refund_operations)
):
    """
    取消未付款订单
    """
    result = refund_ops.cancel_order(
        order_number,
        _requester(current_user, cancel_request.email),
        cancel_request.reason
    )
    return create_success_response(data=result, message="订单已取消")
