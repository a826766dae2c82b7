# 管理员相关API路由

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_admin_user, get_refund_operations
from db.refund_operations import RefundOperations
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["管理员"])


@router.get("/refunds", response_model=Dict[str, Any])
def list_all_refund_requests(
    status: Optional[str] = Query(None, description="申请状态"),
    vendor_id: Optional[int] = Query(None, description="按商家过滤"),
    page: Optional[str] = Query(None, description="页码"),
    limit: Optional[str] = Query(None, description="每页数量（1-50）"),
    current_admin: Dict[str, Any] = Depends(get_admin_user),
    refund_ops: RefundOperations = Depends(get_refund_operations)
):
    """
    全平台退款申请队列
    """
    result = refund_ops.list_refund_requests(vendor_id=vendor_id, status=status, page=page, limit=limit)
    return create_success_response(data=result)
