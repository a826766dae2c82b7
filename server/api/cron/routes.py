# 定时任务触发API路由，由外部调度器以共享密钥调用

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.security import HTTPAuthorizationCredentials

from api.dependencies import AppServices, get_services, get_job_operations, security
from db.job_operations import JobOperations
from utils.errors import UnauthorizedError
from utils.response import create_success_response
from utils.security import verify_shared_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cron", tags=["定时任务"])


def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: AppServices = Depends(get_services)
):
    """校验 Authorization: Bearer <cron_secret>"""
    provided = credentials.credentials if credentials else None
    if not verify_shared_secret(provided, services.config.get("jobs.cron_secret")):
        raise UnauthorizedError("定时任务密钥错误")


@router.get("/inventory-check", response_model=Dict[str, Any], dependencies=[Depends(verify_cron_secret)])
def run_inventory_check(
    threshold: Optional[int] = Query(None, ge=0, description="库存阈值"),
    period: Optional[str] = Query(None, description="统计周期（YYYY-MM-DD）"),
    job_ops: JobOperations = Depends(get_job_operations)
):
    """
    低库存检查
    """
    return create_success_response(data=job_ops.check_low_stock(threshold, period))


@router.get("/analytics-snapshot", response_model=Dict[str, Any], dependencies=[Depends(verify_cron_secret)])
def run_analytics_snapshot(
    date: Optional[str] = Query(None, description="统计日期（YYYY-MM-DD），默认昨天"),
    job_ops: JobOperations = Depends(get_job_operations)
):
    """
    生成每日统计快照
    """
    return create_success_response(data=job_ops.create_daily_snapshots(date))


@router.get("/cart-recovery", response_model=Dict[str, Any], dependencies=[Depends(verify_cron_secret)])
def run_cart_recovery(job_ops: JobOperations = Depends(get_job_operations)):
    """
    发送弃购召回通知
    """
    return create_success_response(data=job_ops.send_cart_recovery_notifications())
