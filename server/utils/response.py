# 统一API响应格式工具

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z"


def create_success_response(
    data: Any = None,
    message: str = "OK"
) -> Dict[str, Any]:
    """
    创建成功响应

    Args:
        data: 响应数据
        message: 成功消息

    Returns:
        标准格式的成功响应
    """
    return {
        "success": True,
        "data": data,
        "message": message,
        "timestamp": _timestamp()
    }


def create_error_response(
    error: str,
    code: Optional[str] = None,
    data: Any = None
) -> Dict[str, Any]:
    """
    创建错误响应

    Args:
        error: 本地化后的错误描述
        code: 机器可读的错误码
        data: 可选的错误数据

    Returns:
        标准格式的错误响应
    """
    return {
        "success": False,
        "error": error,
        "code": code,
        "data": data,
        "timestamp": _timestamp()
    }


def build_pagination(total_count: int, current_page: int, per_page: int) -> Dict[str, Any]:
    """计算分页元数据"""
    total_pages = (total_count + per_page - 1) // per_page  # 向上取整
    return {
        "total_count": total_count,
        "current_page": current_page,
        "per_page": per_page,
        "total_pages": total_pages,
        "has_next": current_page < total_pages,
        "has_prev": current_page > 1
    }
