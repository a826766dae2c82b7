# 数据验证器

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

ORDER_NUMBER_PATTERN = re.compile(r'^LM-\d{4}-[A-Z0-9]{4}$')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 50


def validate_date(date_str: str, format_str: str = "%Y-%m-%d") -> bool:
    """
    验证日期格式

    Args:
        date_str: 日期字符串
        format_str: 日期格式

    Returns:
        验证结果
    """
    try:
        datetime.strptime(date_str, format_str)
        return True
    except (ValueError, TypeError):
        return False


def validate_email(email: Any) -> bool:
    """
    验证邮箱格式（只做基本结构检查）
    """
    if not email or not isinstance(email, str):
        return False
    if len(email) > 254:
        return False
    return bool(EMAIL_PATTERN.match(email.strip()))


def validate_order_number(order_number: Any) -> bool:
    """
    验证订单号格式 LM-YYMM-XXXX

    Args:
        order_number: 订单号

    Returns:
        验证结果
    """
    if not isinstance(order_number, str):
        return False
    return bool(ORDER_NUMBER_PATTERN.match(order_number))


def validate_positive_integer(value: Any) -> bool:
    """
    验证正整数
    """
    if isinstance(value, bool):
        return False
    try:
        int_value = int(value)
        return int_value > 0
    except (ValueError, TypeError):
        return False


def validate_non_negative_integer(value: Any) -> bool:
    """
    验证非负整数
    """
    if isinstance(value, bool):
        return False
    try:
        int_value = int(value)
        return int_value >= 0
    except (ValueError, TypeError):
        return False


def validate_string_length(value: str, min_length: int = 0, max_length: Optional[int] = None) -> bool:
    """
    验证字符串长度（去除首尾空白后）

    Args:
        value: 字符串值
        min_length: 最小长度
        max_length: 最大长度

    Returns:
        验证结果
    """
    if not isinstance(value, str):
        return False

    length = len(value.strip())
    if length < min_length:
        return False

    if max_length is not None and length > max_length:
        return False

    return True


def normalize_pagination(page: Any, limit: Any) -> Tuple[int, int]:
    """
    规范化分页参数，非法值回退为默认值（page=1, limit=10）

    Args:
        page: 页码
        limit: 每页条数

    Returns:
        (page, limit)
    """
    page = _as_int(page)
    if page is None or page < 1:
        page = DEFAULT_PAGE

    limit = _as_int(limit)
    if limit is None or limit < 1 or limit > MAX_LIMIT:
        limit = DEFAULT_LIMIT

    return page, limit


def _as_int(value: Any) -> Optional[int]:
    """整数或纯数字字符串转为int，其他返回None（"2.5"、"abc"、True 均视为非法）"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_date_boundary(value: Optional[str], end_of_day: bool = False) -> Optional[str]:
    """
    将日期/日期时间字符串转换为数据库时间戳格式

    只有日期时，开始边界取 00:00:00，结束边界取 23:59:59

    Args:
        value: "YYYY-MM-DD" 或 ISO 日期时间
        end_of_day: 是否为结束边界

    Returns:
        "YYYY-MM-DD HH:MM:SS"，value为空时返回None

    Raises:
        ValueError: 日期格式错误
    """
    if value is None or value == "":
        return None

    if validate_date(value):
        suffix = "23:59:59" if end_of_day else "00:00:00"
        return f"{value} {suffix}"

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        raise ValueError(f"日期格式错误: {value}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)

    return parsed.strftime("%Y-%m-%d %H:%M:%S")
