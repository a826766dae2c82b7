# 业务异常定义
# 每个异常带有错误码（用于本地化消息）和内部详情（仅写入日志）

from typing import Any, Dict, Optional


class MarketError(Exception):
    """
    业务异常基类

    Attributes:
        code: 错误码，对应 utils.i18n 中的消息键
        detail: 内部错误详情，只记录日志，不返回给客户端
        status_code: 对应的HTTP状态码
        params: 本地化消息的格式化参数
    """
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, detail: str = "", code: Optional[str] = None,
                 params: Optional[Dict[str, Any]] = None):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        if code:
            self.code = code
        self.params = params or {}


class NotFoundError(MarketError):
    """实体不存在或对调用者不可见（统一返回，避免泄露存在性）"""
    code = "NOT_FOUND"
    status_code = 404


class UnauthorizedError(MarketError):
    """缺少或无效的登录凭证"""
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(MarketError):
    """已登录但角色不符"""
    code = "FORBIDDEN"
    status_code = 401


class ValidationError(MarketError):
    """输入格式错误"""
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidTransitionError(MarketError):
    """订单状态机不允许的迁移"""
    code = "INVALID_TRANSITION"
    status_code = 400


class AlreadyRequestedError(MarketError):
    """订单已存在待处理的退款申请"""
    code = "ALREADY_REQUESTED"
    status_code = 400


class AlreadyDecidedError(MarketError):
    """退款申请已被其他操作者处理"""
    code = "ALREADY_DECIDED"
    status_code = 400


class NotEligibleError(MarketError):
    """业务前置条件不满足"""
    code = "NOT_ELIGIBLE"
    status_code = 400


class GatewayError(MarketError):
    """支付网关调用失败或超时"""
    code = "GATEWAY_ERROR"
    status_code = 500
