# 用户可见消息的本地化
# 错误码 -> 各语言消息；内部日志始终保留原始详情

from typing import Any, Dict, Optional

SUPPORTED_LOCALES = ("es", "en", "zh")
DEFAULT_LOCALE = "es"

MESSAGES: Dict[str, Dict[str, str]] = {
    "es": {
        "NOT_FOUND": "Recurso no encontrado",
        "ORDER_NOT_FOUND": "Orden no encontrada",
        "UNAUTHORIZED": "No autorizado",
        "FORBIDDEN": "No tienes permiso para realizar esta acción",
        "VALIDATION_ERROR": "Datos de solicitud inválidos",
        "INVALID_TRANSITION": "No se puede cambiar la orden de {current} a {target}",
        "ALREADY_REQUESTED": "Ya existe una solicitud de cancelación pendiente",
        "ALREADY_DECIDED": "La solicitud ya fue procesada",
        "NOT_ELIGIBLE": "La orden no es elegible para esta operación",
        "GATEWAY_ERROR": "Error al procesar el reembolso, intenta de nuevo más tarde",
        "INVALID_CREDENTIALS": "Correo o contraseña incorrectos",
        "INTERNAL_ERROR": "Error interno del servidor",
        "REQUEST_TOO_LARGE": "Solicitud demasiado grande",
        "RATE_LIMITED": "Demasiadas solicitudes",
    },
    "en": {
        "NOT_FOUND": "Resource not found",
        "ORDER_NOT_FOUND": "Order not found",
        "UNAUTHORIZED": "Unauthorized",
        "FORBIDDEN": "You are not allowed to perform this action",
        "VALIDATION_ERROR": "Invalid request data",
        "INVALID_TRANSITION": "Cannot move order from {current} to {target}",
        "ALREADY_REQUESTED": "A cancellation request is already pending",
        "ALREADY_DECIDED": "The request has already been decided",
        "NOT_ELIGIBLE": "The order is not eligible for this operation",
        "GATEWAY_ERROR": "Refund could not be processed, please retry later",
        "INVALID_CREDENTIALS": "Invalid email or password",
        "INTERNAL_ERROR": "Internal server error",
        "REQUEST_TOO_LARGE": "Request entity too large",
        "RATE_LIMITED": "Too many requests",
    },
    "zh": {
        "NOT_FOUND": "资源不存在",
        "ORDER_NOT_FOUND": "订单不存在",
        "UNAUTHORIZED": "认证失败，请重新登录",
        "FORBIDDEN": "没有执行该操作的权限",
        "VALIDATION_ERROR": "请求参数无效",
        "INVALID_TRANSITION": "订单状态无法从 {current} 变更为 {target}",
        "ALREADY_REQUESTED": "该订单已有待处理的取消申请",
        "ALREADY_DECIDED": "该申请已被处理",
        "NOT_ELIGIBLE": "订单不满足该操作的条件",
        "GATEWAY_ERROR": "退款处理失败，请稍后重试",
        "INVALID_CREDENTIALS": "邮箱或密码错误",
        "INTERNAL_ERROR": "服务器内部错误",
        "REQUEST_TOO_LARGE": "请求体过大",
        "RATE_LIMITED": "请求过于频繁",
    },
}


def resolve_locale(accept_language: Optional[str], default: str = DEFAULT_LOCALE) -> str:
    """
    从 Accept-Language 头中解析语言

    Args:
        accept_language: 请求头原文，如 "en-US,en;q=0.9"
        default: 无法匹配时使用的语言

    Returns:
        支持的语言代码
    """
    if not accept_language:
        return default

    candidates = []
    for index, part in enumerate(accept_language.split(",")):
        piece = part.strip()
        if not piece:
            continue
        lang, _, q_part = piece.partition(";")
        quality = 1.0
        if q_part.strip().startswith("q="):
            try:
                quality = float(q_part.strip()[2:])
            except ValueError:
                quality = 0.0
        candidates.append((-quality, index, lang.strip().lower()))

    for _, _, lang in sorted(candidates):
        primary = lang.split("-")[0]
        if primary in SUPPORTED_LOCALES:
            return primary

    return default


def translate(code: str, locale: str = DEFAULT_LOCALE, **params: Any) -> str:
    """
    获取错误码对应的本地化消息

    缺失的语言回退到默认语言，缺失的错误码回退到 INTERNAL_ERROR
    """
    catalog = MESSAGES.get(locale) or MESSAGES[DEFAULT_LOCALE]
    template = catalog.get(code) or MESSAGES[DEFAULT_LOCALE].get(code) or catalog["INTERNAL_ERROR"]
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template
