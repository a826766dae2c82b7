# 安全中间件

import time
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Dict, Any

from utils.i18n import resolve_locale, translate, DEFAULT_LOCALE
from utils.response import create_error_response

logger = logging.getLogger(__name__)


def _reject(request: Request, code: str, default_locale: str) -> JSONResponse:
    # 对外状态码只使用 200/400/401/404/500
    locale = resolve_locale(request.headers.get("accept-language"), default_locale)
    return JSONResponse(
        status_code=400,
        content=create_error_response(translate(code, locale), code=code)
    )


def setup_security_middleware(app: FastAPI, config: Dict[str, Any]):
    """
    设置安全中间件

    Args:
        app: FastAPI应用实例
        config: 配置字典
    """

    security_config = config.get('security', {})
    default_locale = config.get('i18n', {}).get('default_locale', DEFAULT_LOCALE)

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # 仅在HTTPS下设置HSTS
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response

    # 请求大小限制
    max_request_size = security_config.get('max_request_size', 1024 * 1024)  # 1MB默认

    @app.middleware("http")
    async def limit_request_size(request: Request, call_next):
        content_length = request.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > max_request_size:
            logger.warning(f"Request size {content_length} exceeds limit {max_request_size}")
            return _reject(request, "REQUEST_TOO_LARGE", default_locale)

        return await call_next(request)

    # IP访问频率限制（进程内计数，按分钟）
    request_counts: Dict[str, int] = {}
    rate_limit = security_config.get('rate_limit', 100)  # 每分钟100请求

    if not rate_limit:
        return

    @app.middleware("http")
    async def rate_limiting(request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"

        current_minute = int(time.time() / 60)
        key = f"{client_ip}|{current_minute}"
        request_counts[key] = request_counts.get(key, 0) + 1

        # 清理旧的计数器
        old_keys = [k for k in request_counts if int(k.rsplit('|', 1)[1]) < current_minute - 1]
        for old_key in old_keys:
            del request_counts[old_key]

        if request_counts[key] > rate_limit:
            logger.warning(f"Rate limit exceeded for IP {client_ip}")
            return _reject(request, "RATE_LIMITED", default_locale)

        return await call_next(request)
