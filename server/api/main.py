# FastAPI主应用

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from utils.config import Config
from utils.errors import MarketError
from utils.i18n import resolve_locale, translate
from utils.logger import setup_logging
from utils.response import create_error_response
from api.dependencies import AppServices, build_services
from api.middleware import setup_middleware

from api.auth import auth_router
from api.orders import orders_router
from api.vendor import vendor_router
from api.admin import admin_router
from api.carts import carts_router
from api.cron import cron_router

logger = logging.getLogger(__name__)

# 对外只使用这几个状态码，其余HTTP异常归入400
PUBLIC_STATUS_CODES = {400, 401, 404, 500}
HTTP_STATUS_CODES = {401: "UNAUTHORIZED", 404: "NOT_FOUND"}


def _locale(request: Request) -> str:
    services: AppServices = request.app.state.services
    return resolve_locale(request.headers.get("accept-language"), services.default_locale)


def register_exception_handlers(app: FastAPI):
    """注册全局异常处理器"""

    @app.exception_handler(MarketError)
    async def market_exception_handler(request: Request, exc: MarketError):
        """业务异常：状态码来自异常类型，消息按错误码本地化"""
        log = logger.error if exc.status_code >= 500 else logger.info
        log(f"{request.method} {request.url.path} -> {exc.code}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(translate(exc.code, _locale(request), **exc.params), code=exc.code)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求参数校验失败"""
        logger.info(f"{request.method} {request.url.path} -> 参数校验失败: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content=create_error_response(translate("VALIDATION_ERROR", _locale(request)), code="VALIDATION_ERROR")
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """HTTP异常处理（路由不存在、方法不允许等）"""
        status_code = exc.status_code if exc.status_code in PUBLIC_STATUS_CODES else 400
        code = HTTP_STATUS_CODES.get(status_code, "VALIDATION_ERROR" if status_code == 400 else "INTERNAL_ERROR")
        return JSONResponse(
            status_code=status_code,
            content=create_error_response(translate(code, _locale(request)), code=code)
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """通用异常处理：记录完整堆栈，不向客户端暴露细节"""
        logger.error(f"未处理的异常: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=create_error_response(translate("INTERNAL_ERROR", _locale(request)), code="INTERNAL_ERROR")
        )


def create_app(config: Optional[Config] = None, services: Optional[AppServices] = None) -> FastAPI:
    """
    创建FastAPI应用

    Args:
        config: 配置，默认按 CONFIG_ENV 加载
        services: 服务容器（测试注入），默认按配置创建

    Returns:
        FastAPI应用实例
    """
    config = config or (services.config if services else Config())
    setup_logging(config.config)

    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info(f"{config.get('app.name')} 启动中...")
        logger.info(f"环境: {config.env}")
        logger.info(f"数据库: {services.db_path}")

        yield

        for resource in (services.payment_gateway, services.notifier):
            close = getattr(resource, "close", None)
            if close:
                close()
        logger.info(f"{config.get('app.name')} 关闭中...")

    app = FastAPI(
        title=config.get('app.name', 'Luzimarket API'),
        version=config.get('app.version', '1.0.0'),
        description=config.get('app.description', ''),
        debug=config.get('app.debug', False),
        lifespan=lifespan
    )
    app.state.services = services

    setup_middleware(app, config.config)
    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(orders_router)
    app.include_router(vendor_router)
    app.include_router(admin_router)
    app.include_router(carts_router)
    app.include_router(cron_router)

    @app.get("/health")
    async def health_check():
        """健康检查端点"""
        return {
            "status": "healthy",
            "version": config.get('app.version', '1.0.0'),
            "environment": config.env
        }

    return app


if __name__ == "__main__":
    import uvicorn

    server_config = Config().get('server', {})

    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=server_config.get('host', '127.0.0.1'),
        port=server_config.get('port', 8000),
        reload=server_config.get('reload', False),
        workers=1 if server_config.get('reload', False) else server_config.get('workers', 1),
        log_level="info"
    )
