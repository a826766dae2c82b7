# 中间件模块

from fastapi import FastAPI
from typing import Dict, Any

from .cors import CorsSettings, setup_cors_middleware
from .logging import setup_logging_middleware
from .security import setup_security_middleware


def setup_middleware(app: FastAPI, config: Dict[str, Any]):
    """
    设置所有中间件

    Args:
        app: FastAPI应用实例
        config: 配置字典
    """
    # 后注册的中间件在外层：CORS最先处理，其次是请求日志
    setup_security_middleware(app, config)
    setup_logging_middleware(app, config)
    setup_cors_middleware(app, CorsSettings.from_config(config))


__all__ = [
    "CorsSettings",
    "setup_middleware",
    "setup_cors_middleware",
    "setup_logging_middleware",
    "setup_security_middleware"
]
