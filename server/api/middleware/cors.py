# CORS中间件配置：只允许显式列出的来源

from dataclasses import dataclass, field
from typing import Dict, Any, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000"
]


@dataclass(frozen=True)
class CorsSettings:
    """CORS白名单"""
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    allowed_methods: List[str] = field(default_factory=lambda: ["GET", "POST", "PUT"])
    allowed_headers: List[str] = field(default_factory=lambda: ["Authorization", "Content-Type", "Accept-Language"])
    allow_credentials: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CorsSettings":
        cors_config = config.get('cors', {})
        defaults = cls()

        origins = cors_config.get('allowed_origins', defaults.allowed_origins)
        if "*" in origins:
            raise ValueError("CORS来源必须显式列出，不支持 *")

        return cls(
            allowed_origins=list(origins),
            allowed_methods=list(cors_config.get('allowed_methods', defaults.allowed_methods)),
            allowed_headers=list(cors_config.get('allowed_headers', defaults.allowed_headers)),
            allow_credentials=cors_config.get('allow_credentials', defaults.allow_credentials)
        )


def setup_cors_middleware(app: FastAPI, settings: CorsSettings):
    """
    设置CORS中间件

    Args:
        app: FastAPI应用实例
        settings: CORS白名单
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=settings.allow_credentials,
        allow_methods=settings.allowed_methods,
        allow_headers=settings.allowed_headers,
    )
