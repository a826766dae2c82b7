# 定时任务触发模块

from .routes import router as cron_router

__all__ = [
    "cron_router"
]
