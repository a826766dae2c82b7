# 日志中间件

import time
import uuid
import logging
from fastapi import FastAPI, Request
from typing import Dict, Any

from utils.logger import request_id_var

logger = logging.getLogger(__name__)


def setup_logging_middleware(app: FastAPI, config: Dict[str, Any]):
    """
    设置请求日志中间件

    请求ID写入上下文变量，同一请求内的所有日志都带上该ID

    Args:
        app: FastAPI应用实例
        config: 配置字典
    """

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        # 优先沿用上游传入的请求ID
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        token = request_id_var.set(request_id)

        start_time = time.time()
        logger.info(
            f"{request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            logger.info(f"{response.status_code} - Time: {process_time:.3f}s")

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            process_time = time.time() - start_time
            logger.error(f"ERROR - {str(e)} - Time: {process_time:.3f}s")
            raise
        finally:
            request_id_var.reset(token)
