# 日志配置管理工具

import contextvars
import logging
import logging.handlers
import os
from typing import Dict, Any

# 当前请求ID，由请求日志中间件设置
request_id_var: contextvars.ContextVar = contextvars.ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """为每条日志记录附加 request_id 字段"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def _parse_size(size_str: str) -> int:
    """解析文件大小字符串，如 '10MB' -> 10485760"""
    size_str = str(size_str).upper()

    if size_str.endswith('KB'):
        return int(size_str[:-2]) * 1024
    elif size_str.endswith('MB'):
        return int(size_str[:-2]) * 1024 * 1024
    elif size_str.endswith('GB'):
        return int(size_str[:-2]) * 1024 * 1024 * 1024
    else:
        return int(size_str)


def setup_logging(config: Dict[str, Any]):
    """
    根据配置设置日志系统

    控制台输出始终开启，文件输出由 logging.file_enabled 控制
    """
    log_config = config.get('logging', {})

    logger = logging.getLogger()

    # 清除现有的处理器
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    logger.setLevel(getattr(logging, log_config.get('level', 'INFO')))

    formatter = logging.Formatter(log_config.get(
        'format',
        '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] [%(filename)s:%(lineno)d] - %(message)s'
    ))
    request_filter = RequestIdFilter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(request_filter)
    logger.addHandler(console_handler)

    if log_config.get('file_enabled', True):
        file_path = log_config.get('file_path', 'logs/app.log')
        log_dir = os.path.dirname(file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=_parse_size(log_config.get('max_file_size', '10MB')),
            backupCount=log_config.get('backup_count', 5),
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(request_filter)
        logger.addHandler(file_handler)

    logging.info(f"日志系统初始化完成，级别: {log_config.get('level', 'INFO')}")
