# 通知发送：模板ID + 收件人 + 数据，发送失败不影响业务

import logging
from typing import Dict, Any, Optional

import httpx

logger = logging.getLogger(__name__)

TEMPLATES = (
    'refund_requested',
    'refund_approved',
    'refund_rejected',
    'order_processing',
    'order_shipped',
    'order_delivered',
    'order_cancelled',
    'low_stock_alert',
    'cart_recovery',
)


class Notifier:
    """通知发送抽象"""

    def notify(self, recipient: str, template_id: str, data: Dict[str, Any]):
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """只写日志（开发环境）"""

    def notify(self, recipient: str, template_id: str, data: Dict[str, Any]):
        logger.info(f"[通知] {template_id} -> {recipient}: {data}")


class HttpNotifier(Notifier):
    """投递到通知服务的Webhook"""

    def __init__(self, webhook_url: str, timeout_seconds: float = 5.0,
                 client: Optional[httpx.Client] = None):
        self.webhook_url = webhook_url
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def notify(self, recipient: str, template_id: str, data: Dict[str, Any]):
        response = self.client.post(self.webhook_url, json={
            "recipient": recipient,
            "template_id": template_id,
            "data": data
        })
        response.raise_for_status()

    def close(self):
        self.client.close()


def safe_notify(notifier: Optional[Notifier], recipient: Optional[str], template_id: str,
                data: Dict[str, Any]) -> bool:
    """
    发送通知，失败只记录日志

    Returns:
        是否发送成功
    """
    if notifier is None or not recipient:
        logger.debug(f"跳过通知 {template_id}：未配置发送器或无收件人")
        return False

    try:
        notifier.notify(recipient, template_id, data)
        return True
    except Exception as e:
        logger.error(f"通知发送失败 {template_id} -> {recipient}: {str(e)}")
        return False


def build_notifier(config) -> Notifier:
    """根据配置创建通知发送器，未配置 webhook 时只写日志"""
    webhook_url = config.get("notifications.webhook_url")
    if not webhook_url:
        return LoggingNotifier()
    return HttpNotifier(webhook_url, float(config.get("notifications.timeout_seconds", 5)))
