# 支付网关退款接口

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, Any, Optional

import httpx

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """网关拒绝、网络错误或超时；调用方一律视为未退款"""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class RefundResult:
    success: bool
    transaction_id: Optional[str] = None


class PaymentGateway:
    """
    支付网关抽象

    refund 必须按 idempotency_key 幂等：同一个键重复调用只退款一次
    """

    def refund(self, payment_reference: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        raise NotImplementedError


class HttpPaymentGateway(PaymentGateway):
    """通过HTTP调用支付网关"""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout_seconds: float = 10.0,
                 client: Optional[httpx.Client] = None):
        """
        Args:
            base_url: 网关地址
            api_key: 网关密钥
            timeout_seconds: 单次请求超时时间
            client: 自定义httpx客户端（测试时注入MockTransport）
        """
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers=headers
        )

    def refund(self, payment_reference: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        payload = {
            "payment_reference": payment_reference,
            "amount_cents": amount_cents
        }

        try:
            response = self.client.post(
                "/refunds",
                json=payload,
                headers={"Idempotency-Key": idempotency_key}
            )
        except httpx.TimeoutException as e:
            logger.error(f"支付网关超时: {payment_reference}, {str(e)}")
            raise PaymentGatewayError(f"支付网关超时: {str(e)}")
        except httpx.RequestError as e:
            logger.error(f"支付网关请求失败: {payment_reference}, {str(e)}")
            raise PaymentGatewayError(f"支付网关请求失败: {str(e)}")

        if response.status_code >= 500:
            raise PaymentGatewayError(f"支付网关错误: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PaymentGatewayError(
                f"支付网关拒绝退款: HTTP {response.status_code} {response.text[:200]}",
                retryable=False
            )

        try:
            data: Dict[str, Any] = response.json()
        except ValueError:
            raise PaymentGatewayError("支付网关返回数据异常")

        if not data.get("success"):
            raise PaymentGatewayError(f"支付网关拒绝退款: {data.get('error', 'unknown')}", retryable=False)

        logger.info(f"支付网关退款成功: {payment_reference}, 金额 {amount_cents}")
        return RefundResult(success=True, transaction_id=data.get("transaction_id"))

    def close(self):
        self.client.close()


class MockPaymentGateway(PaymentGateway):
    """
    模拟支付网关（开发环境使用）

    同一个幂等键返回同一笔交易
    """

    def __init__(self):
        self._refunds: Dict[str, RefundResult] = {}
        self._lock = threading.Lock()

    def refund(self, payment_reference: str, amount_cents: int, idempotency_key: str) -> RefundResult:
        with self._lock:
            if idempotency_key in self._refunds:
                return self._refunds[idempotency_key]

            result = RefundResult(success=True, transaction_id=f"mock_rf_{uuid.uuid4().hex[:12]}")
            self._refunds[idempotency_key] = result

        logger.info(f"使用模拟支付网关退款: {payment_reference}, 金额 {amount_cents}")
        return result

    @property
    def refund_count(self) -> int:
        return len(self._refunds)


def build_payment_gateway(config) -> PaymentGateway:
    """
    根据配置创建支付网关，未配置 payments.base_url 时使用模拟模式
    """
    base_url = config.get("payments.base_url")
    if not base_url:
        logger.warning("支付网关配置缺失，将使用模拟模式")
        return MockPaymentGateway()

    return HttpPaymentGateway(
        base_url=base_url,
        api_key=config.get("payments.api_key"),
        timeout_seconds=float(config.get("payments.timeout_seconds", 10))
    )
