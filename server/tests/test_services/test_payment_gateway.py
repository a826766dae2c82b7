# 支付网关测试

import json

import httpx
import pytest

from services.payment_gateway import (
    HttpPaymentGateway, MockPaymentGateway, PaymentGatewayError, build_payment_gateway
)
from utils.config import Config


def make_gateway(handler):
    client = httpx.Client(base_url="https://pagos.example", transport=httpx.MockTransport(handler))
    return HttpPaymentGateway("https://pagos.example", client=client)


class TestHttpPaymentGateway:
    """HTTP支付网关测试"""

    def test_successful_refund(self):
        """测试成功退款并携带幂等键"""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["key"] = request.headers["Idempotency-Key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "transaction_id": "re_123"})

        result = make_gateway(handler).refund("pi_1", 50000, idempotency_key="refund-9")

        assert result.success
        assert result.transaction_id == "re_123"
        assert seen == {
            "path": "/refunds",
            "key": "refund-9",
            "body": {"payment_reference": "pi_1", "amount_cents": 50000}
        }

    def test_timeout(self):
        """测试超时转换为网关错误"""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(PaymentGatewayError) as exc_info:
            make_gateway(handler).refund("pi_1", 100, idempotency_key="k")
        assert exc_info.value.retryable

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PaymentGatewayError):
            make_gateway(handler).refund("pi_1", 100, idempotency_key="k")

    @pytest.mark.parametrize("status_code,retryable", [(502, True), (402, False)])
    def test_http_errors(self, status_code, retryable):
        """测试5xx可重试，4xx不可重试"""
        gateway = make_gateway(lambda request: httpx.Response(status_code, text="error"))

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.refund("pi_1", 100, idempotency_key="k")
        assert exc_info.value.retryable is retryable

    def test_declined(self):
        """测试网关返回拒绝"""
        gateway = make_gateway(
            lambda request: httpx.Response(200, json={"success": False, "error": "charge_disputed"})
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            gateway.refund("pi_1", 100, idempotency_key="k")
        assert "charge_disputed" in str(exc_info.value)

    def test_invalid_body(self):
        gateway = make_gateway(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(PaymentGatewayError):
            gateway.refund("pi_1", 100, idempotency_key="k")


class TestMockPaymentGateway:
    """模拟网关测试"""

    def test_idempotent(self):
        gateway = MockPaymentGateway()

        first = gateway.refund("pi_1", 100, idempotency_key="refund-1")
        again = gateway.refund("pi_1", 100, idempotency_key="refund-1")
        other = gateway.refund("pi_2", 100, idempotency_key="refund-2")

        assert first.transaction_id == again.transaction_id
        assert other.transaction_id != first.transaction_id
        assert gateway.refund_count == 2


class TestBuildPaymentGateway:
    """按配置创建网关测试"""

    def _config(self, payments):
        return Config.from_dict({
            "app": {}, "server": {}, "database": {}, "logging": {},
            "auth": {"jwt_secret_key": "k"},
            "jobs": {"cron_secret": "c"},
            "payments": payments
        })

    def test_mock_without_base_url(self):
        assert isinstance(build_payment_gateway(self._config({"base_url": ""})), MockPaymentGateway)

    def test_http_with_base_url(self):
        gateway = build_payment_gateway(self._config({"base_url": "https://pagos.example",
                                                      "api_key": "sk_test"}))
        try:
            assert isinstance(gateway, HttpPaymentGateway)
            assert gateway.client.headers["Authorization"] == "Bearer sk_test"
        finally:
            gateway.close()
