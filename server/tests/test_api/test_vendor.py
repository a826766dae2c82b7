# 商家后台和管理员API测试

import pytest
from fastapi.testclient import TestClient

from services.payment_gateway import PaymentGatewayError


@pytest.fixture
def refund_requested(refund_ops, market, make_order):
    """已提交退款申请的订单号"""
    order = make_order()
    refund_ops.request_refund(order["order_number"], "Producto dañado", market.customer)
    return order["order_number"]


class TestUpdateOrderStatus:
    """履约状态API测试"""

    def test_fulfillment_flow(self, client, auth_headers, market, make_order, notifier):
        order = make_order()
        number = order["order_number"]
        headers = auth_headers(market.vendor)

        processing = client.put(f"/api/vendor/orders/{number}/status", json={"status": "processing"},
                                headers=headers)
        shipped = client.put(f"/api/vendor/orders/{number}/status", json={
            "status": "shipped",
            "carrier": "DHL",
            "tracking_number": "1Z999",
            "tracking_url": "https://track.example/1Z999",
            "estimated_delivery": "2024-02-01"
        }, headers=headers)

        assert processing.status_code == shipped.status_code == 200
        assert shipped.json()["data"]["carrier"] == "DHL"
        assert shipped.json()["data"]["estimated_delivery"] == "2024-02-01 00:00:00"
        assert notifier.to("cliente@example.com") == ["order_processing", "order_shipped"]

    def test_shipping_without_tracking(self, client, auth_headers, market, make_order):
        order = make_order()
        headers = auth_headers(market.vendor)
        client.put(f"/api/vendor/orders/{order['order_number']}/status", json={"status": "processing"},
                   headers=headers)

        response = client.put(f"/api/vendor/orders/{order['order_number']}/status",
                              json={"status": "shipped"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_invalid_transition_message(self, client, auth_headers, market, make_order):
        """测试非法迁移的消息包含当前和目标状态"""
        order = make_order()
        headers = auth_headers(market.vendor)
        headers["Accept-Language"] = "en"

        response = client.put(f"/api/vendor/orders/{order['order_number']}/status",
                              json={"status": "delivered"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TRANSITION"
        assert response.json()["error"] == "Cannot move order from pending to delivered"

    def test_customer_forbidden(self, client, auth_headers, market, make_order):
        order = make_order()

        response = client.put(f"/api/vendor/orders/{order['order_number']}/status",
                              json={"status": "processing"}, headers=auth_headers(market.customer))

        assert response.status_code == 401
        assert response.json()["code"] == "FORBIDDEN"

    def test_other_vendor_not_found(self, client, auth_headers, market, make_order):
        order = make_order()

        response = client.put(f"/api/vendor/orders/{order['order_number']}/status",
                              json={"status": "processing"}, headers=auth_headers(market.other_vendor))

        assert response.status_code == 404


class TestVendorOrders:
    """商家订单列表API测试"""

    def test_only_own_orders(self, client, auth_headers, market, make_order):
        make_order()
        make_order(vendor_id=market.other_vendor_id,
                   items=[{"product_id": market.truffles["product_id"], "quantity": 1}])

        response = client.get("/api/vendor/orders", headers=auth_headers(market.vendor))

        assert response.status_code == 200
        assert response.json()["data"]["pagination"]["total_count"] == 1

    def test_admin_without_shop_forbidden(self, client, auth_headers, market):
        response = client.get("/api/vendor/orders", headers=auth_headers(market.admin))

        assert response.status_code == 401


class TestRefundDecisions:
    """退款审批API测试"""

    def test_approve(self, client, auth_headers, market, refund_requested, notifier, gateway):
        response = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve",
                               json={"notes": "Aprobado"}, headers=auth_headers(market.vendor))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["order_status"] == "refunded"
        assert data["payment_status"] == "refunded"
        assert gateway.refund_count == 1
        assert "refund_approved" in notifier.to("cliente@example.com")

    def test_gateway_timeout_then_retry(self, client, auth_headers, market, refund_requested,
                                        gateway, order_ops):
        """测试网关超时返回500，订单不变，可以重试"""
        gateway.outcomes = [PaymentGatewayError("timeout")]
        headers = auth_headers(market.vendor)

        failed = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={}, headers=headers)

        assert failed.status_code == 500
        assert failed.json()["code"] == "GATEWAY_ERROR"
        assert order_ops.get_order_by_number(refund_requested, market.admin)["status"] == "refund_requested"

        retried = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={}, headers=headers)

        assert retried.status_code == 200
        assert gateway.refund_count == 1

    def test_unexpected_error_is_500(self, app, auth_headers, market, refund_requested, gateway):
        """测试未预期的异常返回通用500且不暴露细节"""
        gateway.outcomes = [RuntimeError("socket exploded")]

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve",
                                   json={}, headers=auth_headers(market.vendor))

        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL_ERROR"
        assert "socket" not in response.json()["error"]

    def test_reject(self, client, auth_headers, market, refund_requested, order_ops):
        response = client.post(f"/api/vendor/orders/{refund_requested}/refund/reject",
                               json={"notes": "El producto ya fue enviado"}, headers=auth_headers(market.admin))

        assert response.status_code == 200
        assert response.json()["data"]["order_status"] == "pending"
        assert order_ops.get_order_by_number(refund_requested, market.admin)["status"] == "pending"

    def test_reject_requires_notes(self, client, auth_headers, market, refund_requested):
        response = client.post(f"/api/vendor/orders/{refund_requested}/refund/reject",
                               json={}, headers=auth_headers(market.vendor))

        assert response.status_code == 400

    def test_second_decision(self, client, auth_headers, market, refund_requested):
        headers = auth_headers(market.vendor)
        client.post(f"/api/vendor/orders/{refund_requested}/refund/reject", json={"notes": "No"},
                    headers=headers)

        response = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={},
                               headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_DECIDED"

    def test_permissions(self, client, auth_headers, market, refund_requested):
        customer = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={},
                               headers=auth_headers(market.customer))
        other_vendor = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={},
                                   headers=auth_headers(market.other_vendor))
        anonymous = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={})

        assert customer.status_code == 401
        assert other_vendor.status_code == 404
        assert anonymous.status_code == 401


class TestRefundQueues:
    """退款申请列表API测试"""

    def test_vendor_and_admin_views(self, client, auth_headers, market, refund_requested,
                                    refund_ops, make_order):
        other = make_order(vendor_id=market.other_vendor_id,
                           items=[{"product_id": market.truffles["product_id"], "quantity": 1}])
        refund_ops.request_refund(other["order_number"], "razón", market.customer)

        vendor_view = client.get("/api/vendor/refunds", headers=auth_headers(market.vendor))
        admin_view = client.get("/api/vendor/refunds?status=pending", headers=auth_headers(market.admin))
        admin_queue = client.get(f"/api/admin/refunds?vendor_id={market.other_vendor_id}",
                                 headers=auth_headers(market.admin))

        assert vendor_view.json()["data"]["pagination"]["total_count"] == 1
        assert vendor_view.json()["data"]["requests"][0]["order_number"] == refund_requested
        assert admin_view.json()["data"]["pagination"]["total_count"] == 2
        assert admin_queue.json()["data"]["requests"][0]["order_number"] == other["order_number"]

    def test_vendor_without_shop_sees_nothing(self, client, auth_headers, support_ops, refund_requested):
        """测试未开通店铺的商家账户不能查看或审批任何退款"""
        shopless = support_ops.register_user("nueva@luzimarket.test", "nueva-pass", role="vendor")
        headers = auth_headers(shopless)

        queue = client.get("/api/vendor/refunds", headers=headers)
        approve = client.post(f"/api/vendor/orders/{refund_requested}/refund/approve", json={},
                              headers=headers)

        assert queue.status_code == approve.status_code == 401
        assert queue.json()["code"] == "FORBIDDEN"
        assert "requests" not in (queue.json().get("data") or {})

    def test_admin_queue_requires_admin(self, client, auth_headers, market):
        response = client.get("/api/admin/refunds", headers=auth_headers(market.vendor))

        assert response.status_code == 401
        assert response.json()["code"] == "FORBIDDEN"


class TestVendorAnalytics:
    """商家趋势API测试"""

    def test_trends(self, client, auth_headers, market):
        response = client.get("/api/vendor/analytics?days=7", headers=auth_headers(market.vendor))

        assert response.status_code == 200
        assert response.json()["data"]["trends"] == []

    @pytest.mark.parametrize("days", ["0", "366", "semana"])
    def test_invalid_days(self, client, auth_headers, market, days):
        response = client.get(f"/api/vendor/analytics?days={days}", headers=auth_headers(market.vendor))

        assert response.status_code == 400
