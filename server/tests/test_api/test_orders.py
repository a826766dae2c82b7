# 订单API测试（顾客和游客）

import pytest


class TestListOrders:
    """订单列表API测试"""

    @pytest.fixture
    def twelve_orders(self, make_order, market):
        return [make_order(items=[{"product_id": market.candles["product_id"], "quantity": 1}],
                           created_at=f"2024-01-{day:02d} 10:00:00")
                for day in range(1, 13)]

    def test_pagination(self, client, auth_headers, market, twelve_orders):
        """测试分页和倒序"""
        response = client.get("/api/orders?page=2&limit=5", headers=auth_headers(market.customer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert [o["order_number"] for o in data["orders"]] == \
            [o["order_number"] for o in reversed(twelve_orders)][5:10]
        assert data["pagination"]["total_count"] == 12
        assert data["pagination"]["total_pages"] == 3
        assert data["orders"][0]["item_count"] == 1

    def test_invalid_pagination_falls_back(self, client, auth_headers, market, twelve_orders):
        """测试非法分页参数不报错"""
        response = client.get("/api/orders?page=abc&limit=-3", headers=auth_headers(market.customer))

        assert response.status_code == 200
        pagination = response.json()["data"]["pagination"]
        assert pagination["current_page"] == 1
        assert pagination["per_page"] == 10

    def test_date_filter(self, client, auth_headers, market, twelve_orders):
        response = client.get("/api/orders?from=2024-01-10&to=2024-01-12",
                              headers=auth_headers(market.customer))

        assert response.json()["data"]["pagination"]["total_count"] == 3

    def test_invalid_date(self, client, auth_headers, market):
        response = client.get("/api/orders?from=ayer", headers=auth_headers(market.customer))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_requires_login(self, client, market):
        assert client.get("/api/orders").status_code == 401


class TestOrderDetail:
    """订单详情API测试"""

    def test_owner_sees_detail(self, client, auth_headers, market, make_order):
        order = make_order()

        response = client.get(f"/api/orders/{order['order_number']}", headers=auth_headers(market.customer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["items"][0]["unit_price_cents"] == 50000
        assert data["vendor"]["business_name"] == "Flores del Valle"

    def test_not_visible_same_as_missing(self, client, auth_headers, market, make_order):
        """测试无权查看与不存在返回相同的404"""
        order = make_order()
        headers = auth_headers(market.other_customer)

        hidden = client.get(f"/api/orders/{order['order_number']}", headers=headers)
        missing = client.get("/api/orders/LM-2401-ZZZZ", headers=headers)

        assert hidden.status_code == missing.status_code == 404
        assert hidden.json()["code"] == missing.json()["code"] == "ORDER_NOT_FOUND"
        assert hidden.json()["error"] == missing.json()["error"]

    @pytest.mark.parametrize("language,message", [
        (None, "Orden no encontrada"),
        ("en", "Order not found"),
        ("zh-CN,zh;q=0.9", "订单不存在"),
    ])
    def test_localized_not_found(self, client, auth_headers, market, language, message):
        headers = auth_headers(market.customer)
        if language:
            headers["Accept-Language"] = language

        response = client.get("/api/orders/LM-2401-ZZZZ", headers=headers)

        assert response.json()["error"] == message

    def test_overlong_order_number(self, client, auth_headers, market):
        response = client.get("/api/orders/" + "X" * 40, headers=auth_headers(market.customer))

        assert response.status_code == 400


class TestGuestLookup:
    """游客查单API测试"""

    def test_lookup_by_body_and_query(self, client, make_order):
        order = make_order(guest_email="invitado@example.com", guest_name="Invitado")
        number = order["order_number"]

        by_body = client.post("/api/orders/lookup", json={"email": "INVITADO@example.com", "order_number": number})
        by_query = client.get(f"/api/orders/lookup?email=invitado@example.com&order_number={number}")

        assert by_body.status_code == by_query.status_code == 200
        assert by_body.json()["data"]["order_number"] == number

    def test_wrong_email_indistinguishable(self, client, make_order):
        """测试邮箱错误和订单不存在的响应完全一致"""
        order = make_order(guest_email="invitado@example.com", guest_name="Invitado")

        wrong_email = client.post("/api/orders/lookup", json={
            "email": "otro@example.com", "order_number": order["order_number"]
        })
        missing = client.post("/api/orders/lookup", json={
            "email": "invitado@example.com", "order_number": "LM-0000-NONE"
        })

        assert wrong_email.status_code == missing.status_code == 404
        first, second = wrong_email.json(), missing.json()
        first.pop("timestamp")
        second.pop("timestamp")
        assert first == second

    def test_missing_fields(self, client):
        response = client.post("/api/orders/lookup", json={"email": "invitado@example.com"})

        assert response.status_code == 400


class TestTracking:
    """物流跟踪API测试"""

    def test_public_tracking(self, client, make_order, market, auth_headers):
        order = make_order()
        number = order["order_number"]
        vendor = auth_headers(market.vendor)
        client.put(f"/api/vendor/orders/{number}/status", json={"status": "processing"}, headers=vendor)
        client.put(f"/api/vendor/orders/{number}/status", json={
            "status": "shipped", "carrier": "Estafeta", "tracking_number": "EST-42"
        }, headers=vendor)

        response = client.get(f"/api/orders/{number}/tracking")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "shipped"
        assert data["tracking_number"] == "EST-42"
        assert "total_cents" not in data
        assert [e["action"] for e in data["timeline"]] == ["created", "processing", "shipped"]


class TestRefundRequest:
    """退款申请API测试"""

    def test_customer_request(self, client, auth_headers, market, make_order, notifier):
        make_order(order_number="LM-2401-AB12")

        response = client.post("/api/orders/LM-2401-AB12/refund-request",
                               json={"reason": "Producto dañado"},
                               headers=auth_headers(market.customer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "pending"
        assert data["order_status"] == "refund_requested"
        assert notifier.to("flores@luzimarket.test") == ["refund_requested"]

        again = client.post("/api/orders/LM-2401-AB12/refund-request",
                            json={"reason": "otra vez"},
                            headers=auth_headers(market.customer))
        assert again.status_code == 400
        assert again.json()["code"] == "ALREADY_REQUESTED"

    def test_guest_request_with_email(self, client, make_order):
        order = make_order(guest_email="invitado@example.com", guest_name="Invitado")

        response = client.post(f"/api/orders/{order['order_number']}/refund-request",
                               json={"reason": "No lo necesito", "email": "invitado@example.com"})

        assert response.status_code == 200

    def test_anonymous_without_email(self, client, make_order):
        order = make_order(guest_email="invitado@example.com", guest_name="Invitado")

        response = client.post(f"/api/orders/{order['order_number']}/refund-request",
                               json={"reason": "No lo necesito"})

        assert response.status_code == 401

    def test_delivered_not_eligible(self, client, auth_headers, market, make_order, order_ops):
        order = make_order()
        number = order["order_number"]
        order_ops.update_order_status(number, market.vendor, "processing")
        order_ops.update_order_status(number, market.vendor, "shipped", carrier="DHL", tracking_number="1")
        order_ops.update_order_status(number, market.vendor, "delivered")

        response = client.post(f"/api/orders/{number}/refund-request",
                               json={"reason": "tarde"}, headers=auth_headers(market.customer))

        assert response.status_code == 400
        assert response.json()["code"] == "NOT_ELIGIBLE"

    def test_reason_required(self, client, auth_headers, market, make_order):
        order = make_order()

        response = client.post(f"/api/orders/{order['order_number']}/refund-request",
                               json={}, headers=auth_headers(market.customer))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestCancelOrder:
    """取消订单API测试"""

    def test_cancel_unpaid(self, client, auth_headers, market, make_order):
        order = make_order(payment_status="pending", payment_reference=None)

        response = client.post(f"/api/orders/{order['order_number']}/cancel",
                               json={"reason": "Me equivoqué"}, headers=auth_headers(market.customer))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

    def test_cancel_paid_not_eligible(self, client, auth_headers, market, make_order):
        order = make_order()

        response = client.post(f"/api/orders/{order['order_number']}/cancel",
                               json={}, headers=auth_headers(market.customer))

        assert response.status_code == 400
        assert response.json()["code"] == "NOT_ELIGIBLE"
