# 测试配置和固定装置

import pytest
import sys
import threading
import uuid
from pathlib import Path
from types import SimpleNamespace

# 添加项目路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from db.manager import DatabaseManager
from db.schema import create_schema
from db.job_operations import JobOperations
from db.order_operations import OrderOperations
from db.refund_operations import RefundOperations
from db.supporting_operations import SupportingOperations
from services.notifier import Notifier
from services.payment_gateway import PaymentGateway, PaymentGatewayError, RefundResult


class RecordingNotifier(Notifier):
    """记录所有通知；fail=True 时模拟投递失败"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self._lock = threading.Lock()

    def notify(self, recipient, template_id, data):
        if self.fail:
            raise ConnectionError("notification service unavailable")
        with self._lock:
            self.sent.append((recipient, template_id, data))

    def templates(self):
        return [template_id for _, template_id, _ in self.sent]

    def to(self, recipient):
        return [template_id for r, template_id, _ in self.sent if r == recipient]


class ScriptedGateway(PaymentGateway):
    """
    可编排的支付网关

    outcomes 中依次取出每次调用的结果：None 表示成功，异常实例表示失败；
    取完后一律成功。同一个幂等键成功后重复调用返回同一笔交易。
    """

    def __init__(self):
        self.outcomes = []
        self.calls = []
        self.completed = {}
        self._lock = threading.Lock()

    def refund(self, payment_reference, amount_cents, idempotency_key):
        with self._lock:
            self.calls.append((payment_reference, amount_cents, idempotency_key))
            if idempotency_key in self.completed:
                return self.completed[idempotency_key]

            outcome = self.outcomes.pop(0) if self.outcomes else None
            if outcome is not None:
                raise outcome

            result = RefundResult(success=True, transaction_id=f"gw_{uuid.uuid4().hex[:10]}")
            self.completed[idempotency_key] = result
            return result

    @property
    def refund_count(self):
        return len(self.completed)


@pytest.fixture
def db_path(tmp_path):
    """测试数据库文件（多个连接共享同一文件）"""
    return str(tmp_path / "luzimarket-test.db")


@pytest.fixture
def test_db(db_path):
    """测试数据库实例（真实表结构）"""
    db = DatabaseManager(db_path, auto_connect=True)
    create_schema(db)

    yield db
    db.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def support_ops(test_db):
    """支持业务操作实例"""
    return SupportingOperations(test_db)


@pytest.fixture
def order_ops(test_db, notifier):
    """订单操作实例"""
    return OrderOperations(test_db, notifier)


@pytest.fixture
def refund_ops(test_db, gateway, notifier):
    """退款操作实例"""
    return RefundOperations(test_db, gateway, notifier)


@pytest.fixture
def job_ops(test_db, notifier):
    """定时任务操作实例"""
    return JobOperations(test_db, notifier, low_stock_threshold=5)


@pytest.fixture
def market(support_ops):
    """
    示例数据：管理员、两个商家、两个顾客、若干商品

    各角色以登录用户字典的形式提供（与接口层注入的 current_user 一致）
    """
    admin = support_ops.register_user("admin@luzimarket.test", "admin-pass", name="Admin", role="admin")

    vendor_user = support_ops.register_user("flores@luzimarket.test", "vendor-pass", name="Flores")
    vendor = support_ops.create_vendor(vendor_user["user_id"], "Flores del Valle")

    other_vendor_user = support_ops.register_user("dulces@luzimarket.test", "vendor-pass", name="Dulces")
    other_vendor = support_ops.create_vendor(other_vendor_user["user_id"], "Dulces Finos")

    customer = support_ops.register_user("cliente@example.com", "cliente-pass", name="Ana")
    other_customer = support_ops.register_user("otro@example.com", "otro-pass", name="Luis")

    roses = support_ops.create_product(vendor["vendor_id"], "Ramo de rosas", 50000, 10)
    chocolates = support_ops.create_product(vendor["vendor_id"], "Chocolates", 20000, 3)
    candles = support_ops.create_product(vendor["vendor_id"], "Velas", 15000, 100)
    truffles = support_ops.create_product(other_vendor["vendor_id"], "Trufas", 30000, 50)

    return SimpleNamespace(
        admin=support_ops.get_user_by_id(admin["user_id"]),
        vendor=support_ops.get_user_by_id(vendor_user["user_id"]),
        vendor_id=vendor["vendor_id"],
        other_vendor=support_ops.get_user_by_id(other_vendor_user["user_id"]),
        other_vendor_id=other_vendor["vendor_id"],
        customer=support_ops.get_user_by_id(customer["user_id"]),
        other_customer=support_ops.get_user_by_id(other_customer["user_id"]),
        roses=roses,
        chocolates=chocolates,
        candles=candles,
        truffles=truffles
    )


@pytest.fixture
def make_order(order_ops, market):
    """
    下单工厂：默认为顾客 Ana 在 Flores 购买一束玫瑰并已付款
    """
    counter = {"n": 0}

    def _make_order(**overrides):
        counter["n"] += 1
        params = {
            "vendor_id": market.vendor_id,
            "items": [{"product_id": market.roses["product_id"], "quantity": 1}],
            "user_id": market.customer["user_id"],
            "payment_status": "paid",
            "payment_reference": f"pi_test_{counter['n']:04d}",
        }
        params.update(overrides)
        if params.get("guest_email"):
            params["user_id"] = None
        return order_ops.create_order(**params)

    return _make_order


@pytest.fixture
def guest(market):
    """游客身份"""
    return {"user_id": None, "role": "guest", "email": "invitado@example.com"}


@pytest.fixture
def failing_notifier():
    """投递必然失败的通知发送器"""
    return RecordingNotifier(fail=True)
