# 订单生命周期操作：下单、查询、游客查单、物流跟踪、履约状态推进

import json
import logging
import secrets
import sqlite3
import string
from datetime import datetime, timezone, timedelta
from typing import List, Optional, Dict, Any

from .manager import DatabaseManager
from .schema import ORDER_STATUSES, PAYMENT_STATUSES
from . import status as order_status
from services.notifier import Notifier, safe_notify
from utils.errors import (
    NotFoundError, ForbiddenError, ValidationError, NotEligibleError, InvalidTransitionError
)
from utils.response import build_pagination
from utils.validators import (
    validate_email, validate_order_number, validate_positive_integer,
    validate_string_length, normalize_pagination, parse_date_boundary
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_ATTEMPTS = 10

# 状态推进对应的顾客通知模板
STATUS_TEMPLATES = {
    order_status.PROCESSING: 'order_processing',
    order_status.SHIPPED: 'order_shipped',
    order_status.DELIVERED: 'order_delivered',
}


def utc_now(offset_seconds: float = 0) -> str:
    """当前UTC时间，格式与 CURRENT_TIMESTAMP 一致"""
    moment = datetime.now(timezone.utc) + timedelta(seconds=offset_seconds)
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def generate_order_number(now: Optional[datetime] = None) -> str:
    """生成订单号 LM-YYMM-XXXX"""
    now = now or datetime.now(timezone.utc)
    suffix = ''.join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
    return f"LM-{now.strftime('%y%m')}-{suffix}"


def order_not_found(order_number: Any) -> NotFoundError:
    # 不存在与无权查看返回同一个错误
    return NotFoundError(f"订单 {order_number} 不存在或不可见", code="ORDER_NOT_FOUND")


class OrderOperations:
    """
    订单生命周期操作类

    actor/requester 为登录用户信息字典：
    {'user_id', 'role', 'vendor_id', 'email'}；游客为 {'role': 'guest', 'email'}
    """
    def __init__(self, db_manager: DatabaseManager, notifier: Optional[Notifier] = None):
        self.db = db_manager
        self.notifier = notifier

    # 公共辅助函数（退款流程共用）
    def fetch_order_row(self, order_number: str) -> Optional[sqlite3.Row]:
        if not validate_order_number(order_number):
            return None
        return self.db.conn.execute("""
            SELECT o.*, u.email AS owner_email, u.name AS owner_name
            FROM orders o
            LEFT JOIN users u ON o.user_id = u.user_id
            WHERE o.order_number = ?
        """, [order_number]).fetchone()

    def can_view(self, order: sqlite3.Row, actor: Optional[Dict[str, Any]]) -> bool:
        """订单所属顾客、订单商家、管理员，或提供匹配邮箱的游客可见"""
        if not actor:
            return False

        role = actor.get('role')
        if role == 'admin':
            return True
        if role == 'vendor' and actor.get('vendor_id') and actor['vendor_id'] == order['vendor_id']:
            return True
        if actor.get('user_id') and actor['user_id'] == order['user_id']:
            return True
        if role == 'guest':
            return self.email_matches(order, actor.get('email'))
        return False

    def email_matches(self, order: sqlite3.Row, email: Optional[str]) -> bool:
        if not email:
            return False
        email = email.strip().lower()
        candidates = [order['guest_email'], order['owner_email']]
        return any(c and c.lower() == email for c in candidates)

    def get_visible_order(self, order_number: str, actor: Optional[Dict[str, Any]]) -> sqlite3.Row:
        order = self.fetch_order_row(order_number)
        if order is None or not self.can_view(order, actor):
            raise order_not_found(order_number)
        return order

    def customer_contact(self, order: sqlite3.Row) -> Optional[str]:
        return order['guest_email'] or order['owner_email']

    def vendor_contact(self, vendor_id: int) -> Optional[str]:
        row = self.db.conn.execute(
            "SELECT email FROM vendors WHERE vendor_id = ?", [vendor_id]
        ).fetchone()
        return row['email'] if row else None

    def record_event(self, order_id: int, action: str, actor_id: Optional[int] = None,
                     details: Optional[Dict[str, Any]] = None):
        """追加订单审计事件（需在事务内调用）"""
        self.db.conn.execute("""
            INSERT INTO order_events (order_id, action, actor_id, details, created_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
        """, [order_id, action, actor_id, json.dumps(details or {}, ensure_ascii=False)])

    def restore_stock(self, order_id: int) -> int:
        """按订单明细回补库存（需在事务内调用），返回回补的件数"""
        items = self.db.conn.execute(
            "SELECT product_id, quantity FROM order_items WHERE order_id = ?", [order_id]
        ).fetchall()
        for item in items:
            self.db.conn.execute("""
                UPDATE products SET stock = stock + ?, updated_at = CURRENT_TIMESTAMP
                WHERE product_id = ?
            """, [item['quantity'], item['product_id']])
        return sum(item['quantity'] for item in items)

    def notify(self, recipient: Optional[str], template_id: str, data: Dict[str, Any]):
        safe_notify(self.notifier, recipient, template_id, data)

    def _load_items(self, order_id: int) -> List[Dict[str, Any]]:
        rows = self.db.conn.execute("""
            SELECT item_id, product_id, product_name, quantity, unit_price_cents
            FROM order_items WHERE order_id = ?
            ORDER BY item_id
        """, [order_id]).fetchall()
        return [{
            'item_id': row['item_id'],
            'product_id': row['product_id'],
            'product_name': row['product_name'],
            'quantity': row['quantity'],
            'unit_price_cents': row['unit_price_cents'],
            'subtotal_cents': row['quantity'] * row['unit_price_cents']
        } for row in rows]

    def _load_refund_request(self, order_id: int) -> Optional[Dict[str, Any]]:
        row = self.db.conn.execute("""
            SELECT request_id, status, reason, decision_notes, decider_role,
                   requested_at, decided_at
            FROM refund_requests WHERE order_id = ?
            ORDER BY request_id DESC LIMIT 1
        """, [order_id]).fetchone()
        return dict(row) if row else None

    def _order_summary(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'order_id': row['order_id'],
            'order_number': row['order_number'],
            'user_id': row['user_id'],
            'guest_email': row['guest_email'],
            'guest_name': row['guest_name'],
            'vendor_id': row['vendor_id'],
            'total_cents': row['total_cents'],
            'currency': row['currency'],
            'status': row['status'],
            'payment_status': row['payment_status'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def _order_detail(self, row: sqlite3.Row) -> Dict[str, Any]:
        detail = self._order_summary(row)
        detail.update({
            'carrier': row['carrier'],
            'tracking_number': row['tracking_number'],
            'tracking_url': row['tracking_url'],
            'estimated_delivery': row['estimated_delivery'],
            'shipped_at': row['shipped_at'],
            'delivered_at': row['delivered_at'],
            'cancelled_at': row['cancelled_at'],
            'cancellation_reason': row['cancellation_reason'],
            'items': self._load_items(row['order_id']),
            'refund_request': self._load_refund_request(row['order_id'])
        })

        vendor = self.db.conn.execute(
            "SELECT vendor_id, business_name, email FROM vendors WHERE vendor_id = ?",
            [row['vendor_id']]
        ).fetchone()
        detail['vendor'] = dict(vendor) if vendor else None
        return detail

    # 下单（结账完成回调）
    def create_order(self, vendor_id: int, items: List[Dict[str, Any]], user_id: Optional[int] = None,
                     guest_email: Optional[str] = None, guest_name: Optional[str] = None,
                     payment_status: str = 'pending', payment_reference: Optional[str] = None,
                     order_number: Optional[str] = None, created_at: Optional[str] = None,
                     currency: str = 'MXN') -> Dict[str, Any]:
        """
        创建订单，锁定下单时单价并扣减库存

        Args:
            vendor_id: 商家ID（一个订单只属于一个商家）
            items: [{'product_id': 1, 'quantity': 2}, ...]，至少一项
            user_id: 注册用户ID，与游客信息二选一
            guest_email: 游客邮箱
            guest_name: 游客姓名
            payment_status: 下单时的支付状态（pending 或 paid）
            payment_reference: 支付网关凭证
            order_number: 指定订单号，默认自动生成
            created_at: 指定创建时间（导入历史订单用）

        Returns:
            订单详情
        """
        if not items:
            raise ValidationError("订单至少包含一个商品")

        is_guest = guest_email is not None or guest_name is not None
        if user_id is not None and is_guest:
            raise ValidationError("注册用户订单不能同时包含游客信息")
        if user_id is None:
            if not validate_email(guest_email) or not validate_string_length(guest_name or '', 1, 100):
                raise ValidationError("游客订单需要有效的邮箱和姓名")
            guest_email = guest_email.strip().lower()
            guest_name = guest_name.strip()

        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"未知的支付状态: {payment_status}")
        if order_number is not None and not validate_order_number(order_number):
            raise ValidationError(f"订单号格式错误: {order_number}")

        quantities: Dict[int, int] = {}
        for item in items:
            product_id = item.get('product_id')
            quantity = item.get('quantity')
            if not validate_positive_integer(product_id) or not validate_positive_integer(quantity):
                raise ValidationError("商品ID和数量必须为正整数")
            quantities[int(product_id)] = quantities.get(int(product_id), 0) + int(quantity)

        def create_order_operation():
            vendor = self.db.conn.execute(
                "SELECT vendor_id, is_active FROM vendors WHERE vendor_id = ?", [vendor_id]
            ).fetchone()
            if not vendor or not vendor['is_active']:
                raise NotFoundError(f"商家ID {vendor_id} 不存在或已停用")

            if user_id is not None:
                user = self.db.conn.execute(
                    "SELECT user_id FROM users WHERE user_id = ?", [user_id]
                ).fetchone()
                if not user:
                    raise NotFoundError(f"用户ID {user_id} 不存在")

            number = order_number or self._unique_order_number()
            if order_number and self.db.conn.execute(
                "SELECT 1 FROM orders WHERE order_number = ?", [order_number]
            ).fetchone():
                raise ValidationError(f"订单号 {order_number} 已存在")

            captured = []
            for product_id, quantity in quantities.items():
                product = self.db.conn.execute("""
                    SELECT product_id, vendor_id, name, price_cents, is_active
                    FROM products WHERE product_id = ?
                """, [product_id]).fetchone()
                if not product or not product['is_active']:
                    raise NotFoundError(f"商品ID {product_id} 不存在或已下架")
                if product['vendor_id'] != vendor_id:
                    raise ValidationError(f"商品 {product_id} 不属于商家 {vendor_id}")

                # 条件扣减库存，避免超卖
                cursor = self.db.conn.execute("""
                    UPDATE products SET stock = stock - ?, updated_at = CURRENT_TIMESTAMP
                    WHERE product_id = ? AND stock >= ?
                """, [quantity, product_id, quantity])
                if cursor.rowcount == 0:
                    raise NotEligibleError(f"商品 '{product['name']}' 库存不足")

                captured.append((product, quantity))

            total_cents = sum(p['price_cents'] * q for p, q in captured)

            cursor = self.db.conn.execute("""
                INSERT INTO orders (order_number, user_id, guest_email, guest_name, vendor_id,
                                    total_cents, currency, status, payment_status, payment_reference,
                                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?,
                        COALESCE(?, CURRENT_TIMESTAMP), COALESCE(?, CURRENT_TIMESTAMP))
            """, [number, user_id, guest_email, guest_name, vendor_id, total_cents, currency,
                  payment_status, payment_reference, created_at, created_at])
            order_id = cursor.lastrowid

            for product, quantity in captured:
                self.db.conn.execute("""
                    INSERT INTO order_items (order_id, product_id, product_name, quantity,
                                             unit_price_cents, created_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """, [order_id, product['product_id'], product['name'], quantity, product['price_cents']])

            self.record_event(order_id, 'created', user_id, {'total_cents': total_cents})
            return number

        number = self.db.execute_transaction([create_order_operation])[0]
        logger.info(f"创建订单 {number}，商家 {vendor_id}")
        return self._order_detail(self.fetch_order_row(number))

    def _unique_order_number(self) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            number = generate_order_number()
            exists = self.db.conn.execute(
                "SELECT 1 FROM orders WHERE order_number = ?", [number]
            ).fetchone()
            if not exists:
                return number
        raise RuntimeError("无法生成唯一订单号")

    def get_order_by_number(self, order_number: str, requester: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        获取订单详情（含明细和商家信息）

        Args:
            order_number: 订单号
            requester: 当前用户

        Returns:
            订单详情

        Raises:
            NotFoundError: 订单不存在或对当前用户不可见
        """
        order = self.get_visible_order(order_number, requester)
        return self._order_detail(order)

    def _build_filters(self, search: Optional[str], status: Optional[str],
                       date_from: Optional[str], date_to: Optional[str]):
        clauses, params = [], []

        if search:
            clauses.append("o.order_number LIKE ?")
            params.append(f"%{search.strip()}%")

        if status:
            if status not in ORDER_STATUSES:
                raise ValidationError(f"未知的订单状态: {status}")
            clauses.append("o.status = ?")
            params.append(status)

        try:
            start = parse_date_boundary(date_from)
            end = parse_date_boundary(date_to, end_of_day=True)
        except ValueError as e:
            raise ValidationError(str(e))

        if start:
            clauses.append("o.created_at >= ?")
            params.append(start)
        if end:
            clauses.append("o.created_at <= ?")
            params.append(end)

        return clauses, params

    def _query_orders(self, scope_clause: str, scope_param: Any, search, status,
                      date_from, date_to, page, limit) -> Dict[str, Any]:
        page, limit = normalize_pagination(page, limit)
        clauses, params = self._build_filters(search, status, date_from, date_to)
        where_sql = " AND ".join([scope_clause] + clauses)
        params = [scope_param] + params

        total_count = self.db.conn.execute(
            f"SELECT COUNT(*) FROM orders o WHERE {where_sql}", params
        ).fetchone()[0]

        rows = self.db.conn.execute(f"""
            SELECT o.*,
                   (SELECT COALESCE(SUM(quantity), 0) FROM order_items oi
                    WHERE oi.order_id = o.order_id) AS item_count
            FROM orders o
            WHERE {where_sql}
            ORDER BY o.created_at DESC, o.order_id DESC
            LIMIT ? OFFSET ?
        """, params + [limit, (page - 1) * limit]).fetchall()

        orders = []
        for row in rows:
            summary = self._order_summary(row)
            summary['item_count'] = row['item_count']
            orders.append(summary)

        return {
            'orders': orders,
            'pagination': build_pagination(total_count, page, limit)
        }

    def list_orders(self, owner_id: int, search: Optional[str] = None, status: Optional[str] = None,
                    date_from: Optional[str] = None, date_to: Optional[str] = None,
                    page: Any = 1, limit: Any = 10) -> Dict[str, Any]:
        """
        顾客订单列表，按创建时间倒序

        Args:
            owner_id: 订单所属用户（必填）
            search: 订单号模糊搜索
            status: 订单状态过滤
            date_from: 起始日期（含）
            date_to: 截止日期（含）
            page: 页码，非法时为1
            limit: 每页条数（1-50），非法时为10

        Returns:
            {'orders': [...], 'pagination': {...}}
        """
        if owner_id is None:
            raise ValidationError("缺少订单所属用户")
        return self._query_orders("o.user_id = ?", owner_id, search, status,
                                  date_from, date_to, page, limit)

    def list_vendor_orders(self, vendor_id: int, search: Optional[str] = None,
                           status: Optional[str] = None, date_from: Optional[str] = None,
                           date_to: Optional[str] = None, page: Any = 1, limit: Any = 10) -> Dict[str, Any]:
        """商家订单列表，过滤条件与 list_orders 相同"""
        if vendor_id is None:
            raise ValidationError("缺少商家ID")
        return self._query_orders("o.vendor_id = ?", vendor_id, search, status,
                                  date_from, date_to, page, limit)

    def lookup_guest_order(self, email: Optional[str], order_number: Optional[str]) -> Dict[str, Any]:
        """
        游客查单：邮箱和订单号必须对应同一订单

        邮箱可以是订单上的游客邮箱，也可以是注册用户的邮箱（不区分大小写）。
        订单号不存在与邮箱不匹配返回相同的错误。
        """
        if not email or not order_number:
            raise ValidationError("邮箱和订单号均为必填项")

        order = self.fetch_order_row(order_number.strip())
        if order is None or not self.email_matches(order, email):
            raise order_not_found(order_number)

        return self._order_detail(order)

    def get_order_tracking(self, order_number: str) -> Dict[str, Any]:
        """
        公开物流跟踪信息，不含金额和个人信息
        """
        order = self.fetch_order_row(order_number)
        if order is None:
            raise order_not_found(order_number)

        actions = sorted(order_status.TRACKING_ACTIONS)
        events = self.db.conn.execute(f"""
            SELECT action, created_at FROM order_events
            WHERE order_id = ? AND action IN ({', '.join('?' * len(actions))})
            ORDER BY created_at, event_id
        """, [order['order_id']] + actions).fetchall()

        return {
            'order_number': order['order_number'],
            'status': order['status'],
            'carrier': order['carrier'],
            'tracking_number': order['tracking_number'],
            'tracking_url': order['tracking_url'],
            'estimated_delivery': order['estimated_delivery'],
            'shipped_at': order['shipped_at'],
            'delivered_at': order['delivered_at'],
            'timeline': [{'action': e['action'], 'timestamp': e['created_at']} for e in events]
        }

    def update_order_status(self, order_number: str, actor: Dict[str, Any], new_status: str,
                            carrier: Optional[str] = None, tracking_number: Optional[str] = None,
                            tracking_url: Optional[str] = None,
                            estimated_delivery: Optional[str] = None) -> Dict[str, Any]:
        """
        商家/管理员推进履约状态（processing -> shipped -> delivered）

        Args:
            order_number: 订单号
            actor: 当前用户（商家或管理员）
            new_status: 目标状态
            carrier: 承运商（发货时必填）
            tracking_number: 运单号（发货时必填）
            tracking_url: 跟踪链接
            estimated_delivery: 预计送达时间

        Returns:
            更新后的订单详情
        """
        if not actor or actor.get('role') not in ('vendor', 'admin'):
            raise ForbiddenError("只有商家或管理员可以更新订单状态")

        if new_status not in ORDER_STATUSES:
            raise ValidationError(f"未知的订单状态: {new_status}")

        if new_status == order_status.SHIPPED:
            if not validate_string_length(carrier or '', 1, 50) or \
                    not validate_string_length(tracking_number or '', 1, 100):
                raise ValidationError("发货需要填写承运商和运单号")

        try:
            estimated = parse_date_boundary(estimated_delivery)
        except ValueError as e:
            raise ValidationError(str(e))

        order = self.get_visible_order(order_number, actor)
        current = order['status']

        if new_status not in order_status.FULFILLMENT_TARGETS:
            # 取消和退款走各自的流程
            raise InvalidTransitionError(
                f"订单状态 {new_status} 不能直接设置",
                params={'current': current, 'target': new_status}
            )
        if current == order_status.REFUND_REQUESTED:
            # 只能通过批准或驳回退款离开该状态
            raise InvalidTransitionError(
                f"订单 {order_number} 有待处理的退款申请",
                params={'current': current, 'target': new_status}
            )
        order_status.ensure_transition(current, new_status)

        def update_status_operation():
            assignments = ["status = ?", "updated_at = CURRENT_TIMESTAMP"]
            params: List[Any] = [new_status]
            if new_status == order_status.SHIPPED:
                assignments += ["carrier = ?", "tracking_number = ?", "tracking_url = ?",
                                "estimated_delivery = ?", "shipped_at = CURRENT_TIMESTAMP"]
                params += [carrier.strip(), tracking_number.strip(), tracking_url, estimated]
            elif new_status == order_status.DELIVERED:
                assignments.append("delivered_at = CURRENT_TIMESTAMP")

            # 以读取到的状态为条件更新，并发修改时影响行数为0
            cursor = self.db.conn.execute(
                f"UPDATE orders SET {', '.join(assignments)} WHERE order_id = ? AND status = ?",
                params + [order['order_id'], current]
            )
            if cursor.rowcount == 0:
                raise InvalidTransitionError(
                    f"订单 {order_number} 状态已被修改",
                    params={'current': current, 'target': new_status}
                )

            self.record_event(order['order_id'], new_status, actor.get('user_id'), {
                'from': current,
                'carrier': carrier,
                'tracking_number': tracking_number
            })

        self.db.execute_transaction([update_status_operation])
        logger.info(f"订单 {order_number} 状态 {current} -> {new_status}")

        updated = self.fetch_order_row(order_number)
        self.notify(self.customer_contact(updated), STATUS_TEMPLATES[new_status], {
            'order_number': order_number,
            'status': new_status,
            'carrier': updated['carrier'],
            'tracking_number': updated['tracking_number'],
            'tracking_url': updated['tracking_url']
        })
        return self._order_detail(updated)
