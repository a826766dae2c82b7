# 退款/取消流程：顾客申请、商家或管理员审批、与支付网关对账

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from .manager import DatabaseManager
from .order_operations import OrderOperations, utc_now
from .schema import REFUND_REQUEST_STATUSES
from . import status as order_status
from services.notifier import Notifier
from services.payment_gateway import PaymentGateway, PaymentGatewayError
from utils.errors import (
    ForbiddenError, ValidationError, NotEligibleError, AlreadyRequestedError,
    AlreadyDecidedError, InvalidTransitionError, GatewayError
)
from utils.response import build_pagination
from utils.validators import validate_string_length, normalize_pagination

logger = logging.getLogger(__name__)

OPEN_REQUEST_STATUSES = ('pending', 'processing')
DECIDER_ROLES = ('vendor', 'admin')


class RefundOperations:
    """
    退款/取消流程操作类

    审批分两步：先把申请从 pending 抢占为 processing，再在事务外调用支付网关；
    网关失败时释放回 pending，成功后在同一事务中完成订单、库存和商家账本的更新。
    """
    def __init__(self, db_manager: DatabaseManager, payment_gateway: PaymentGateway,
                 notifier: Optional[Notifier] = None, claim_stale_seconds: float = 300):
        """
        Args:
            db_manager: 数据库管理器
            payment_gateway: 支付网关
            notifier: 通知发送器
            claim_stale_seconds: processing 状态超过该时长视为处理中断，可被重新抢占
        """
        self.db = db_manager
        self.gateway = payment_gateway
        self.claim_stale_seconds = claim_stale_seconds
        self.orders = OrderOperations(db_manager, notifier)

    def _requester_type(self, order: sqlite3.Row, requester: Dict[str, Any]) -> str:
        if requester.get('user_id') and requester['user_id'] == order['user_id']:
            return 'customer'
        if requester.get('role') == 'guest':
            return 'guest'
        if requester.get('role') == 'admin':
            return 'system'
        raise ForbiddenError("只有下单顾客可以申请退款")

    def _verify_decider(self, decider: Optional[Dict[str, Any]]):
        if not decider or decider.get('role') not in DECIDER_ROLES:
            raise ForbiddenError("只有商家或管理员可以处理退款申请")

    def _latest_request(self, order_id: int) -> Optional[sqlite3.Row]:
        return self.db.conn.execute("""
            SELECT * FROM refund_requests WHERE order_id = ?
            ORDER BY request_id DESC LIMIT 1
        """, [order_id]).fetchone()

    def _open_request(self, order_id: int) -> sqlite3.Row:
        """获取未决申请；没有时按最近一次申请的状态给出错误"""
        request = self._latest_request(order_id)
        if request is None:
            raise NotEligibleError(f"订单 {order_id} 没有退款申请")
        if request['status'] not in OPEN_REQUEST_STATUSES:
            raise AlreadyDecidedError(f"退款申请 {request['request_id']} 已处理: {request['status']}")
        return request

    def _generate_transaction_no(self, prefix: str = "RFD") -> str:
        """生成商家账本交易号，如 RFD20240125000001"""
        date_prefix = f"{prefix}{datetime.now(timezone.utc).strftime('%Y%m%d')}"

        max_seq = self.db.conn.execute("""
            SELECT MAX(CAST(substr(transaction_no, 12, 6) AS INTEGER))
            FROM vendor_transactions
            WHERE transaction_no LIKE ?
        """, [f"{date_prefix}%"]).fetchone()[0]

        seq = (max_seq or 0) + 1
        return f"{date_prefix}{seq:06d}"

    def _debit_vendor(self, vendor_id: int, amount_cents: int, order_id: int,
                      description: str) -> Dict[str, Any]:
        """退款从商家余额中扣回（需在事务内调用）"""
        current_balance = self.db.conn.execute(
            "SELECT balance_cents FROM vendors WHERE vendor_id = ?", [vendor_id]
        ).fetchone()[0]

        new_balance = current_balance - amount_cents
        transaction_no = self._generate_transaction_no()

        self.db.conn.execute(
            "UPDATE vendors SET balance_cents = ? WHERE vendor_id = ?",
            [new_balance, vendor_id]
        )
        self.db.conn.execute("""
            INSERT INTO vendor_transactions (transaction_no, vendor_id, order_id, type, amount_cents,
                                             balance_before_cents, balance_after_cents, description,
                                             created_at)
            VALUES (?, ?, ?, 'refund', ?, ?, ?, ?, CURRENT_TIMESTAMP)
        """, [transaction_no, vendor_id, order_id, -amount_cents, current_balance, new_balance,
              description])

        return {
            'transaction_no': transaction_no,
            'balance_before': current_balance,
            'balance_after': new_balance
        }

    # 顾客申请退款
    def request_refund(self, order_number: str, reason: str,
                       requester: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        申请退款/取消

        Args:
            order_number: 订单号
            reason: 申请原因（必填）
            requester: 登录顾客，或 {'role': 'guest', 'email': ...}

        Returns:
            申请信息

        Raises:
            ValidationError: 原因为空
            NotFoundError: 订单不存在或不可见
            NotEligibleError: 订单状态或支付状态不允许退款
            AlreadyRequestedError: 已有未决申请
        """
        if not validate_string_length(reason, min_length=1, max_length=1000):
            raise ValidationError("退款原因不能为空且不超过1000字符")
        reason = reason.strip()

        order = self.orders.get_visible_order(order_number, requester)
        requester_type = self._requester_type(order, requester)
        current = order['status']

        if current == order_status.REFUND_REQUESTED:
            raise AlreadyRequestedError(f"订单 {order_number} 已有待处理的退款申请")
        if current not in order_status.REFUNDABLE_STATES:
            raise NotEligibleError(f"订单状态为 {current}，不能申请退款")
        if order['payment_status'] != 'paid':
            raise NotEligibleError(f"订单支付状态为 {order['payment_status']}，不能申请退款")
        order_status.ensure_transition(current, order_status.REFUND_REQUESTED)

        def request_refund_operation():
            existing = self.db.conn.execute("""
                SELECT request_id FROM refund_requests
                WHERE order_id = ? AND status IN ('pending', 'processing')
            """, [order['order_id']]).fetchone()
            if existing:
                raise AlreadyRequestedError(f"订单 {order_number} 已有待处理的退款申请")

            cursor = self.db.conn.execute("""
                UPDATE orders SET status = 'refund_requested', updated_at = CURRENT_TIMESTAMP
                WHERE order_id = ? AND status = ? AND payment_status = 'paid'
            """, [order['order_id'], current])
            if cursor.rowcount == 0:
                latest = self.db.conn.execute(
                    "SELECT status FROM orders WHERE order_id = ?", [order['order_id']]
                ).fetchone()
                if latest['status'] == order_status.REFUND_REQUESTED:
                    raise AlreadyRequestedError(f"订单 {order_number} 已有待处理的退款申请")
                raise NotEligibleError(f"订单 {order_number} 状态已变更为 {latest['status']}")

            try:
                cursor = self.db.conn.execute("""
                    INSERT INTO refund_requests (order_id, requested_by, requester_type, reason,
                                                 status, previous_status, requested_at)
                    VALUES (?, ?, ?, ?, 'pending', ?, CURRENT_TIMESTAMP)
                """, [order['order_id'], requester.get('user_id'), requester_type, reason, current])
            except sqlite3.IntegrityError:
                raise AlreadyRequestedError(f"订单 {order_number} 已有待处理的退款申请")

            self.orders.record_event(order['order_id'], 'refund_requested', requester.get('user_id'), {
                'reason': reason,
                'previous_status': current
            })
            return cursor.lastrowid

        request_id = self.db.execute_transaction([request_refund_operation])[0]
        logger.info(f"订单 {order_number} 申请退款，申请ID {request_id}")

        self.orders.notify(self.orders.vendor_contact(order['vendor_id']), 'refund_requested', {
            'order_number': order_number,
            'reason': reason,
            'total_cents': order['total_cents']
        })

        return {
            'request_id': request_id,
            'order_number': order_number,
            'status': 'pending',
            'order_status': order_status.REFUND_REQUESTED,
            'previous_status': current,
            'reason': reason
        }

    # 商家/管理员批准退款
    def approve_refund(self, order_number: str, decider: Optional[Dict[str, Any]],
                       notes: Optional[str] = None) -> Dict[str, Any]:
        """
        批准退款并调用支付网关

        网关失败或超时时订单保持 refund_requested，支付状态不变，
        申请回到 pending，可以稍后重试；重试使用同一个幂等键。

        Raises:
            ForbiddenError: 非商家/管理员
            NotFoundError: 订单不存在或不属于该商家
            AlreadyDecidedError: 申请已被处理或正在处理
            NotEligibleError: 没有申请或订单未付款
            GatewayError: 支付网关失败
        """
        self._verify_decider(decider)
        order = self.orders.get_visible_order(order_number, decider)
        request = self._open_request(order['order_id'])

        if order['payment_status'] != 'paid':
            raise NotEligibleError(f"订单支付状态为 {order['payment_status']}，不能退款")
        if not order['payment_reference']:
            raise NotEligibleError(f"订单 {order_number} 缺少支付凭证")

        request_id = request['request_id']
        notes = notes.strip() if notes else None

        # 1. 抢占申请：pending，或处理超时的 processing
        stale_cutoff = utc_now(-self.claim_stale_seconds)

        def claim_operation():
            cursor = self.db.conn.execute("""
                UPDATE refund_requests
                SET status = 'processing', claimed_at = CURRENT_TIMESTAMP,
                    decided_by = ?, decider_role = ?
                WHERE request_id = ?
                  AND (status = 'pending' OR (status = 'processing' AND claimed_at < ?))
            """, [decider.get('user_id'), decider['role'], request_id, stale_cutoff])
            if cursor.rowcount == 0:
                raise AlreadyDecidedError(f"退款申请 {request_id} 已被处理")

        self.db.execute_transaction([claim_operation])

        # 2. 事务外调用网关
        idempotency_key = f"refund-{request_id}"
        try:
            result = self.gateway.refund(order['payment_reference'], order['total_cents'],
                                         idempotency_key=idempotency_key)
            if not result.success:
                raise PaymentGatewayError("支付网关返回失败")
        except PaymentGatewayError as e:
            self._release_claim(order['order_id'], request_id, decider, str(e))
            raise GatewayError(f"订单 {order_number} 退款失败: {str(e)}")
        except Exception:
            self._release_claim(order['order_id'], request_id, decider, "unexpected error")
            raise

        # 3. 网关成功后一次性提交
        def complete_refund_operation():
            cursor = self.db.conn.execute("""
                UPDATE refund_requests
                SET status = 'approved', decision_notes = ?, decided_by = ?, decider_role = ?,
                    gateway_transaction_id = ?, decided_at = CURRENT_TIMESTAMP
                WHERE request_id = ? AND status = 'processing'
            """, [notes, decider.get('user_id'), decider['role'], result.transaction_id, request_id])
            if cursor.rowcount == 0:
                raise AlreadyDecidedError(f"退款申请 {request_id} 已被处理")

            cursor = self.db.conn.execute("""
                UPDATE orders
                SET status = 'refunded', payment_status = 'refunded', updated_at = CURRENT_TIMESTAMP
                WHERE order_id = ? AND status = 'refund_requested' AND payment_status = 'paid'
            """, [order['order_id']])
            if cursor.rowcount == 0:
                raise InvalidTransitionError(
                    f"订单 {order_number} 状态已变更",
                    params={'current': order['status'], 'target': order_status.REFUNDED}
                )

            restored = self.orders.restore_stock(order['order_id'])
            ledger = self._debit_vendor(order['vendor_id'], order['total_cents'], order['order_id'],
                                        f"订单退款-{order_number}")

            self.orders.record_event(order['order_id'], 'refunded', decider.get('user_id'), {
                'request_id': request_id,
                'gateway_transaction_id': result.transaction_id,
                'notes': notes
            })
            return {'restored_quantity': restored, 'transaction_no': ledger['transaction_no']}

        completion = self.db.execute_transaction([complete_refund_operation])[0]
        logger.info(f"订单 {order_number} 退款完成，网关交易 {result.transaction_id}")

        self.orders.notify(self.orders.customer_contact(order), 'refund_approved', {
            'order_number': order_number,
            'amount_cents': order['total_cents'],
            'currency': order['currency'],
            'notes': notes
        })

        return {
            'request_id': request_id,
            'order_number': order_number,
            'status': 'approved',
            'order_status': order_status.REFUNDED,
            'payment_status': 'refunded',
            'gateway_transaction_id': result.transaction_id,
            'transaction_no': completion['transaction_no'],
            'restored_quantity': completion['restored_quantity']
        }

    def _release_claim(self, order_id: int, request_id: int, decider: Dict[str, Any], error: str):
        """网关失败后把申请放回 pending，订单状态不动"""
        def release_operation():
            self.db.conn.execute("""
                UPDATE refund_requests
                SET status = 'pending', claimed_at = NULL, decided_by = NULL, decider_role = NULL
                WHERE request_id = ? AND status = 'processing'
            """, [request_id])
            self.orders.record_event(order_id, 'refund_failed', decider.get('user_id'), {
                'request_id': request_id,
                'error': error
            })

        self.db.execute_transaction([release_operation])
        logger.warning(f"退款申请 {request_id} 网关失败，已释放: {error}")

    # 商家/管理员驳回退款
    def reject_refund(self, order_number: str, decider: Optional[Dict[str, Any]],
                      notes: str) -> Dict[str, Any]:
        """
        驳回退款，订单恢复到申请前的状态

        Args:
            order_number: 订单号
            decider: 商家或管理员
            notes: 驳回说明（必填，会发送给顾客）
        """
        if not validate_string_length(notes, min_length=1, max_length=1000):
            raise ValidationError("驳回说明不能为空且不超过1000字符")
        notes = notes.strip()

        self._verify_decider(decider)
        order = self.orders.get_visible_order(order_number, decider)
        request = self._open_request(order['order_id'])
        previous = request['previous_status']
        order_status.ensure_transition(order_status.REFUND_REQUESTED, previous)

        def reject_refund_operation():
            cursor = self.db.conn.execute("""
                UPDATE refund_requests
                SET status = 'rejected', decision_notes = ?, decided_by = ?, decider_role = ?,
                    decided_at = CURRENT_TIMESTAMP
                WHERE request_id = ? AND status = 'pending'
            """, [notes, decider.get('user_id'), decider['role'], request['request_id']])
            if cursor.rowcount == 0:
                raise AlreadyDecidedError(f"退款申请 {request['request_id']} 已被处理")

            cursor = self.db.conn.execute("""
                UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = ? AND status = 'refund_requested'
            """, [previous, order['order_id']])
            if cursor.rowcount == 0:
                raise InvalidTransitionError(
                    f"订单 {order_number} 不处于退款申请状态",
                    params={'current': order['status'], 'target': previous}
                )

            self.orders.record_event(order['order_id'], 'refund_rejected', decider.get('user_id'), {
                'request_id': request['request_id'],
                'notes': notes,
                'restored_status': previous
            })

        self.db.execute_transaction([reject_refund_operation])
        logger.info(f"订单 {order_number} 退款申请被驳回，恢复为 {previous}")

        self.orders.notify(self.orders.customer_contact(order), 'refund_rejected', {
            'order_number': order_number,
            'notes': notes
        })

        return {
            'request_id': request['request_id'],
            'order_number': order_number,
            'status': 'rejected',
            'order_status': previous,
            'notes': notes
        }

    # 未付款订单直接取消
    def cancel_order(self, order_number: str, actor: Optional[Dict[str, Any]],
                     reason: Optional[str] = None) -> Dict[str, Any]:
        """
        取消未付款订单并回补库存；已付款订单需走退款申请

        Raises:
            NotFoundError: 订单不存在或不可见
            NotEligibleError: 订单已付款
            InvalidTransitionError: 当前状态不能取消
        """
        order = self.orders.get_visible_order(order_number, actor)
        current = order['status']

        if order['payment_status'] == 'paid':
            raise NotEligibleError(f"订单 {order_number} 已付款，请提交退款申请")
        order_status.ensure_transition(current, order_status.CANCELLED)

        reason = reason.strip() if reason and reason.strip() else "顾客取消"

        def cancel_order_operation():
            cursor = self.db.conn.execute("""
                UPDATE orders
                SET status = 'cancelled', cancelled_at = CURRENT_TIMESTAMP,
                    cancellation_reason = ?, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = ? AND status = ? AND payment_status != 'paid'
            """, [reason, order['order_id'], current])
            if cursor.rowcount == 0:
                raise InvalidTransitionError(
                    f"订单 {order_number} 状态已被修改",
                    params={'current': current, 'target': order_status.CANCELLED}
                )

            restored = self.orders.restore_stock(order['order_id'])
            self.orders.record_event(order['order_id'], 'cancelled', actor.get('user_id'), {
                'reason': reason
            })
            return restored

        restored = self.db.execute_transaction([cancel_order_operation])[0]
        logger.info(f"订单 {order_number} 已取消: {reason}")

        self.orders.notify(self.orders.customer_contact(order), 'order_cancelled', {
            'order_number': order_number,
            'reason': reason
        })

        return {
            'order_number': order_number,
            'status': order_status.CANCELLED,
            'cancellation_reason': reason,
            'restored_quantity': restored
        }

    def list_refund_requests(self, vendor_id: Optional[int] = None, status: Optional[str] = None,
                             page: Any = 1, limit: Any = 10) -> Dict[str, Any]:
        """
        退款申请列表（商家看自己的，管理员看全部）

        Args:
            vendor_id: 商家ID，为空表示全部
            status: 申请状态过滤
        """
        page, limit = normalize_pagination(page, limit)
        clauses, params = [], []

        if vendor_id is not None:
            clauses.append("o.vendor_id = ?")
            params.append(vendor_id)
        if status:
            if status not in REFUND_REQUEST_STATUSES:
                raise ValidationError(f"未知的退款申请状态: {status}")
            clauses.append("r.status = ?")
            params.append(status)

        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total_count = self.db.conn.execute(f"""
            SELECT COUNT(*) FROM refund_requests r
            JOIN orders o ON r.order_id = o.order_id
            {where_sql}
        """, params).fetchone()[0]

        rows = self.db.conn.execute(f"""
            SELECT r.request_id, r.status, r.reason, r.requester_type, r.previous_status,
                   r.decision_notes, r.decider_role, r.requested_at, r.decided_at,
                   o.order_number, o.vendor_id, o.total_cents, o.currency,
                   o.status AS order_status, o.payment_status
            FROM refund_requests r
            JOIN orders o ON r.order_id = o.order_id
            {where_sql}
            ORDER BY r.requested_at DESC, r.request_id DESC
            LIMIT ? OFFSET ?
        """, params + [limit, (page - 1) * limit]).fetchall()

        return {
            'requests': [dict(row) for row in rows],
            'pagination': build_pagination(total_count, page, limit)
        }
