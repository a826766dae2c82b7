# 定时任务：库存预警、每日统计快照、弃购召回
# 只读订单/商品数据，写入预警和快照；重复执行同一周期时覆盖而不是新增

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any

from .manager import DatabaseManager
from services.notifier import Notifier, safe_notify
from utils.errors import ValidationError, NotFoundError
from utils.validators import (
    validate_date, validate_email, validate_positive_integer,
    validate_non_negative_integer, validate_string_length
)

logger = logging.getLogger(__name__)

TOP_PRODUCTS_LIMIT = 10
MAX_TREND_DAYS = 365
CART_RECOVERY_MIN_AGE = timedelta(hours=1)
CART_RECOVERY_MAX_AGE = timedelta(hours=24)

# 统一客户标识：注册用户ID或游客邮箱
CUSTOMER_KEY = "COALESCE('user:' || o.user_id, 'guest:' || LOWER(o.guest_email))"


def _format_ts(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class JobOperations:
    """
    定时任务操作类
    """
    def __init__(self, db_manager: DatabaseManager, notifier: Optional[Notifier] = None,
                 low_stock_threshold: int = 5):
        self.db = db_manager
        self.notifier = notifier
        self.low_stock_threshold = low_stock_threshold

    # 库存预警
    def check_low_stock(self, threshold: Optional[int] = None, period: Optional[str] = None) -> Dict[str, Any]:
        """
        检查低库存商品并写入预警

        同一商品同一周期只有一条预警，库存数变化时覆盖；
        只有本周期新出现的预警才通知商家。

        Args:
            threshold: 库存阈值（含），默认取配置
            period: 统计周期（YYYY-MM-DD），默认今天

        Returns:
            检查结果统计
        """
        threshold = self.low_stock_threshold if threshold is None else threshold
        if not validate_non_negative_integer(threshold):
            raise ValidationError("库存阈值必须为非负整数")
        threshold = int(threshold)

        period = period or _today()
        if not validate_date(period):
            raise ValidationError(f"日期格式错误: {period}")

        def check_low_stock_operation():
            products = self.db.conn.execute("""
                SELECT p.product_id, p.name, p.stock, p.vendor_id, v.email AS vendor_email
                FROM products p
                JOIN vendors v ON p.vendor_id = v.vendor_id
                WHERE p.is_active = 1 AND v.is_active = 1 AND p.stock <= ?
                ORDER BY p.vendor_id, p.stock
            """, [threshold]).fetchall()

            new_alerts = []
            for product in products:
                existing = self.db.conn.execute(
                    "SELECT alert_id FROM inventory_alerts WHERE product_id = ? AND period = ?",
                    [product['product_id'], period]
                ).fetchone()

                self.db.conn.execute("""
                    INSERT INTO inventory_alerts (product_id, vendor_id, period, stock, threshold,
                                                  status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 'open', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                    ON CONFLICT(product_id, period) DO UPDATE SET
                        stock = excluded.stock,
                        threshold = excluded.threshold,
                        updated_at = CURRENT_TIMESTAMP
                """, [product['product_id'], product['vendor_id'], period, product['stock'], threshold])

                if not existing:
                    new_alerts.append(dict(product))

            return len(products), new_alerts

        low_stock_count, new_alerts = self.db.execute_transaction([check_low_stock_operation])[0]

        # 按商家合并通知
        by_vendor: Dict[int, List[Dict[str, Any]]] = {}
        for alert in new_alerts:
            by_vendor.setdefault(alert['vendor_id'], []).append(alert)

        notified = 0
        for vendor_id, alerts in by_vendor.items():
            sent = safe_notify(self.notifier, alerts[0]['vendor_email'], 'low_stock_alert', {
                'vendor_id': vendor_id,
                'threshold': threshold,
                'products': [{'product_id': a['product_id'], 'name': a['name'], 'stock': a['stock']}
                             for a in alerts]
            })
            notified += int(sent)

        logger.info(f"库存检查 {period}: 低库存 {low_stock_count} 个，新预警 {len(new_alerts)} 个")
        return {
            'period': period,
            'threshold': threshold,
            'low_stock_count': low_stock_count,
            'new_alerts': len(new_alerts),
            'vendors_notified': notified
        }

    # 统计快照
    def _calculate_metrics(self, vendor_id: Optional[int], start: str, end: str) -> Dict[str, Any]:
        """计算某商家（vendor_id为空时为全平台）在时间段内已付款订单的指标"""
        scope_sql = "AND o.vendor_id = ?" if vendor_id is not None else ""
        scope_params = [vendor_id] if vendor_id is not None else []
        period_params = [start, end] + scope_params

        totals = self.db.conn.execute(f"""
            SELECT COALESCE(SUM(o.total_cents), 0) AS revenue,
                   COUNT(*) AS order_count,
                   COUNT(DISTINCT {CUSTOMER_KEY}) AS customers
            FROM orders o
            WHERE o.payment_status = 'paid' AND o.created_at BETWEEN ? AND ? {scope_sql}
        """, period_params).fetchone()

        # 时间段之前没有已付款订单的客户为新客户
        new_customers = self.db.conn.execute(f"""
            SELECT COUNT(*) FROM (
                SELECT DISTINCT {CUSTOMER_KEY} AS customer_key
                FROM orders o
                WHERE o.payment_status = 'paid' AND o.created_at BETWEEN ? AND ? {scope_sql}
            ) period_customers
            WHERE NOT EXISTS (
                SELECT 1 FROM orders o
                WHERE o.payment_status = 'paid' AND o.created_at < ? {scope_sql}
                  AND {CUSTOMER_KEY} = period_customers.customer_key
            )
        """, period_params + [start] + scope_params).fetchone()[0]

        top_products = self.db.conn.execute(f"""
            SELECT oi.product_id, oi.product_name,
                   SUM(oi.quantity) AS sales,
                   SUM(oi.quantity * oi.unit_price_cents) AS revenue_cents
            FROM order_items oi
            JOIN orders o ON oi.order_id = o.order_id
            WHERE o.payment_status = 'paid' AND o.created_at BETWEEN ? AND ? {scope_sql}
            GROUP BY oi.product_id, oi.product_name
            ORDER BY revenue_cents DESC, sales DESC
            LIMIT ?
        """, period_params + [TOP_PRODUCTS_LIMIT]).fetchall()

        revenue = totals['revenue']
        order_count = totals['order_count']
        return {
            'revenue_cents': revenue,
            'orders': order_count,
            'customers': totals['customers'],
            'average_order_value_cents': round(revenue / order_count) if order_count else 0,
            'new_customers': new_customers,
            'returning_customers': totals['customers'] - new_customers,
            'top_products': [dict(row) for row in top_products]
        }

    def _upsert_snapshot(self, scope_key: str, vendor_id: Optional[int], snapshot_date: str,
                         metrics: Dict[str, Any]):
        self.db.conn.execute("""
            INSERT INTO analytics_snapshots (scope_key, vendor_id, snapshot_date, metrics,
                                             created_at, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            ON CONFLICT(scope_key, snapshot_date) DO UPDATE SET
                metrics = excluded.metrics,
                updated_at = CURRENT_TIMESTAMP
        """, [scope_key, vendor_id, snapshot_date, json.dumps(metrics, ensure_ascii=False)])

    def create_daily_snapshots(self, snapshot_date: Optional[str] = None) -> Dict[str, Any]:
        """
        生成每日统计快照（每个活跃商家一条，另加全平台一条）

        Args:
            snapshot_date: 统计日期（YYYY-MM-DD），默认昨天

        Returns:
            生成结果
        """
        if snapshot_date is None:
            snapshot_date = (datetime.now(timezone.utc) - timedelta(days=1)).strftime("%Y-%m-%d")
        if not validate_date(snapshot_date):
            raise ValidationError(f"日期格式错误: {snapshot_date}")

        start = f"{snapshot_date} 00:00:00"
        end = f"{snapshot_date} 23:59:59"

        def create_snapshots_operation():
            vendor_ids = [row['vendor_id'] for row in self.db.conn.execute(
                "SELECT vendor_id FROM vendors WHERE is_active = 1 ORDER BY vendor_id"
            ).fetchall()]

            for vendor_id in vendor_ids:
                metrics = self._calculate_metrics(vendor_id, start, end)
                self._upsert_snapshot(f"vendor:{vendor_id}", vendor_id, snapshot_date, metrics)

            platform_metrics = self._calculate_metrics(None, start, end)
            platform_metrics['active_vendors'] = len(vendor_ids)
            self._upsert_snapshot("platform", None, snapshot_date, platform_metrics)

            return vendor_ids, platform_metrics

        vendor_ids, platform_metrics = self.db.execute_transaction([create_snapshots_operation])[0]
        logger.info(f"统计快照 {snapshot_date}: {len(vendor_ids)} 个商家，平台营收 {platform_metrics['revenue_cents']}")

        return {
            'date': snapshot_date,
            'vendor_snapshots': len(vendor_ids),
            'platform': platform_metrics
        }

    def get_vendor_trends(self, vendor_id: int, days: Any = 30) -> Dict[str, Any]:
        """
        商家趋势数据（读取已生成的快照）

        Args:
            vendor_id: 商家ID
            days: 最近天数（1-365）
        """
        if not validate_positive_integer(days) or int(days) > MAX_TREND_DAYS:
            raise ValidationError(f"天数必须在1到{MAX_TREND_DAYS}之间")
        days = int(days)

        vendor = self.db.conn.execute(
            "SELECT vendor_id FROM vendors WHERE vendor_id = ?", [vendor_id]
        ).fetchone()
        if not vendor:
            raise NotFoundError(f"商家ID {vendor_id} 不存在")

        since = (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%d")
        rows = self.db.conn.execute("""
            SELECT snapshot_date, metrics FROM analytics_snapshots
            WHERE scope_key = ? AND snapshot_date >= ?
            ORDER BY snapshot_date
        """, [f"vendor:{vendor_id}", since]).fetchall()

        trends = []
        for row in rows:
            metrics = json.loads(row['metrics'])
            metrics['date'] = row['snapshot_date']
            trends.append(metrics)

        return {
            'vendor_id': vendor_id,
            'days': days,
            'trends': trends,
            'totals': {
                'revenue_cents': sum(t['revenue_cents'] for t in trends),
                'orders': sum(t['orders'] for t in trends)
            }
        }

    # 弃购召回
    def record_abandoned_cart(self, session_id: str, products: List[Dict[str, Any]],
                              cart_total_cents: int, user_id: Optional[int] = None,
                              email: Optional[str] = None) -> Dict[str, Any]:
        """
        记录弃购（同一会话重复上报视为重新弃购：覆盖商品和金额，清除挽回和提醒标记）
        """
        if not validate_string_length(session_id or '', min_length=1, max_length=100):
            raise ValidationError("会话ID不能为空")
        if not products:
            raise ValidationError("购物车商品不能为空")
        if not validate_non_negative_integer(cart_total_cents):
            raise ValidationError("购物车金额必须为非负整数（分）")
        if email is not None and not validate_email(email):
            raise ValidationError(f"邮箱格式错误: {email}")

        email = email.strip().lower() if email else None

        self.db.execute_single("""
            INSERT INTO abandoned_carts (session_id, user_id, email, products, cart_total_cents, created_at)
            VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(session_id) DO UPDATE SET
                products = excluded.products,
                cart_total_cents = excluded.cart_total_cents,
                email = COALESCE(excluded.email, abandoned_carts.email),
                user_id = COALESCE(excluded.user_id, abandoned_carts.user_id),
                created_at = excluded.created_at,
                recovered_at = NULL,
                recovery_sent_at = NULL
        """, [session_id.strip(), user_id, email, json.dumps(products, ensure_ascii=False),
              int(cart_total_cents)])

        row = self.db.conn.execute(
            "SELECT * FROM abandoned_carts WHERE session_id = ?", [session_id.strip()]
        ).fetchone()
        cart = dict(row)
        cart['products'] = json.loads(cart['products'])
        return cart

    def mark_cart_recovered(self, session_id: str, user_id: Optional[int] = None) -> bool:
        """
        会话完成下单后标记为已挽回

        关联了账户的购物车只能由该账户标记。
        """
        cursor = self.db.execute_single("""
            UPDATE abandoned_carts SET recovered_at = CURRENT_TIMESTAMP
            WHERE session_id = ? AND recovered_at IS NULL
              AND (user_id IS NULL OR user_id = ?)
        """, [session_id, user_id])
        return cursor.rowcount > 0

    def send_cart_recovery_notifications(self, now: Optional[datetime] = None,
                                         batch_size: int = 100) -> Dict[str, Any]:
        """
        给1-24小时前弃购、有邮箱、未挽回且未提醒过的购物车发送召回通知

        Args:
            now: 当前时间（测试用）
            batch_size: 单次最多处理数量

        Returns:
            {'sent': 成功数, 'total': 候选数}
        """
        now = now or datetime.now(timezone.utc)
        newest = _format_ts(now - CART_RECOVERY_MIN_AGE)
        oldest = _format_ts(now - CART_RECOVERY_MAX_AGE)

        carts = self.db.conn.execute("""
            SELECT c.cart_id, c.session_id, c.products, c.cart_total_cents,
                   COALESCE(u.email, c.email) AS recipient, COALESCE(u.name, '') AS name
            FROM abandoned_carts c
            LEFT JOIN users u ON c.user_id = u.user_id
            WHERE c.created_at <= ? AND c.created_at >= ?
              AND c.recovered_at IS NULL
              AND c.recovery_sent_at IS NULL
              AND COALESCE(u.email, c.email) IS NOT NULL
            ORDER BY c.created_at
            LIMIT ?
        """, [newest, oldest, batch_size]).fetchall()

        sent = 0
        for cart in carts:
            # 先占位再发送，避免并发任务重复提醒
            claimed = self.db.execute_single("""
                UPDATE abandoned_carts SET recovery_sent_at = CURRENT_TIMESTAMP
                WHERE cart_id = ? AND recovery_sent_at IS NULL
            """, [cart['cart_id']]).rowcount
            if not claimed:
                continue

            delivered = safe_notify(self.notifier, cart['recipient'], 'cart_recovery', {
                'name': cart['name'],
                'session_id': cart['session_id'],
                'products': json.loads(cart['products']),
                'cart_total_cents': cart['cart_total_cents']
            })
            if delivered:
                sent += 1
            else:
                self.db.execute_single(
                    "UPDATE abandoned_carts SET recovery_sent_at = NULL WHERE cart_id = ?",
                    [cart['cart_id']]
                )

        logger.info(f"弃购召回: 候选 {len(carts)} 个，发送 {sent} 个")
        return {'sent': sent, 'total': len(carts)}
