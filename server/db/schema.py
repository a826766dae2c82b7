# 数据库表结构定义
# 建表、索引、触发器；初始化脚本和测试共用

import logging
from .manager import DatabaseManager

logger = logging.getLogger(__name__)

ORDER_STATUSES = ('pending', 'processing', 'shipped', 'delivered',
                  'cancelled', 'refund_requested', 'refunded')
PAYMENT_STATUSES = ('pending', 'paid', 'refunded', 'failed')
REFUND_REQUEST_STATUSES = ('pending', 'processing', 'approved', 'rejected')


def _in_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


TABLES = [
    # 1. 用户表
    ("users", """
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY,
        email VARCHAR(254) UNIQUE NOT NULL,         -- 登录邮箱（小写存储）
        name VARCHAR(100),
        password_hash VARCHAR(255),
        role VARCHAR(20) NOT NULL DEFAULT 'customer' CHECK (role IN ('customer', 'vendor', 'admin')),
        status VARCHAR(20) NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'suspended')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        last_login_at TIMESTAMP
    )
    """),

    # 2. 商家表
    ("vendors", """
    CREATE TABLE IF NOT EXISTS vendors (
        vendor_id INTEGER PRIMARY KEY,
        user_id INTEGER UNIQUE NOT NULL,            -- 商家账户
        business_name VARCHAR(200) NOT NULL,
        email VARCHAR(254) NOT NULL,                -- 接收通知的邮箱
        balance_cents INTEGER NOT NULL DEFAULT 0,   -- 可结算余额（分）
        is_active BOOLEAN NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id)
    )
    """),

    # 3. 商品表
    ("products", """
    CREATE TABLE IF NOT EXISTS products (
        product_id INTEGER PRIMARY KEY,
        vendor_id INTEGER NOT NULL,
        name VARCHAR(200) NOT NULL,
        price_cents INTEGER NOT NULL CHECK (price_cents >= 0),
        stock INTEGER NOT NULL DEFAULT 0 CHECK (stock >= 0),
        is_active BOOLEAN NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (vendor_id) REFERENCES vendors(vendor_id)
    )
    """),

    # 4. 订单表：注册用户与游客二选一
    ("orders", f"""
    CREATE TABLE IF NOT EXISTS orders (
        order_id INTEGER PRIMARY KEY,
        order_number VARCHAR(20) UNIQUE NOT NULL,   -- LM-YYMM-XXXX
        user_id INTEGER,
        guest_email VARCHAR(254),
        guest_name VARCHAR(100),
        vendor_id INTEGER NOT NULL,
        total_cents INTEGER NOT NULL CHECK (total_cents >= 0),
        currency VARCHAR(3) NOT NULL DEFAULT 'MXN',
        status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (status IN ({_in_list(ORDER_STATUSES)})),
        payment_status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (payment_status IN ({_in_list(PAYMENT_STATUSES)})),
        payment_reference VARCHAR(100),             -- 支付网关的支付凭证
        carrier VARCHAR(50),
        tracking_number VARCHAR(100),
        tracking_url VARCHAR(500),
        estimated_delivery TIMESTAMP,
        shipped_at TIMESTAMP,
        delivered_at TIMESTAMP,
        cancelled_at TIMESTAMP,
        cancellation_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id),
        FOREIGN KEY (vendor_id) REFERENCES vendors(vendor_id),
        CHECK (
            (user_id IS NOT NULL AND guest_email IS NULL AND guest_name IS NULL)
            OR (user_id IS NULL AND guest_email IS NOT NULL AND guest_name IS NOT NULL)
        )
    )
    """),

    # 5. 订单明细：单价在下单时锁定
    ("order_items", """
    CREATE TABLE IF NOT EXISTS order_items (
        item_id INTEGER PRIMARY KEY,
        order_id INTEGER NOT NULL,
        product_id INTEGER NOT NULL,
        product_name VARCHAR(200) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity >= 1),
        unit_price_cents INTEGER NOT NULL CHECK (unit_price_cents >= 0),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(order_id) ON DELETE CASCADE,
        FOREIGN KEY (product_id) REFERENCES products(product_id)
    )
    """),

    # 6. 退款/取消申请
    ("refund_requests", f"""
    CREATE TABLE IF NOT EXISTS refund_requests (
        request_id INTEGER PRIMARY KEY,
        order_id INTEGER NOT NULL,
        requested_by INTEGER,                       -- 游客或系统发起时为空
        requester_type VARCHAR(20) NOT NULL CHECK (requester_type IN ('customer', 'guest', 'system')),
        reason TEXT NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (status IN ({_in_list(REFUND_REQUEST_STATUSES)})),
        previous_status VARCHAR(20) NOT NULL,       -- 申请前的订单状态，驳回时恢复
        decision_notes TEXT,
        decided_by INTEGER,
        decider_role VARCHAR(20),
        gateway_transaction_id VARCHAR(100),
        requested_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        claimed_at TIMESTAMP,                       -- 进入网关处理的时间
        decided_at TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(order_id),
        FOREIGN KEY (requested_by) REFERENCES users(user_id),
        FOREIGN KEY (decided_by) REFERENCES users(user_id)
    )
    """),

    # 7. 订单审计事件
    ("order_events", """
    CREATE TABLE IF NOT EXISTS order_events (
        event_id INTEGER PRIMARY KEY,
        order_id INTEGER NOT NULL,
        action VARCHAR(50) NOT NULL,
        actor_id INTEGER,
        details TEXT,                               -- JSON
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (order_id) REFERENCES orders(order_id)
    )
    """),

    # 8. 商家账本
    ("vendor_transactions", """
    CREATE TABLE IF NOT EXISTS vendor_transactions (
        transaction_id INTEGER PRIMARY KEY,
        transaction_no VARCHAR(32) UNIQUE NOT NULL, -- 格式：RFD20241125000001
        vendor_id INTEGER NOT NULL,
        order_id INTEGER,
        type VARCHAR(20) NOT NULL,                  -- refund
        amount_cents INTEGER NOT NULL,              -- 正数表示入账，负数表示扣减
        balance_before_cents INTEGER NOT NULL,
        balance_after_cents INTEGER NOT NULL,
        description VARCHAR(200),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (vendor_id) REFERENCES vendors(vendor_id),
        FOREIGN KEY (order_id) REFERENCES orders(order_id)
    )
    """),

    # 9. 库存预警
    ("inventory_alerts", """
    CREATE TABLE IF NOT EXISTS inventory_alerts (
        alert_id INTEGER PRIMARY KEY,
        product_id INTEGER NOT NULL,
        vendor_id INTEGER NOT NULL,
        period VARCHAR(20) NOT NULL,                -- 统计周期（YYYY-MM-DD）
        stock INTEGER NOT NULL,
        threshold INTEGER NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'open',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(product_id, period),
        FOREIGN KEY (product_id) REFERENCES products(product_id),
        FOREIGN KEY (vendor_id) REFERENCES vendors(vendor_id)
    )
    """),

    # 10. 统计快照
    ("analytics_snapshots", """
    CREATE TABLE IF NOT EXISTS analytics_snapshots (
        snapshot_id INTEGER PRIMARY KEY,
        scope_key VARCHAR(50) NOT NULL,             -- vendor:<id> 或 platform
        vendor_id INTEGER,
        snapshot_date DATE NOT NULL,
        metrics TEXT NOT NULL,                      -- JSON
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(scope_key, snapshot_date),
        FOREIGN KEY (vendor_id) REFERENCES vendors(vendor_id)
    )
    """),

    # 11. 弃购记录
    ("abandoned_carts", """
    CREATE TABLE IF NOT EXISTS abandoned_carts (
        cart_id INTEGER PRIMARY KEY,
        session_id VARCHAR(100) UNIQUE NOT NULL,
        user_id INTEGER,
        email VARCHAR(254),
        products TEXT NOT NULL,                     -- JSON
        cart_total_cents INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        recovery_sent_at TIMESTAMP,
        recovered_at TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(user_id)
    )
    """),
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_vendor_id ON orders(vendor_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_orders_guest_email ON orders(guest_email)",
    "CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_vendor_id ON products(vendor_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_stock ON products(stock)",
    "CREATE INDEX IF NOT EXISTS idx_order_events_order_id ON order_events(order_id)",
    "CREATE INDEX IF NOT EXISTS idx_refund_requests_order_id ON refund_requests(order_id)",
    # 每个订单同一时刻最多一个未决退款申请
    """CREATE UNIQUE INDEX IF NOT EXISTS uq_refund_requests_open
       ON refund_requests(order_id) WHERE status IN ('pending', 'processing')""",
]

TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_order_items_price_immutable
    BEFORE UPDATE OF unit_price_cents ON order_items
    WHEN NEW.unit_price_cents IS NOT OLD.unit_price_cents
    BEGIN
        SELECT RAISE(ABORT, 'order item unit price is immutable');
    END
    """,
]


def create_schema(db_manager: DatabaseManager):
    """
    创建全部表、索引和触发器（可重复执行）
    """
    for table_name, create_sql in TABLES:
        db_manager.execute_single(create_sql)
        logger.debug(f"成功创建表: {table_name}")

    for index_sql in INDEXES:
        db_manager.execute_single(index_sql)

    for trigger_sql in TRIGGERS:
        db_manager.execute_single(trigger_sql)

    logger.info(f"数据库结构初始化完成，共 {len(TABLES)} 张表")
