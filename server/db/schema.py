# 数据库表结构
# 由 scripts/init_db.py 和测试固定装置共用

import logging

from .manager import DatabaseManager
from utils.order_status import ORDER_STATUSES

logger = logging.getLogger(__name__)

_STATUS_CHECK = ", ".join(f"'{status}'" for status in ORDER_STATUSES)

# 1. 商品表（products）
CREATE_PRODUCTS_TABLE = """
CREATE TABLE IF NOT EXISTS products (
    product_id TEXT PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    price_cents INTEGER NOT NULL CHECK (price_cents >= 0),   -- 单价（单位：分）
    inventory INTEGER NOT NULL DEFAULT 0 CHECK (inventory >= 0),
    status VARCHAR(20) DEFAULT 'active',                     -- active/inactive
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

# 2. 购物车表（cart）
CREATE_CART_TABLE = """
CREATE TABLE IF NOT EXISTS cart (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    addons TEXT,                                             -- 附加项 JSON 列表
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (product_id) REFERENCES products(product_id)
)
"""

# 3. 订单行表（user_items），一次结账的所有行通过 receipt_ref 关联
CREATE_USER_ITEMS_TABLE = f"""
CREATE TABLE IF NOT EXISTS user_items (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    product_id TEXT NOT NULL,
    item_type VARCHAR(20) NOT NULL DEFAULT 'reservation',    -- reservation/order
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    status VARCHAR(30) NOT NULL DEFAULT 'pending_payment' CHECK (status IN ({_STATUS_CHECK})),
    order_progress VARCHAR(30) DEFAULT 'awaiting_payment',
    payment_status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (payment_status IN ('pending', 'completed', 'failed', 'refund_pending')),
    payment_method VARCHAR(20),                              -- paymongo/paypal
    payment_id TEXT,                                         -- 渠道会话ID
    price_cents INTEGER NOT NULL DEFAULT 0,
    total_amount_cents INTEGER NOT NULL DEFAULT 0,           -- 最终金额（含预约费分摊）
    addons TEXT,                                             -- 附加项 JSON 列表
    delivery_address_id TEXT,
    branch VARCHAR(100),
    receipt_ref TEXT,
    cart_id TEXT,                                            -- 来源购物车行
    inventory_reserved INTEGER NOT NULL DEFAULT 0 CHECK (inventory_reserved IN (0, 1)),
    inventory_deducted INTEGER NOT NULL DEFAULT 0 CHECK (inventory_deducted IN (0, 1)),
    meta TEXT,                                               -- 定价明细 JSON
    progress_history TEXT,                                   -- 状态变更历史 JSON
    admin_notes TEXT,
    estimated_delivery_date TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (product_id) REFERENCES products(product_id),
    UNIQUE (receipt_ref, cart_id)
)
"""

# 4. 支付会话表（payment_sessions）
CREATE_PAYMENT_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS payment_sessions (
    id INTEGER PRIMARY KEY,
    session_id TEXT UNIQUE NOT NULL,                         -- 渠道侧会话/订单ID
    provider VARCHAR(20) NOT NULL,                           -- paymongo/paypal
    user_id TEXT NOT NULL,
    receipt_ref TEXT NOT NULL,
    origin VARCHAR(10) NOT NULL CHECK (origin IN ('cart', 'direct')),
    user_item_ids TEXT NOT NULL,                             -- JSON 列表
    cart_ids TEXT,                                           -- JSON 列表
    amount_cents INTEGER NOT NULL CHECK (amount_cents >= 0),
    currency VARCHAR(3) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'completed', 'failed')),
    voucher_code TEXT,
    metadata TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    completed_at TIMESTAMP
)
"""

# 5. 优惠码表（discount_codes）
CREATE_DISCOUNT_CODES_TABLE = """
CREATE TABLE IF NOT EXISTS discount_codes (
    code TEXT PRIMARY KEY,
    type VARCHAR(10) NOT NULL CHECK (type IN ('percent', 'amount')),
    value TEXT NOT NULL,                                     -- 百分比或金额（元），以字符串保存精度
    active INTEGER NOT NULL DEFAULT 1,
    starts_at TIMESTAMP,
    expires_at TIMESTAMP,
    min_subtotal_cents INTEGER,
    max_uses INTEGER,
    used_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

# 6. 通知表（notifications）
CREATE_NOTIFICATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY,
    title VARCHAR(200) NOT NULL,
    message TEXT NOT NULL,
    type VARCHAR(20) NOT NULL DEFAULT 'order',
    priority VARCHAR(10) NOT NULL DEFAULT 'normal',
    recipient_role VARCHAR(20) NOT NULL DEFAULT 'admin',
    metadata TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

TABLES = [
    ("products", CREATE_PRODUCTS_TABLE),
    ("cart", CREATE_CART_TABLE),
    ("user_items", CREATE_USER_ITEMS_TABLE),
    ("payment_sessions", CREATE_PAYMENT_SESSIONS_TABLE),
    ("discount_codes", CREATE_DISCOUNT_CODES_TABLE),
    ("notifications", CREATE_NOTIFICATIONS_TABLE),
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_cart_user_id ON cart(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_items_user_id ON user_items(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_items_receipt_ref ON user_items(receipt_ref)",
    "CREATE INDEX IF NOT EXISTS idx_user_items_payment_id ON user_items(payment_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_items_status ON user_items(status)",
    "CREATE INDEX IF NOT EXISTS idx_payment_sessions_receipt_ref ON payment_sessions(receipt_ref)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_created_at ON notifications(created_at)",
]


def create_tables(db_manager: DatabaseManager):
    """
    创建所有数据表
    """
    for table_name, create_sql in TABLES:
        try:
            db_manager.execute_single(create_sql)
            logger.debug(f"成功创建表: {table_name}")
        except Exception as e:
            logger.error(f"创建表 {table_name} 失败: {e}")
            raise


def create_indexes(db_manager: DatabaseManager):
    for index_sql in INDEXES:
        db_manager.execute_single(index_sql)
    logger.debug(f"成功创建 {len(INDEXES)} 个索引")


def initialize_schema(db_manager: DatabaseManager):
    create_tables(db_manager)
    create_indexes(db_manager)
