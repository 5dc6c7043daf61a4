# 测试配置和固定装置

import pytest
import json
import os
import sys
from pathlib import Path

# 添加项目路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# 设置测试环境
os.environ['CONFIG_ENV'] = 'development'

from api.payments.gateway import CheckoutSession
from db.checkout_operations import CartOrigin, CheckoutOperations, DirectOrigin, OrderIntent
from db.manager import DatabaseManager
from db.order_operations import OrderOperations
from db.reconcile_operations import ReconcileOperations
from db.schema import initialize_schema
from utils.exceptions import UpstreamError

RESERVATION_FEE_CENTS = 50000
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


class FakeGateway:
    """记录调用参数的支付渠道替身"""

    def __init__(self, provider: str, fail: bool = False):
        self.provider = provider
        self.fail = fail
        self.calls = []

    async def create_checkout_session(self, line_items, total_cents, reference, metadata,
                                      success_url, cancel_url, currency="PHP"):
        self.calls.append({
            "line_items": line_items,
            "total_cents": total_cents,
            "reference": reference,
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        if self.fail:
            raise UpstreamError(self.provider, "HTTP 500")
        session_id = f"{self.provider}_session_{len(self.calls)}"
        return CheckoutSession(
            provider=self.provider,
            session_id=session_id,
            checkout_url=f"https://pay.example.com/{session_id}",
            currency=currency,
            provider_amount_cents=total_cents,
        )


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, notification):
        if notification:
            self.sent.append(notification)
            return True
        return False


def add_product(db: DatabaseManager, product_id: str, price_cents: int, inventory: int,
                name: str = None, status: str = "active"):
    db.execute_single("""
        INSERT INTO products (product_id, name, price_cents, inventory, status)
        VALUES (?, ?, ?, ?, ?)
    """, [product_id, name or product_id, price_cents, inventory, status])


def add_cart_row(db: DatabaseManager, cart_id: str, product_id: str, quantity: int,
                 user_id: str = USER_ID, addons=None):
    db.execute_single("""
        INSERT INTO cart (id, user_id, product_id, quantity, addons)
        VALUES (?, ?, ?, ?, ?)
    """, [cart_id, user_id, product_id, quantity, json.dumps(addons or [])])


def add_discount_code(db: DatabaseManager, code: str, voucher_type: str, value: str, **kwargs):
    db.execute_single("""
        INSERT INTO discount_codes (code, type, value, active, starts_at, expires_at,
                                    min_subtotal_cents, max_uses, used_count)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [
        code, voucher_type, value,
        kwargs.get("active", 1), kwargs.get("starts_at"), kwargs.get("expires_at"),
        kwargs.get("min_subtotal_cents"), kwargs.get("max_uses"), kwargs.get("used_count", 0)
    ])


def inventory_of(db: DatabaseManager, product_id: str) -> int:
    return db.execute_single(
        "SELECT inventory FROM products WHERE product_id = ?", [product_id]
    ).fetchone()[0]


def make_intent(origin, user_id: str = USER_ID, payment_method: str = "paymongo", **kwargs) -> OrderIntent:
    return OrderIntent(
        origin=origin,
        user_id=user_id,
        payment_method=payment_method,
        success_url=kwargs.pop("success_url", "https://shop.example.com/checkout/success"),
        cancel_url=kwargs.pop("cancel_url", "https://shop.example.com/checkout/cancel"),
        **kwargs
    )


@pytest.fixture
def test_db():
    """测试数据库实例（内存数据库）"""
    db = DatabaseManager(":memory:", auto_connect=True)
    initialize_schema(db)
    yield db
    db.close()


@pytest.fixture
def sample_products(test_db):
    """A: 单价 1000 库存 10；B: 单价 500 库存 5"""
    add_product(test_db, "prod-a", 100000, 10, name="Product A")
    add_product(test_db, "prod-b", 50000, 5, name="Product B")
    return ["prod-a", "prod-b"]


@pytest.fixture
def sample_cart(test_db, sample_products):
    """两行购物车：A x2（颜色定制 +200）、B x1"""
    add_cart_row(test_db, "cart-a", "prod-a", 2, addons=[
        {"key": "color", "label": "Color customization", "fee": 200, "value": "Matte black"}
    ])
    add_cart_row(test_db, "cart-b", "prod-b", 1)
    return ["cart-a", "cart-b"]


@pytest.fixture
def sample_voucher(test_db):
    add_discount_code(test_db, "SAVE10", "percent", "10")
    return "SAVE10"


@pytest.fixture
def checkout_ops(test_db):
    return CheckoutOperations(test_db, RESERVATION_FEE_CENTS)


@pytest.fixture
def order_ops(test_db):
    return OrderOperations(test_db)


@pytest.fixture
def reconcile_ops(test_db):
    return ReconcileOperations(test_db)


@pytest.fixture
def sample_reservation(order_ops, sample_products):
    """直接预约：A x1，待付款"""
    return order_ops.create_reservation(USER_ID, "prod-a", 1, delivery_address_id="addr-1", branch="Makati")


@pytest.fixture
def prepared_cart_checkout(checkout_ops, sample_cart, sample_voucher):
    """已准备并保存支付会话的购物车结账"""
    prepared = checkout_ops.prepare_checkout(
        make_intent(CartOrigin(tuple(sample_cart)), voucher_code=sample_voucher)
    )
    checkout_ops.record_payment_session(prepared, "paymongo", "cs_test_1", "PHP")
    return prepared


@pytest.fixture
def prepared_direct_checkout(checkout_ops, sample_reservation):
    prepared = checkout_ops.prepare_checkout(
        make_intent(DirectOrigin((sample_reservation["id"],)))
    )
    checkout_ops.record_payment_session(prepared, "paymongo", "cs_test_direct", "PHP")
    return prepared
