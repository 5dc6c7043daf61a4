# API测试共享配置和固定装置

import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_admin_notifier, get_database, get_payment_gateways, get_paymongo_service, get_paypal_service
)
from api.main import app
from api.payments.paymongo_service import PayMongoService
from api.payments.paypal_service import PayPalService
from tests.conftest import FakeNotifier

SUCCESS_URL = "https://shop.example.com/checkout/success"
CANCEL_URL = "https://shop.example.com/checkout/cancel"


@pytest.fixture
def paymongo_service():
    """模拟模式的 PayMongo 服务（未配置密钥）"""
    return PayMongoService()


@pytest.fixture
def paypal_service():
    return PayPalService()


@pytest.fixture
def gateways(paymongo_service, paypal_service):
    return {"paymongo": paymongo_service, "paypal": paypal_service}


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def client(test_db, gateways, notifier, paymongo_service, paypal_service):
    """共享内存数据库和模拟支付渠道的测试客户端"""
    app.dependency_overrides[get_database] = lambda: test_db
    app.dependency_overrides[get_payment_gateways] = lambda: gateways
    app.dependency_overrides[get_paymongo_service] = lambda: paymongo_service
    app.dependency_overrides[get_paypal_service] = lambda: paypal_service
    app.dependency_overrides[get_admin_notifier] = lambda: notifier

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def checkout_body():
    """购物车结账请求（前端使用的 camelCase 字段）"""
    return {
        "cartIds": ["cart-a", "cart-b"],
        "userId": "user-1",
        "paymentMethod": "paymongo",
        "successUrl": SUCCESS_URL,
        "cancelUrl": CANCEL_URL,
        "voucher": {"code": "SAVE10", "type": "percent", "value": 10},
    }
