# 支付渠道与通知客户端测试（httpx.MockTransport 模拟外部接口）

import asyncio
import hashlib
import hmac
import json

import httpx
import pytest

from api.notifications.admin_notifier import AdminNotifier
from api.payments.gateway import append_query, mock_session_id
from api.payments.paymongo_service import PayMongoService
from api.payments.paypal_service import PayPalService, capture_id
from utils.exceptions import PaymentConfigurationError, UpstreamError, WebhookSignatureError

LINE_ITEMS = [
    {"name": "Product A x2", "quantity": 1, "amount": 238740, "currency": "PHP", "description": "A"},
    {"name": "Product B", "quantity": 1, "amount": 54260, "currency": "PHP", "description": "B"},
]
TOTAL = 293000
SUCCESS_URL = "https://shop.example.com/checkout/success"
CANCEL_URL = "https://shop.example.com/checkout/cancel"


def create_session(service, reference="rcpt_1_abc"):
    return asyncio.run(service.create_checkout_session(
        line_items=LINE_ITEMS,
        total_cents=TOTAL,
        reference=reference,
        metadata={"receipt_ref": reference},
        success_url=SUCCESS_URL,
        cancel_url=CANCEL_URL,
    ))


class TestPayMongoService:
    """PayMongo 结账会话"""

    def test_create_session(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "data": {"id": "cs_live_1", "attributes": {"checkout_url": "https://checkout.paymongo.com/cs_live_1"}}
            })

        service = PayMongoService(secret_key="sk_test_key", transport=httpx.MockTransport(handler))
        session = create_session(service)

        assert session.session_id == "cs_live_1"
        assert session.checkout_url == "https://checkout.paymongo.com/cs_live_1"
        assert session.provider_amount_cents == TOTAL

        request = requests[0]
        assert request.url.path == "/v1/checkout_sessions"
        assert request.headers["Authorization"].startswith("Basic ")
        attributes = json.loads(request.content)["data"]["attributes"]
        assert attributes["reference_number"] == "rcpt_1_abc"
        assert attributes["metadata"] == {"receipt_ref": "rcpt_1_abc"}
        assert attributes["payment_method_types"] == ["gcash", "paymaya"]
        assert sum(item["amount"] for item in attributes["line_items"]) == TOTAL

    def test_http_error(self):
        service = PayMongoService(
            secret_key="sk_test_key",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"errors": []}))
        )
        with pytest.raises(UpstreamError) as exc_info:
            create_session(service)
        assert exc_info.value.status_code == 502

    def test_missing_checkout_url(self):
        service = PayMongoService(
            secret_key="sk_test_key",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": {"id": "cs_1"}}))
        )
        with pytest.raises(UpstreamError):
            create_session(service)

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = PayMongoService(secret_key="sk_test_key", transport=httpx.MockTransport(handler))
        with pytest.raises(UpstreamError):
            create_session(service)

    def test_mock_mode(self):
        service = PayMongoService()
        session = create_session(service)

        assert service.mock_mode is True
        assert session.session_id == mock_session_id("cs", "rcpt_1_abc")
        assert session.checkout_url == f"{SUCCESS_URL}?session_id={session.session_id}&mock=1"
        # 同一收据引用号生成相同的模拟会话ID
        assert create_session(service).session_id == session.session_id


class TestPayMongoSignature:
    """回调签名校验"""

    def _header(self, body, secret="whsk", timestamp="1718000000"):
        digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
        return f"t={timestamp},te={digest},li="

    def test_valid_signature(self):
        PayMongoService(webhook_secret="whsk").verify_webhook_signature(b'{"a":1}', self._header(b'{"a":1}'))

    def test_tampered_body(self):
        with pytest.raises(WebhookSignatureError):
            PayMongoService(webhook_secret="whsk").verify_webhook_signature(b'{"a":2}', self._header(b'{"a":1}'))

    def test_missing_timestamp(self):
        with pytest.raises(WebhookSignatureError):
            PayMongoService(webhook_secret="whsk").verify_webhook_signature(b"{}", "te=abc")

    def test_no_secret_skips_check(self):
        PayMongoService().verify_webhook_signature(b"{}", None)


class TestPayPalService:
    """PayPal 订单与扣款"""

    def _transport(self, requests, order_response=None, status=201):
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "token-1"})
            if request.url.path.endswith("/capture"):
                return httpx.Response(201, json={
                    "id": "ORDER-1",
                    "status": "COMPLETED",
                    "purchase_units": [{"payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]}}],
                })
            return httpx.Response(status, json=order_response or {
                "id": "ORDER-1",
                "status": "CREATED",
                "links": [
                    {"rel": "self", "href": "https://api-m.sandbox.paypal.com/v2/checkout/orders/ORDER-1"},
                    {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"},
                ],
            })
        return httpx.MockTransport(handler)

    def test_usd_conversion(self):
        service = PayPalService(php_per_usd=50)
        assert service.to_usd_cents(293000) == 5860
        assert service.to_usd_cents(25) == 1

    def test_order_payload_totals_match(self):
        service = PayPalService(php_per_usd=56)
        payload = service.build_order_payload(LINE_ITEMS, TOTAL, "rcpt_1_abc", SUCCESS_URL, CANCEL_URL)

        unit = payload["purchase_units"][0]
        item_values = [int(round(float(item["unit_amount"]["value"]) * 100)) for item in unit["items"]]
        assert sum(item_values) == service.to_usd_cents(TOTAL)
        assert unit["amount"]["value"] == unit["amount"]["breakdown"]["item_total"]["value"]
        assert unit["custom_id"] == "rcpt_1_abc"
        assert payload["application_context"]["return_url"] == SUCCESS_URL

    def test_create_session(self):
        requests = []
        service = PayPalService(client_id="id", client_secret="secret", transport=self._transport(requests))
        session = create_session(service)

        assert session.session_id == "ORDER-1"
        assert session.checkout_url == "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"
        assert session.currency == "USD"
        assert session.provider_amount_cents == 5860

        order_request = requests[1]
        assert order_request.url.path == "/v2/checkout/orders"
        assert order_request.headers["Authorization"] == "Bearer token-1"
        assert order_request.headers["PayPal-Request-Id"] == "rcpt_1_abc"

    def test_missing_approve_link(self):
        requests = []
        service = PayPalService(
            client_id="id", client_secret="secret",
            transport=self._transport(requests, order_response={"id": "ORDER-1", "links": []})
        )
        with pytest.raises(UpstreamError):
            create_session(service)

    def test_order_http_error(self):
        requests = []
        service = PayPalService(
            client_id="id", client_secret="secret",
            transport=self._transport(requests, order_response={"name": "INVALID_REQUEST"}, status=422)
        )
        with pytest.raises(UpstreamError):
            create_session(service)

    def test_capture_order(self):
        requests = []
        service = PayPalService(client_id="id", client_secret="secret", transport=self._transport(requests))
        order = asyncio.run(service.capture_order("ORDER-1"))

        assert order["status"] == "COMPLETED"
        assert capture_id(order) == "CAP-1"

    def test_mock_mode(self):
        service = PayPalService()
        session = create_session(service)

        assert session.session_id.startswith("PAYPAL_MOCK_")
        assert asyncio.run(service.get_access_token()) == "mock_paypal_access_token"
        order = asyncio.run(service.capture_order(session.session_id))
        assert capture_id(order) == f"CAPTURE_{session.session_id}"

    def test_capture_id_missing(self):
        assert capture_id({"purchase_units": [{"payments": {}}]}) is None


class StaticConfig:
    """只提供 get / get_secret 的配置替身"""

    def __init__(self, values):
        self.values = values

    def get(self, key, default=None):
        return self.values.get(key, default)

    def get_secret(self, key):
        return self.values.get(key)


class TestMockModeRequiresDebug:
    """模拟模式只在调试环境启用"""

    def test_paymongo_without_key_in_production(self):
        service = PayMongoService.from_config(StaticConfig({"app.debug": False}))

        assert service.mock_mode is False
        with pytest.raises(PaymentConfigurationError) as exc_info:
            create_session(service)
        assert exc_info.value.status_code == 503

    def test_paymongo_unsigned_webhook_in_production(self):
        with pytest.raises(PaymentConfigurationError):
            PayMongoService(allow_mock=False).verify_webhook_signature(b"{}", None)

    def test_paypal_without_credentials_in_production(self):
        service = PayPalService.from_config(StaticConfig({"app.debug": False}))

        assert service.mock_mode is False
        with pytest.raises(PaymentConfigurationError):
            asyncio.run(service.capture_order("ORDER-1"))
        with pytest.raises(PaymentConfigurationError):
            create_session(service)

    def test_debug_config_allows_mock(self):
        assert PayMongoService.from_config(StaticConfig({"app.debug": True})).mock_mode is True
        assert PayPalService.from_config(StaticConfig({"app.debug": True})).mock_mode is True


class TestAdminNotifier:
    """管理员通知外发"""

    def test_notify(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        notifier = AdminNotifier("https://admin.example.com/notify", transport=httpx.MockTransport(handler))
        assert asyncio.run(notifier.notify({"title": "New paid order"})) is True
        assert received == [{"title": "New paid order"}]

    def test_notify_failure_is_logged(self):
        notifier = AdminNotifier(
            "https://admin.example.com/notify",
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        assert asyncio.run(notifier.notify({"title": "x"})) is False

    def test_malformed_url_is_logged(self):
        """地址格式错误时同样只返回失败，不向上抛出"""
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        assert asyncio.run(AdminNotifier("https://admin.example.com/\x00notify", transport=transport)
                           .notify({"title": "x"})) is False
        assert asyncio.run(AdminNotifier("admin.example.com/notify").notify({"title": "x"})) is False

    def test_notify_without_url(self):
        assert asyncio.run(AdminNotifier().notify({"title": "x"})) is False
        assert asyncio.run(AdminNotifier("https://admin.example.com").notify(None)) is False


def test_append_query():
    assert append_query("https://a.example.com/ok", token="T") == "https://a.example.com/ok?token=T"
    assert append_query("https://a.example.com/ok?x=1", mock="1") == "https://a.example.com/ok?x=1&mock=1"
