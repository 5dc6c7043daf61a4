# PayPal 订单/扣款服务
# 金额以 PHP 计价，按固定汇率换算为 USD 后创建 PayPal 订单

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import httpx

from .gateway import CheckoutSession, append_query, mock_session_id
from utils.config import Config
from utils.exceptions import PaymentConfigurationError, UpstreamError
from utils.money import allocate

logger = logging.getLogger(__name__)

PROVIDER = "paypal"
BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}
PROVIDER_CURRENCY = "USD"


def _usd(cents: int) -> str:
    return f"{Decimal(cents) / 100:.2f}"


class PayPalService:
    """
    PayPal 订单服务

    未配置 client_id / client_secret 且允许模拟（调试环境）时使用模拟模式；
    非调试环境缺少凭据时所有渠道调用都会失败
    """

    def __init__(self, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 environment: str = "sandbox",
                 php_per_usd: float = 50,
                 brand_name: str = "GrandLink",
                 timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 allow_mock: bool = True):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = BASE_URLS.get(environment, BASE_URLS["sandbox"])
        self.php_per_usd = Decimal(str(php_per_usd))
        self.brand_name = brand_name
        self.timeout = timeout
        self.transport = transport
        self.configured = bool(self.client_id and self.client_secret)

        if self.configured:
            self.mock_mode = False
        elif allow_mock:
            logger.warning("PayPal配置缺失，将使用模拟模式")
            self.mock_mode = True
        else:
            logger.error("PayPal配置缺失，无法调用PayPal接口")
            self.mock_mode = False

    @classmethod
    def from_config(cls, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PayPalService":
        return cls(
            client_id=config.get_secret("payments.paypal.client_id"),
            client_secret=config.get_secret("payments.paypal.client_secret"),
            environment=config.get("payments.paypal.environment", "sandbox"),
            php_per_usd=config.get("payments.paypal.php_per_usd", 50),
            brand_name=config.get("payments.paypal.brand_name", "GrandLink"),
            timeout=config.get("payments.request_timeout_seconds", 15),
            transport=transport,
            allow_mock=bool(config.get("app.debug", False)),
        )

    def _client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise PaymentConfigurationError(PROVIDER)
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    def to_usd_cents(self, php_cents: int) -> int:
        """PHP 分换算为 USD 分，四舍五入"""
        value = (Decimal(php_cents) / self.php_per_usd).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(value)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"PayPal接口错误: {method} {url} {e.response.status_code} - {e.response.text[:500]}")
            raise UpstreamError(PROVIDER, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"PayPal接口请求失败: {method} {url}: {str(e)}")
            raise UpstreamError(PROVIDER, str(e))

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        data = await self._request(
            client, "POST", "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        token = data.get("access_token")
        if not token:
            raise UpstreamError(PROVIDER, "响应缺少 access_token")
        return token

    async def get_access_token(self) -> str:
        """
        获取 OAuth access_token（client credentials）

        Raises:
            UpstreamError: 获取失败
        """
        if self.mock_mode:
            return "mock_paypal_access_token"
        async with self._client() as client:
            return await self._access_token(client)

    def build_order_payload(self, line_items: List[Dict[str, Any]], total_cents: int,
                            reference: str, success_url: str, cancel_url: str) -> Dict[str, Any]:
        """
        构造 PayPal 订单请求

        USD 总额先整体换算，再按 PHP 行金额分摊，保证 item_total 与 amount 完全一致
        """
        usd_total = self.to_usd_cents(total_cents)
        usd_shares = allocate(usd_total, [item["amount"] for item in line_items])

        items = []
        for item, usd_cents in zip(line_items, usd_shares):
            items.append({
                "name": item["name"][:127],
                "description": item.get("description", "")[:127],
                "quantity": "1",
                "unit_amount": {"currency_code": PROVIDER_CURRENCY, "value": _usd(usd_cents)},
            })

        return {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": reference,
                "custom_id": reference,
                "description": f"GrandLink order {reference}",
                "amount": {
                    "currency_code": PROVIDER_CURRENCY,
                    "value": _usd(usd_total),
                    "breakdown": {
                        "item_total": {"currency_code": PROVIDER_CURRENCY, "value": _usd(usd_total)},
                    },
                },
                "items": items,
            }],
            "application_context": {
                "brand_name": self.brand_name,
                "user_action": "PAY_NOW",
                "shipping_preference": "NO_SHIPPING",
                "return_url": success_url,
                "cancel_url": cancel_url,
            },
        }

    async def create_checkout_session(self, line_items: List[Dict[str, Any]], total_cents: int,
                                      reference: str, metadata: Dict[str, str],
                                      success_url: str, cancel_url: str,
                                      currency: str = "PHP") -> CheckoutSession:
        """
        创建 PayPal 订单并返回买家批准地址

        metadata 不会发送给 PayPal，回调时通过保存的支付会话关联订单

        Raises:
            UpstreamError: PayPal 调用失败或响应缺少 approve 链接
        """
        payload = self.build_order_payload(line_items, total_cents, reference, success_url, cancel_url)
        usd_total = self.to_usd_cents(total_cents)

        if self.mock_mode:
            order_id = mock_session_id("PAYPAL", reference).upper()
            logger.info(f"使用模拟PayPal订单: {order_id}")
            return CheckoutSession(
                provider=PROVIDER,
                session_id=order_id,
                checkout_url=append_query(success_url, token=order_id, mock="1"),
                currency=PROVIDER_CURRENCY,
                provider_amount_cents=usd_total,
                raw={"mock": True},
            )

        async with self._client() as client:
            token = await self._access_token(client)
            data = await self._request(
                client, "POST", "/v2/checkout/orders",
                json=payload,
                headers={"Authorization": f"Bearer {token}", "PayPal-Request-Id": reference},
            )

        approve_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None
        )
        if not data.get("id") or not approve_url:
            logger.error(f"PayPal接口返回数据异常: {data}")
            raise UpstreamError(PROVIDER, "响应缺少订单ID或 approve 链接")

        logger.info(f"PayPal订单创建成功: {data['id']} ({reference})，金额 {_usd(usd_total)} USD")
        return CheckoutSession(
            provider=PROVIDER,
            session_id=data["id"],
            checkout_url=approve_url,
            currency=PROVIDER_CURRENCY,
            provider_amount_cents=usd_total,
            raw={"id": data["id"], "status": data.get("status")},
        )

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """
        扣款（买家批准后调用）

        Returns:
            PayPal 返回的订单数据，status == 'COMPLETED' 表示扣款成功
        """
        if self.mock_mode:
            logger.info(f"使用模拟PayPal扣款: {order_id}")
            return {
                "id": order_id,
                "status": "COMPLETED",
                "purchase_units": [{"payments": {"captures": [{"id": f"CAPTURE_{order_id}", "status": "COMPLETED"}]}}],
            }

        async with self._client() as client:
            token = await self._access_token(client)
            data = await self._request(
                client, "POST", f"/v2/checkout/orders/{order_id}/capture",
                json={},
                headers={"Authorization": f"Bearer {token}"},
            )

        logger.info(f"PayPal扣款结果: {order_id} {data.get('status')}")
        return data

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        if self.mock_mode:
            return {"id": order_id, "status": "APPROVED"}

        async with self._client() as client:
            token = await self._access_token(client)
            return await self._request(
                client, "GET", f"/v2/checkout/orders/{order_id}",
                headers={"Authorization": f"Bearer {token}"},
            )


def capture_id(order: Dict[str, Any]) -> Optional[str]:
    """从扣款结果中取出第一个 capture ID"""
    for unit in order.get("purchase_units", []):
        for capture in (unit.get("payments") or {}).get("captures", []):
            if capture.get("id"):
                return capture["id"]
    return None
