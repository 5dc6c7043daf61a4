# PayMongo 托管结账服务（GCash / Maya）

import hashlib
import hmac
import logging
from typing import Any, Dict, List, Optional

import httpx

from .gateway import CheckoutSession, append_query, mock_session_id
from utils.config import Config
from utils.exceptions import PaymentConfigurationError, UpstreamError, WebhookSignatureError

logger = logging.getLogger(__name__)

PROVIDER = "paymongo"
DEFAULT_BASE_URL = "https://api.paymongo.com/v1"


class PayMongoService:
    """
    PayMongo 结账会话服务

    未配置 secret_key 且允许模拟（调试环境）时使用模拟模式，返回稳定的模拟会话ID；
    非调试环境缺少凭据时拒绝创建会话，缺少回调密钥时拒绝回调
    """

    def __init__(self, secret_key: Optional[str] = None,
                 webhook_secret: Optional[str] = None,
                 base_url: str = DEFAULT_BASE_URL,
                 payment_method_types: Optional[List[str]] = None,
                 timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 allow_mock: bool = True):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.payment_method_types = payment_method_types or ["gcash", "paymaya"]
        self.timeout = timeout
        self.transport = transport
        self.allow_mock = allow_mock

        if self.secret_key:
            self.mock_mode = False
        elif allow_mock:
            logger.warning("PayMongo密钥未配置，将使用模拟模式")
            self.mock_mode = True
        else:
            logger.error("PayMongo密钥未配置，无法创建结账会话")
            self.mock_mode = False

    @classmethod
    def from_config(cls, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PayMongoService":
        return cls(
            secret_key=config.get_secret("payments.paymongo.secret_key"),
            webhook_secret=config.get_secret("payments.paymongo.webhook_secret"),
            base_url=config.get("payments.paymongo.base_url", DEFAULT_BASE_URL),
            payment_method_types=config.get("payments.paymongo.payment_method_types"),
            timeout=config.get("payments.request_timeout_seconds", 15),
            transport=transport,
            allow_mock=bool(config.get("app.debug", False)),
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.secret_key, ""),
            timeout=self.timeout,
            transport=self.transport,
        )

    async def create_checkout_session(self, line_items: List[Dict[str, Any]], total_cents: int,
                                      reference: str, metadata: Dict[str, str],
                                      success_url: str, cancel_url: str,
                                      currency: str = "PHP") -> CheckoutSession:
        """
        创建托管结账会话

        Args:
            line_items: 商品行（name, quantity, amount 分, currency, description）
            total_cents: 结账总额（分），等于 line_items 金额之和
            reference: receipt_ref
            metadata: 回调时原样带回的字段
            success_url: 支付成功跳转地址
            cancel_url: 支付取消跳转地址

        Returns:
            CheckoutSession

        Raises:
            UpstreamError: PayMongo 调用失败
            PaymentConfigurationError: 非调试环境未配置密钥
        """
        if self.mock_mode:
            return self._mock_checkout_session(total_cents, reference, success_url, currency)
        if not self.secret_key:
            raise PaymentConfigurationError(PROVIDER)

        payload = {
            "data": {
                "attributes": {
                    "line_items": line_items,
                    "payment_method_types": self.payment_method_types,
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "description": f"GrandLink order {reference}",
                    "reference_number": reference,
                    "send_email_receipt": False,
                    "show_description": True,
                    "show_line_items": True,
                    "metadata": metadata,
                }
            }
        }

        try:
            async with self._client() as client:
                response = await client.post("/checkout_sessions", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"PayMongo接口错误: {e.response.status_code} - {e.response.text[:500]}")
            raise UpstreamError(PROVIDER, f"HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"PayMongo接口请求失败: {str(e)}")
            raise UpstreamError(PROVIDER, str(e))

        session = data.get("data") or {}
        checkout_url = (session.get("attributes") or {}).get("checkout_url")
        if not session.get("id") or not checkout_url:
            logger.error(f"PayMongo接口返回数据异常: {data}")
            raise UpstreamError(PROVIDER, "响应缺少会话ID或结账地址")

        logger.info(f"PayMongo结账会话创建成功: {session['id']} ({reference})")
        return CheckoutSession(
            provider=PROVIDER,
            session_id=session["id"],
            checkout_url=checkout_url,
            currency=currency,
            provider_amount_cents=total_cents,
            raw={"id": session["id"]},
        )

    def _mock_checkout_session(self, total_cents: int, reference: str,
                               success_url: str, currency: str) -> CheckoutSession:
        session_id = mock_session_id("cs", reference)
        logger.info(f"使用模拟PayMongo结账会话: {session_id}")
        return CheckoutSession(
            provider=PROVIDER,
            session_id=session_id,
            checkout_url=append_query(success_url, session_id=session_id, mock="1"),
            currency=currency,
            provider_amount_cents=total_cents,
            raw={"mock": True},
        )

    def verify_webhook_signature(self, raw_body: bytes, signature_header: Optional[str]):
        """
        校验 Paymongo-Signature 头：t=<时间戳>,te=<测试签名>,li=<正式签名>
        签名为 HMAC-SHA256(webhook_secret, "<t>.<原始请求体>")

        未配置 webhook_secret 时只有调试环境跳过校验

        Raises:
            WebhookSignatureError: 缺少签名或签名不匹配
            PaymentConfigurationError: 非调试环境未配置回调密钥
        """
        if not self.webhook_secret:
            if not self.allow_mock:
                logger.error("PayMongo回调签名密钥未配置，拒绝处理回调")
                raise PaymentConfigurationError(PROVIDER, "回调签名密钥未配置")
            logger.debug("PayMongo回调签名密钥未配置，跳过签名校验")
            return

        if not signature_header:
            raise WebhookSignatureError("缺少 Paymongo-Signature 签名头")

        parts = {}
        for part in signature_header.split(","):
            key, _, value = part.strip().partition("=")
            if key:
                parts[key] = value

        timestamp = parts.get("t")
        if not timestamp:
            raise WebhookSignatureError("签名头缺少时间戳")

        signed_payload = f"{timestamp}.".encode() + raw_body
        expected = hmac.new(self.webhook_secret.encode(), signed_payload, hashlib.sha256).hexdigest()

        candidates = [parts.get("te"), parts.get("li")]
        if not any(candidate and hmac.compare_digest(expected, candidate) for candidate in candidates):
            logger.warning("PayMongo回调签名校验失败")
            raise WebhookSignatureError("回调签名校验失败")
