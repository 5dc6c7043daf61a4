# 结账会话编排
# 准备结账（数据库事务）→ 调用支付渠道 → 保存支付会话

import logging
from typing import Any, Dict

from db.checkout_operations import CheckoutOperations, OrderIntent
from db.manager import DatabaseManager
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class CheckoutService:
    """
    结账会话服务

    支付渠道调用失败时不会保存支付会话，已预留的库存保持预留；
    同一批购物车行再次结账会复用这些订单行和预留。
    """

    def __init__(self, db: DatabaseManager, gateways: Dict[str, Any],
                 reservation_fee_cents: int, currency: str = "PHP"):
        self.db = db
        self.gateways = gateways
        self.currency = currency
        self.operations = CheckoutOperations(db, reservation_fee_cents)

    async def create_session(self, intent: OrderIntent) -> Dict[str, Any]:
        """
        创建结账会话

        Returns:
            会话信息、收据引用号和定价明细

        Raises:
            ValidationError / NotFoundError / OwnershipError / InventoryConflictError: 准备阶段失败
            UpstreamError: 支付渠道调用失败
        """
        gateway = self.gateways.get(intent.payment_method)
        if gateway is None:
            raise ValidationError(f"不支持的支付方式: {intent.payment_method}")

        prepared = self.operations.prepare_checkout(intent)
        pricing = prepared.pricing

        session = await gateway.create_checkout_session(
            line_items=pricing.provider_line_items(self.currency),
            total_cents=pricing.total_cents,
            reference=prepared.receipt_ref,
            metadata=prepared.provider_metadata(),
            success_url=intent.success_url,
            cancel_url=intent.cancel_url,
            currency=self.currency,
        )

        self.operations.record_payment_session(
            prepared,
            provider=session.provider,
            session_id=session.session_id,
            currency=self.currency,
            provider_payload={
                "checkout_url": session.checkout_url,
                "provider_currency": session.currency,
                "provider_amount_cents": session.provider_amount_cents,
                **session.raw,
            },
        )

        return {
            "session_id": session.session_id,
            "checkout_url": session.checkout_url,
            "provider": session.provider,
            "receipt_ref": prepared.receipt_ref,
            "origin": prepared.origin_kind,
            "currency": self.currency,
            **pricing.summary(),
            "lines": [
                {
                    "record_id": line.record_id,
                    "product_id": line.product_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "gross_cents": line.gross_cents,
                    "discount_cents": line.discount_cents,
                    "net_cents": line.net_cents,
                    "reservation_fee_share_cents": line.reservation_fee_share_cents,
                    "final_cents": line.final_cents,
                }
                for line in pricing.lines
            ],
        }
