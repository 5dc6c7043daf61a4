# 支付渠道主动操作路由

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field

from api.dependencies import get_admin_notifier, get_database, get_paypal_service
from api.notifications.admin_notifier import AdminNotifier
from api.payments.paypal_service import PayPalService, capture_id
from api.webhooks.routes import reconcile_and_notify
from db.manager import DatabaseManager
from db.reconcile_operations import ReconcileOperations
from utils.exceptions import ValidationError
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payments", tags=["支付"])


class CapturePayPalRequest(BaseModel):
    order_id: str = Field(..., validation_alias=AliasChoices("order_id", "orderId"), min_length=1)


@router.post("/paypal/capture", response_model=Dict[str, Any])
async def capture_paypal_order(
    request: CapturePayPalRequest,
    db: DatabaseManager = Depends(get_database),
    paypal: PayPalService = Depends(get_paypal_service),
    notifier: AdminNotifier = Depends(get_admin_notifier)
):
    """
    买家批准后扣款，扣款成功后按回调同样的方式对账（可重复调用）
    """
    reconcile = ReconcileOperations(db)
    # 先确认会话存在，避免对未知订单扣款
    confirmation = reconcile.confirmation_for_session("paypal", request.order_id)

    order = await paypal.capture_order(request.order_id)
    status = order.get("status")
    if status != "COMPLETED":
        raise ValidationError(
            f"PayPal订单扣款未完成，状态: {status}",
            data={"order_id": request.order_id, "status": status}
        )

    confirmation.payment_reference = capture_id(order)
    summary = await reconcile_and_notify(db, notifier, confirmation)

    return create_success_response(
        data={
            "order_id": request.order_id,
            "capture_status": status,
            "receipt_ref": summary["receipt_ref"],
            "processed": summary["processed"],
            "skipped": summary["skipped"],
            "failed": summary["failed"],
            "total_paid_cents": summary["total_paid_cents"],
        },
        message="付款确认成功" if not summary["failed"] else "付款已确认，部分订单处理失败"
    )
