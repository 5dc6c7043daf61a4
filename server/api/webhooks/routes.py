# 支付回调路由
# 返回 {"status": ...}，供支付渠道判断是否需要重试

import json
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Header, Request

from api.dependencies import get_admin_notifier, get_database, get_paymongo_service
from api.notifications.admin_notifier import AdminNotifier
from api.payments.paymongo_service import PayMongoService
from db.manager import DatabaseManager
from db.reconcile_operations import (
    PAYPAL_CAPTURE_COMPLETED_EVENT, PaymentConfirmation, ReconcileOperations
)
from utils.exceptions import ValidationError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["支付回调"])


def reconcile_response(summary: Dict[str, Any]) -> Dict[str, Any]:
    """对账结果转换为回调响应，部分失败时仍返回 success 并附带失败明细"""
    response = {
        "status": "success",
        "receipt_ref": summary["receipt_ref"],
        "processed": len(summary["processed"]),
        "skipped": len(summary["skipped"]),
    }
    if summary["failed"]:
        response["partial_failure"] = True
        response["failed"] = [failure["id"] for failure in summary["failed"]]
    return response


async def reconcile_and_notify(db: DatabaseManager, notifier: AdminNotifier,
                               confirmation: PaymentConfirmation) -> Dict[str, Any]:
    summary = ReconcileOperations(db).apply_payment(confirmation)
    if summary["notification"]:
        await notifier.notify(summary["notification"])
    return summary


def _parse_json(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body)
    except (TypeError, ValueError):
        raise ValidationError("回调请求体不是有效的JSON")


@router.post("/paymongo")
async def paymongo_webhook(
    request: Request,
    paymongo_signature: Optional[str] = Header(None, alias="Paymongo-Signature"),
    db: DatabaseManager = Depends(get_database),
    paymongo: PayMongoService = Depends(get_paymongo_service),
    notifier: AdminNotifier = Depends(get_admin_notifier)
):
    """PayMongo 回调：只处理 checkout_session.payment.paid 事件"""
    raw_body = await request.body()
    paymongo.verify_webhook_signature(raw_body, paymongo_signature)

    confirmation = PaymentConfirmation.from_paymongo_event(_parse_json(raw_body))
    if confirmation is None:
        logger.info("忽略非付款成功的PayMongo回调")
        return {"status": "ignored"}

    summary = await reconcile_and_notify(db, notifier, confirmation)
    return reconcile_response(summary)


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    db: DatabaseManager = Depends(get_database),
    notifier: AdminNotifier = Depends(get_admin_notifier)
):
    """PayPal 回调：只处理 PAYMENT.CAPTURE.COMPLETED 事件，通过保存的支付会话关联订单"""
    payload = _parse_json(await request.body())
    if not isinstance(payload, dict):
        raise ValidationError("回调数据格式错误")

    if payload.get("event_type") != PAYPAL_CAPTURE_COMPLETED_EVENT:
        logger.info(f"忽略PayPal回调事件: {payload.get('event_type')}")
        return {"status": "ignored"}

    resource = payload.get("resource") or {}
    order_id = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
    if not order_id:
        raise ValidationError("PayPal回调缺少订单ID")

    confirmation = ReconcileOperations(db).confirmation_for_session(
        "paypal", order_id,
        payment_reference=resource.get("id"),
        event_id=payload.get("id"),
    )
    summary = await reconcile_and_notify(db, notifier, confirmation)
    return reconcile_response(summary)
