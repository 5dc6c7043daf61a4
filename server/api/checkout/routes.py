# 结账相关API路由

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends

from .models import CreateCheckoutSessionRequest, CheckoutSessionResponse
from .service import CheckoutService
from api.dependencies import get_config, get_database, get_payment_gateways
from db.checkout_operations import OrderIntent, build_origin
from db.manager import DatabaseManager
from utils.config import Config
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/checkout", tags=["结账"])


@router.post("/session", response_model=Dict[str, Any])
async def create_checkout_session(
    request: CreateCheckoutSessionRequest,
    db: DatabaseManager = Depends(get_database),
    gateways: Dict[str, Any] = Depends(get_payment_gateways),
    config: Config = Depends(get_config)
):
    """
    创建结账会话

    cart_ids 与 user_item_ids 必须且只能提供一个
    """
    intent = OrderIntent(
        origin=build_origin(request.cart_ids, request.user_item_ids),
        user_id=request.user_id,
        payment_method=request.payment_method,
        payment_type=request.payment_type,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        voucher_code=request.voucher.code if request.voucher else None,
        delivery_address_id=request.delivery_address_id,
        branch=request.branch,
        receipt_ref=request.receipt_ref,
    )

    service = CheckoutService(
        db,
        gateways,
        reservation_fee_cents=config.get("payments.reservation_fee_cents", 0),
        currency=config.get("payments.currency", "PHP"),
    )
    result = await service.create_session(intent)

    response_data = CheckoutSessionResponse(**result)
    response = create_success_response(
        data=response_data.model_dump(),
        message=f"结账会话创建成功，合计 {result['total_cents'] / 100:.2f}"
    )
    # 商城前端直接读取顶层的 sessionId / checkoutUrl
    response["sessionId"] = response_data.session_id
    response["checkoutUrl"] = response_data.checkout_url
    return response
