# 预约相关API路由

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends

from .models import CreateReservationRequest
from api.dependencies import get_database
from db.manager import DatabaseManager
from db.order_operations import OrderOperations
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/reservations", tags=["预约"])


@router.post("", response_model=Dict[str, Any])
async def create_reservation(
    request: CreateReservationRequest,
    db: DatabaseManager = Depends(get_database)
):
    """
    创建直接预约（待付款），之后通过 user_item_ids 发起结账
    """
    result = OrderOperations(db).create_reservation(
        user_id=request.user_id,
        product_id=request.product_id,
        quantity=request.quantity,
        addons=[addon.model_dump() for addon in request.addons],
        delivery_address_id=request.delivery_address_id,
        branch=request.branch,
        notes=request.notes,
    )
    message = result.pop("message")
    return create_success_response(data=result, message=message)
