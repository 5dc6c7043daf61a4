# 优惠码校验路由

import logging
from typing import Any, Dict
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.dependencies import get_database
from db.manager import DatabaseManager
from db.voucher_operations import VoucherOperations
from utils.money import to_cents
from utils.pricing import voucher_discount_cents
from utils.response import create_success_response

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/vouchers", tags=["优惠码"])


class ValidateVoucherRequest(BaseModel):
    code: str = Field(..., min_length=1)
    subtotal: float = Field(0, ge=0, description="折扣前金额（元）")


@router.post("/validate", response_model=Dict[str, Any])
async def validate_voucher(
    request: ValidateVoucherRequest,
    db: DatabaseManager = Depends(get_database)
):
    """校验优惠码并返回类型、面值和预计折扣"""
    subtotal_cents = to_cents(request.subtotal)
    voucher = VoucherOperations(db).resolve_voucher(request.code, subtotal_cents)

    return create_success_response(
        data={
            "discount": {
                "code": voucher.code,
                "type": voucher.type,
                "value": float(voucher.value),
            },
            "estimated_discount_cents": voucher_discount_cents(voucher, subtotal_cents),
        },
        message="优惠码可用"
    )
