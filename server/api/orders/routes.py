# 订单相关API路由

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Path, Query

from .models import CancelOrderRequest, UpdateOrderStatusRequest
from api.dependencies import get_database
from db.manager import DatabaseManager
from db.order_operations import OrderOperations
from utils.exceptions import ValidationError
from utils.response import create_success_response
from utils.validators import validate_order_status, validate_receipt_ref

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["订单"])


@router.get("", response_model=Dict[str, Any])
async def list_orders(
    user_id: str = Query(..., description="用户ID"),
    status: Optional[str] = Query(None, description="按状态筛选"),
    db: DatabaseManager = Depends(get_database)
):
    """获取用户的订单行列表"""
    if status and not validate_order_status(status):
        raise ValidationError(f"无效的订单状态: {status}")

    items = OrderOperations(db).list_user_items(user_id, status)
    return create_success_response(
        data={"items": items, "total_count": len(items)},
        message="获取订单列表成功"
    )


@router.get("/receipt/{receipt_ref}", response_model=Dict[str, Any])
async def get_receipt(
    receipt_ref: str = Path(..., description="收据引用号"),
    db: DatabaseManager = Depends(get_database)
):
    """按收据引用号查询一次结账的全部订单行（支付成功页）"""
    if not validate_receipt_ref(receipt_ref):
        raise ValidationError(f"无效的收据引用号: {receipt_ref}")

    receipt = OrderOperations(db).get_receipt(receipt_ref)
    return create_success_response(data=receipt, message="获取收据成功")


@router.post("/{item_id}/cancel", response_model=Dict[str, Any])
async def cancel_order(
    request: CancelOrderRequest,
    item_id: str = Path(..., description="订单行ID"),
    db: DatabaseManager = Depends(get_database)
):
    """客户申请取消订单，状态变为 pending_cancellation"""
    result = OrderOperations(db).cancel_order(item_id, request.user_id, request.reason)
    return create_success_response(data=result, message=result["message"])


@router.put("/{item_id}/status", response_model=Dict[str, Any])
async def update_order_status(
    request: UpdateOrderStatusRequest,
    item_id: str = Path(..., description="订单行ID"),
    db: DatabaseManager = Depends(get_database)
):
    """履约状态更新（管理端调用）"""
    if not validate_order_status(request.new_status):
        raise ValidationError(f"无效的订单状态: {request.new_status}")

    result = OrderOperations(db).update_status(
        item_id,
        request.new_status,
        admin_name=request.admin_name,
        admin_notes=request.admin_notes,
        estimated_delivery_date=request.estimated_delivery_date,
    )
    return create_success_response(data=result, message=result["message"])
