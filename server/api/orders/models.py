# 订单相关的数据模型

from typing import Optional
from pydantic import AliasChoices, BaseModel, Field


class CancelOrderRequest(BaseModel):
    """客户取消订单请求模型"""
    user_id: str = Field(..., validation_alias=AliasChoices("user_id", "userId"))
    reason: str = Field("客户申请取消", description="取消原因")


class UpdateOrderStatusRequest(BaseModel):
    """履约状态更新请求模型"""
    new_status: str = Field(..., validation_alias=AliasChoices("new_status", "newStatus", "status"))
    admin_name: Optional[str] = Field(None, validation_alias=AliasChoices("admin_name", "adminName"))
    admin_notes: Optional[str] = Field(None, validation_alias=AliasChoices("admin_notes", "adminNotes"))
    estimated_delivery_date: Optional[str] = Field(
        None, validation_alias=AliasChoices("estimated_delivery_date", "estimatedDeliveryDate")
    )
