# 预约相关的数据模型

from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field


class AddonSelection(BaseModel):
    """附加项，fee 单位为元"""
    key: str
    label: Optional[str] = None
    fee: float = Field(0, ge=0)
    value: Optional[str] = None


class CreateReservationRequest(BaseModel):
    """创建预约请求模型"""
    user_id: str = Field(..., validation_alias=AliasChoices("user_id", "userId"))
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(1, ge=1, description="数量")
    addons: List[AddonSelection] = Field(default_factory=list)
    delivery_address_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("delivery_address_id", "deliveryAddressId")
    )
    branch: Optional[str] = None
    notes: Optional[str] = None
