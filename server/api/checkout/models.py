# 结账相关的数据模型
# 同时接受 snake_case 和前端使用的 camelCase 字段名

from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class VoucherInput(BaseModel):
    """客户端传入的优惠券，只有 code 生效，类型和面值以服务端为准"""
    code: str = Field(..., min_length=1, description="优惠码")
    type: Optional[str] = Field(None, description="客户端展示的类型")
    value: Optional[float] = Field(None, description="客户端展示的面值")


class CreateCheckoutSessionRequest(BaseModel):
    """创建结账会话请求模型"""
    model_config = ConfigDict(populate_by_name=True)

    cart_ids: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("cart_ids", "cartIds"), description="购物车行ID"
    )
    user_item_ids: Optional[List[str]] = Field(
        None, validation_alias=AliasChoices("user_item_ids", "userItemIds"), description="预约记录ID"
    )
    user_id: str = Field(..., validation_alias=AliasChoices("user_id", "userId"))
    payment_method: str = Field(..., validation_alias=AliasChoices("payment_method", "paymentMethod"))
    payment_type: str = Field("full", validation_alias=AliasChoices("payment_type", "paymentType"))
    success_url: Optional[str] = Field(None, validation_alias=AliasChoices("success_url", "successUrl"))
    cancel_url: Optional[str] = Field(None, validation_alias=AliasChoices("cancel_url", "cancelUrl"))
    voucher: Optional[VoucherInput] = None
    delivery_address_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("delivery_address_id", "deliveryAddressId")
    )
    branch: Optional[str] = None
    receipt_ref: Optional[str] = Field(None, validation_alias=AliasChoices("receipt_ref", "receiptRef"))


class CheckoutLine(BaseModel):
    record_id: str
    product_id: str
    name: str
    quantity: int
    gross_cents: int
    discount_cents: int
    net_cents: int
    reservation_fee_share_cents: int
    final_cents: int


class CheckoutSessionResponse(BaseModel):
    """创建结账会话响应模型"""
    session_id: str
    checkout_url: str
    provider: str
    receipt_ref: str
    origin: str
    currency: str
    subtotal_cents: int
    addons_total_cents: int
    discount_cents: int
    reservation_fee_cents: int
    total_cents: int
    voucher_code: Optional[str] = None
    lines: List[CheckoutLine]
