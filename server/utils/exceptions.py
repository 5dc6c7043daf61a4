# 业务异常定义
# 每个异常携带HTTP状态码和错误代码，由 api.main 中的全局异常处理器统一转换为错误响应

from typing import Any, Dict, Optional


class StoreError(Exception):
    """业务异常基类"""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(StoreError):
    """请求参数校验失败，不做任何数据修改"""

    status_code = 400
    error_code = "validation_error"


class EmptyCartError(ValidationError):
    """没有可结算的商品行"""

    error_code = "empty_cart"

    def __init__(self, message: str = "没有可结算的商品"):
        super().__init__(message)


class NotFoundError(StoreError):
    status_code = 404
    error_code = "not_found"


class OwnershipError(StoreError):
    status_code = 403
    error_code = "forbidden"


class InventoryConflictError(StoreError):
    """库存不足，整个结账请求失败"""

    status_code = 409
    error_code = "inventory_conflict"

    def __init__(self, product_id: str, requested: int, available: Optional[int]):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"商品 {product_id} 库存不足，需要 {requested} 件，当前库存 {available if available is not None else 0} 件",
            data={
                "product_id": product_id,
                "requested": requested,
                "available": available,
            },
        )


class ReceiptConflictError(StoreError):
    """收据引用号已被其他用户或其他结账使用"""

    status_code = 409
    error_code = "receipt_conflict"

    def __init__(self, receipt_ref: str):
        self.receipt_ref = receipt_ref
        super().__init__(f"收据引用号 {receipt_ref} 已被占用", data={"receipt_ref": receipt_ref})


class InvalidTransitionError(StoreError):
    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"订单状态无法从 {current} 变更为 {target}",
            data={"current_status": current, "new_status": target},
        )


class PaymentRequiredError(StoreError):
    """未付款的订单只能取消，不能进入履约流程"""

    status_code = 409
    error_code = "payment_required"

    def __init__(self, item_id: str, target: str):
        super().__init__(
            f"订单记录 {item_id} 尚未付款，无法变更为 {target}",
            data={"id": item_id, "new_status": target},
        )


class UpstreamError(StoreError):
    """支付渠道调用失败"""

    status_code = 502
    error_code = "upstream_error"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} 调用失败: {message}", data={"provider": provider})


class PaymentConfigurationError(StoreError):
    """非调试环境缺少支付渠道凭据，不允许使用模拟模式"""

    status_code = 503
    error_code = "payment_not_configured"

    def __init__(self, provider: str, message: str = "支付渠道凭据未配置"):
        self.provider = provider
        super().__init__(f"{provider} {message}", data={"provider": provider})


class WebhookSignatureError(StoreError):
    status_code = 400
    error_code = "invalid_signature"
