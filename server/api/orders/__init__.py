# 订单模块

from .routes import router as orders_router
from .models import CancelOrderRequest, UpdateOrderStatusRequest

__all__ = [
    "orders_router",
    "CancelOrderRequest",
    "UpdateOrderStatusRequest"
]
