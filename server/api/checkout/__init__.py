# 结账模块

from .routes import router as checkout_router
from .models import CreateCheckoutSessionRequest, CheckoutSessionResponse

__all__ = [
    "checkout_router",
    "CreateCheckoutSessionRequest",
    "CheckoutSessionResponse"
]
