# 支付回调模块

from .routes import router as webhooks_router

__all__ = ["webhooks_router"]
