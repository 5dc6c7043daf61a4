# 优惠码模块

from .routes import router as vouchers_router

__all__ = ["vouchers_router"]
