# 订单模块

from .routes import router as orders_router
from .models import GuestLookupRequest, RefundRequestBody, CancelOrderRequest

__all__ = [
    "orders_router",
    "GuestLookupRequest",
    "RefundRequestBody",
    "CancelOrderRequest"
]
