# 购物车模块（弃购记录）

from .routes import router as carts_router
from .models import AbandonedCartRequest

__all__ = [
    "carts_router",
    "AbandonedCartRequest"
]
