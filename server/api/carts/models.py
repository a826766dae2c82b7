# 弃购记录的请求模型

from typing import List, Optional
from pydantic import BaseModel, Field


class CartProduct(BaseModel):
    """购物车商品"""
    product_id: int = Field(..., gt=0)
    product_name: str = Field(..., max_length=200)
    quantity: int = Field(..., ge=1)
    price_cents: int = Field(..., ge=0)


class AbandonedCartRequest(BaseModel):
    """弃购上报请求模型"""
    session_id: str = Field(..., min_length=1, max_length=100, description="购物会话ID")
    email: Optional[str] = Field(None, max_length=254, description="联系邮箱")
    products: List[CartProduct] = Field(..., min_length=1)
    cart_total_cents: int = Field(..., ge=0)
