# 订单相关的请求模型

from typing import Optional
from pydantic import BaseModel, Field


class GuestLookupRequest(BaseModel):
    """游客查单请求模型"""
    email: str = Field(..., max_length=254, description="下单邮箱")
    order_number: str = Field(..., max_length=20, description="订单号")


class RefundRequestBody(BaseModel):
    """退款申请请求模型"""
    reason: str = Field(..., max_length=1000, description="申请原因")
    email: Optional[str] = Field(None, max_length=254, description="游客邮箱（未登录时必填）")


class CancelOrderRequest(BaseModel):
    """取消未付款订单请求模型"""
    reason: Optional[str] = Field(None, max_length=500, description="取消原因")
    email: Optional[str] = Field(None, max_length=254, description="游客邮箱（未登录时必填）")
