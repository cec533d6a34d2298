"""Order and purchase schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.storefront_service.models.enums import (
    OrderKind,
    OrderStatus,
    PaymentMethod,
)


class OrderStatusEntryResponse(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    delivered_items: Optional[list[str]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    currency: str
    payment_method: PaymentMethod
    kind: OrderKind
    status: OrderStatus
    customer_note: Optional[str] = None
    delivered_items: list[str] = []
    payment_transaction_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    status_history: list[OrderStatusEntryResponse] = []

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    total: int
    page: int
    page_size: int


class PurchaseRequest(BaseModel):
    account_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int = Field(default=1, gt=0)
    customer_note: Optional[str] = Field(default=None, max_length=500)


class PurchaseResponse(BaseModel):
    success: bool
    outcome: str
    error: Optional[str] = None
    message: str
    order: Optional[OrderResponse] = None
    delivered_items: list[str] = []


class FulfillOrderRequest(BaseModel):
    items: list[str] = Field(..., min_length=1)
    note: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: str = Field(..., min_length=3)
    refund: bool = True


class ProductSalesResponse(BaseModel):
    product_id: uuid.UUID
    currency: str
    quantity: int
    total_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class SalesStatisticsResponse(BaseModel):
    total_orders: int
    totals_by_currency: dict[str, Decimal]
    products: list[ProductSalesResponse]

    model_config = ConfigDict(from_attributes=True)
