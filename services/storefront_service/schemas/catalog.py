"""Product and stock schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, max_length=100)
    price: Decimal = Field(..., ge=0, description="Price in the provider currency")
    gcoin_price: int = Field(..., gt=0)
    digital_content: list[str] = Field(default_factory=list)
    allow_preorder: bool = False
    preorder_note: Optional[str] = None


class ProductUpdateRequest(BaseModel):
    price: Optional[Decimal] = Field(default=None, ge=0)
    gcoin_price: Optional[int] = Field(default=None, gt=0)
    allow_preorder: Optional[bool] = None
    preorder_note: Optional[str] = None


class ProductResponse(BaseModel):
    """Catalog view; the content items themselves are never exposed."""

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: Decimal
    gcoin_price: int
    stock_count: int
    is_available: bool
    force_unavailable: bool
    allow_preorder: bool
    preorder_note: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RestockRequest(BaseModel):
    items: list[str] = Field(..., min_length=1)
    process_pending: bool = True


class AvailabilityRequest(BaseModel):
    force_unavailable: bool


class ReplenishmentResponse(BaseModel):
    product_id: uuid.UUID
    completed: list[uuid.UUID]
    cancelled: list[uuid.UUID]
    still_pending: int

    model_config = ConfigDict(from_attributes=True)


class RestockResponse(BaseModel):
    product: ProductResponse
    replenishment: Optional[ReplenishmentResponse] = None
