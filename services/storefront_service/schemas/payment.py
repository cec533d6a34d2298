"""External payment schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.storefront_service.models.enums import PaymentPurpose, PaymentStatus


class StartProductPaymentRequest(BaseModel):
    account_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int = Field(default=1, gt=0)
    pay_currency: Optional[str] = Field(default=None, max_length=20)


class StartCoinPaymentRequest(BaseModel):
    account_id: uuid.UUID
    coins: int = Field(..., gt=0)
    pay_currency: Optional[str] = Field(default=None, max_length=20)


class PaymentResponse(BaseModel):
    id: uuid.UUID
    account_id: uuid.UUID
    order_id: Optional[uuid.UUID] = None
    provider: str
    provider_transaction_id: str
    purpose: PaymentPurpose
    amount: Decimal
    currency: str
    pay_url: Optional[str] = None
    status: PaymentStatus
    provider_status: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReconcileResponse(BaseModel):
    checked: int
    settled: int
    expired: int
    errors: int
    stranded: int = 0

    model_config = ConfigDict(from_attributes=True)
