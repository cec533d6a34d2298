"""Operational alert schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.storefront_service.models.enums import AlertKind, AlertStatus


class AlertResponse(BaseModel):
    id: uuid.UUID
    kind: AlertKind
    status: AlertStatus
    account_id: Optional[uuid.UUID] = None
    order_id: Optional[uuid.UUID] = None
    payment_transaction_id: Optional[uuid.UUID] = None
    amount: Optional[int] = None
    message: str
    details: dict
    resolved_by: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AlertListResponse(BaseModel):
    alerts: list[AlertResponse]
    total: int


class ResolveAlertRequest(BaseModel):
    note: Optional[str] = Field(default=None, max_length=500)
