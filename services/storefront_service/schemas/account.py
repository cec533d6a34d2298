"""Account, balance and ledger schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.storefront_service.models.enums import (
    AccountStatus,
    LedgerEntryKind,
    ReferenceType,
)


class RegisterAccountRequest(BaseModel):
    """Sent by the bot on /start. ``referral_code`` comes from a ref_ deep link."""

    external_id: str = Field(..., min_length=1, max_length=64)
    username: Optional[str] = Field(default=None, max_length=64)
    referral_code: Optional[str] = Field(default=None, max_length=20)


class AccountResponse(BaseModel):
    id: uuid.UUID
    external_id: str
    username: Optional[str] = None
    balance: int
    referral_code: str
    referrer_id: Optional[uuid.UUID] = None
    referral_earnings: int
    status: AccountStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegisterAccountResponse(BaseModel):
    account: AccountResponse
    created: bool
    referral_applied: bool


class BalanceResponse(BaseModel):
    account_id: uuid.UUID
    balance: int


class LedgerEntryResponse(BaseModel):
    id: uuid.UUID
    amount: int
    kind: LedgerEntryKind
    description: str
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    balance_after: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerHistoryResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    page: int
    page_size: int


class ReferralStatsResponse(BaseModel):
    referral_code: str
    total: int
    completed: int
    pending: int
    coins_earned: int

    model_config = ConfigDict(from_attributes=True)


class AdjustBalanceRequest(BaseModel):
    amount: int = Field(..., description="Positive to credit, negative to debit")
    reason: str = Field(..., min_length=5)


class AccountStatusRequest(BaseModel):
    status: AccountStatus
    reason: Optional[str] = Field(default=None, max_length=255)
