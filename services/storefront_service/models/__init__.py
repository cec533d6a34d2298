"""Storefront Service models package.

Re-exports all models and enums so that SQLAlchemy's mapper registry and
Alembic see every model class on import.
"""

from services.storefront_service.models.account import Account, LedgerEntry
from services.storefront_service.models.alert import FulfillmentAlert
from services.storefront_service.models.catalog import Product, derive_availability
from services.storefront_service.models.enums import (
    GCOIN_CURRENCY,
    AccountStatus,
    AlertKind,
    AlertStatus,
    LedgerEntryKind,
    OrderKind,
    OrderStatus,
    PaymentMethod,
    PaymentPurpose,
    PaymentStatus,
    ReferenceType,
    ReferralStatus,
)
from services.storefront_service.models.order import Order, OrderStatusEntry
from services.storefront_service.models.payment import PaymentTransaction
from services.storefront_service.models.referral import Referral

__all__ = [
    # Enums
    "GCOIN_CURRENCY",
    "AccountStatus",
    "AlertKind",
    "AlertStatus",
    "LedgerEntryKind",
    "OrderKind",
    "OrderStatus",
    "PaymentMethod",
    "PaymentPurpose",
    "PaymentStatus",
    "ReferenceType",
    "ReferralStatus",
    # Models
    "Account",
    "LedgerEntry",
    "Product",
    "Order",
    "OrderStatusEntry",
    "PaymentTransaction",
    "Referral",
    "FulfillmentAlert",
    # Helpers
    "derive_availability",
]
