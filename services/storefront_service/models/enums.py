"""Enums for the Storefront Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class LedgerEntryKind(str, enum.Enum):
    COIN_PURCHASE = "purchase"
    PRODUCT_PURCHASE = "purchase_product"
    REFERRAL_BONUS = "referral_bonus"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REFUND = "refund"


class ReferenceType(str, enum.Enum):
    ORDER = "order"
    PAYMENT = "payment"
    REFERRAL = "referral"


class OrderKind(str, enum.Enum):
    PURCHASE = "purchase"
    PREORDER = "preorder"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    BALANCE = "balance"
    EXTERNAL = "external"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentPurpose(str, enum.Enum):
    PRODUCT = "product"
    COINS = "coins"


class ReferralStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AlertKind(str, enum.Enum):
    FULFILLMENT_PENDING = "fulfillment_pending"  # paid externally, goods not granted
    REFUND_FAILED = "refund_failed"  # debited, nothing delivered, refund not applied
    DELIVERY_FAILED = "delivery_failed"


class AlertStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


GCOIN_CURRENCY = "GCOIN"
