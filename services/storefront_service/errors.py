"""Domain exceptions raised by the storefront services.

Routers translate these to HTTP responses; the purchase orchestrator turns the
business-rule ones into ``PurchaseResult`` values instead of letting them escape.
"""

import uuid
from typing import Optional, Union

IdLike = Union[uuid.UUID, str]


class StorefrontError(Exception):
    """Base class for all storefront domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StorefrontError):
    """Bad input, rejected before any side effect."""


class InvalidAmountError(ValidationError):
    def __init__(self, amount: int):
        super().__init__(f"Amount must be a positive integer, got {amount}")
        self.amount = amount


class AccountNotFoundError(StorefrontError):
    def __init__(self, account_ref: IdLike):
        super().__init__(f"Account {account_ref} not found")
        self.account_ref = account_ref


class ProductNotFoundError(StorefrontError):
    def __init__(self, product_id: IdLike):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class OrderNotFoundError(StorefrontError):
    def __init__(self, order_id: IdLike):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class PaymentNotFoundError(StorefrontError):
    def __init__(self, provider_transaction_id: str):
        super().__init__(f"Payment {provider_transaction_id} not found")
        self.provider_transaction_id = provider_transaction_id


class AlertNotFoundError(StorefrontError):
    def __init__(self, alert_id: IdLike):
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class InsufficientFundsError(StorefrontError):
    """Balance could not cover the debit at write time."""

    def __init__(self, account_id: IdLike, required: int, available: Optional[int]):
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"need {required}, have {available}"
        )
        self.account_id = account_id
        self.required = required
        self.available = available


class InsufficientStockError(StorefrontError):
    """Stock could not cover the allocation at write time."""

    def __init__(self, product_id: IdLike, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidStatusTransitionError(StorefrontError):
    def __init__(self, order_id: IdLike, current: str, requested: str):
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}"
        )
        self.order_id = order_id
        self.current = current
        self.requested = requested


class ConcurrentUpdateError(StorefrontError):
    """A conditional write kept losing to concurrent writers."""


class ProductUnavailableError(ValidationError):
    def __init__(self, product_id: IdLike, name: str):
        super().__init__(f"{name} is not available for purchase")
        self.product_id = product_id


class AccountSuspendedError(StorefrontError):
    """The account exists but may not buy or top up."""

    def __init__(self, account_id: IdLike):
        super().__init__(f"Account {account_id} is suspended")
        self.account_id = account_id


class IdempotencyKeyConflictError(StorefrontError):
    """An idempotency key was reused for a different balance change."""

    def __init__(self, key: str, detail: str):
        super().__init__(f"Idempotency key {key} already used for {detail}")
        self.key = key
