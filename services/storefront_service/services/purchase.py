"""Purchase orchestrator: coordinates funds, orders, inventory and delivery.

One class handles both payment paths, selected by a ``PaymentMode`` value:

* ``BalancePay``: validate, debit GCoins, create the order, allocate or defer.
* ``ExternalPay``: the provider already collected the money, so there is no
  debit; the order records the external price and is allocated or deferred.

Business-rule failures come back as ``PurchaseResult`` values. A debit that
cannot be matched with delivered goods is refunded with retries; a refund that
still fails becomes a persisted ``refund_failed`` alert.
"""

import enum
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Sequence, Union

from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.retry import RetryConfig, retry_async
from services.storefront_service.errors import (
    AccountNotFoundError,
    ConcurrentUpdateError,
    InsufficientFundsError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
)
from services.storefront_service.models import (
    GCOIN_CURRENCY,
    Account,
    AccountStatus,
    AlertKind,
    LedgerEntryKind,
    Order,
    OrderKind,
    OrderStatus,
    PaymentMethod,
    Product,
    ReferenceType,
)
from services.storefront_service.services import (
    alerts,
    inventory,
    ledger,
    messages,
    orders,
    referrals,
)
from services.storefront_service.services.notifier import (
    MessagingSink,
    send_admins_quietly,
    send_quietly,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

INVENTORY_EXHAUSTED = "inventory exhausted"


# ---------------------------------------------------------------------------
# Payment modes and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalancePay:
    """Pay with the account's GCoin balance."""


@dataclass(frozen=True)
class ExternalPay:
    """Already paid through the external provider; carries the frozen intent."""

    payment_transaction_id: uuid.UUID
    unit_price: Decimal
    currency: str
    is_preorder: bool


PaymentMode = Union[BalancePay, ExternalPay]


class PurchaseError(str, enum.Enum):
    VALIDATION_ERROR = "validation_error"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_SUSPENDED = "account_suspended"
    PRODUCT_NOT_FOUND = "product_not_found"
    PRODUCT_UNAVAILABLE = "product_unavailable"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INTERNAL_ERROR = "internal_error"


class PurchaseOutcome(str, enum.Enum):
    COMPLETED = "completed"  # items allocated and delivery attempted
    PREORDERED = "preordered"  # order pending until replenishment
    AWAITING_STOCK = "awaiting_stock"  # paid externally, stock ran out meanwhile
    REJECTED = "rejected"


@dataclass
class PurchaseResult:
    outcome: PurchaseOutcome
    error: Optional[PurchaseError] = None
    order: Optional[Order] = None
    delivered_items: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def rejected(
        cls, error: PurchaseError, message: str, order: Optional[Order] = None
    ) -> "PurchaseResult":
        return cls(
            outcome=PurchaseOutcome.REJECTED, error=error, order=order, message=message
        )


@dataclass
class ReplenishmentReport:
    product_id: uuid.UUID
    completed: list[uuid.UUID] = field(default_factory=list)
    cancelled: list[uuid.UUID] = field(default_factory=list)
    still_pending: int = 0


def refund_key(order_id: uuid.UUID) -> str:
    return f"order-refund-{order_id}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PurchaseOrchestrator:
    """Runs purchases and their compensations on one session.

    Steps that can roll the session back (refund retries, lost order writes,
    alerts after a failed flush) expire every loaded ORM object, so ids and
    other plain values are captured before them and orders are reloaded after.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: MessagingSink,
        *,
        refund_retry: Optional[RetryConfig] = None,
    ):
        settings = get_settings()
        self.db = db
        self.notifier = notifier
        self.refund_retry = refund_retry or RetryConfig(
            max_attempts=settings.REFUND_MAX_ATTEMPTS,
            base_delay=settings.REFUND_RETRY_BASE_DELAY,
            retryable_exceptions=(SQLAlchemyError, OSError),
        )

    # -- entry points -------------------------------------------------------

    async def purchase(
        self,
        *,
        account_id: uuid.UUID,
        product_id: uuid.UUID,
        quantity: int,
        mode: PaymentMode = BalancePay(),
        customer_note: Optional[str] = None,
    ) -> PurchaseResult:
        """Run one purchase attempt through validate, charge, order, allocate/defer."""
        if not isinstance(quantity, int) or quantity <= 0:
            return PurchaseResult.rejected(
                PurchaseError.VALIDATION_ERROR, "Quantity must be a positive integer"
            )

        try:
            account = await ledger.get_account(self.db, account_id)
        except AccountNotFoundError as e:
            return PurchaseResult.rejected(PurchaseError.ACCOUNT_NOT_FOUND, e.message)
        try:
            product = await inventory.get_product(self.db, product_id)
        except ProductNotFoundError as e:
            return PurchaseResult.rejected(PurchaseError.PRODUCT_NOT_FOUND, e.message)

        if isinstance(mode, ExternalPay):
            # Money already collected: a suspension does not block delivery.
            return await self._purchase_external(
                account, product, quantity, mode, customer_note
            )
        if account.status == AccountStatus.SUSPENDED:
            return PurchaseResult.rejected(
                PurchaseError.ACCOUNT_SUSPENDED, "This account is suspended"
            )
        return await self._purchase_with_balance(
            account, product, quantity, customer_note
        )

    async def process_pending_orders(self, product_id: uuid.UUID) -> ReplenishmentReport:
        """Replenishment trigger: fulfil waiting orders for the product, oldest first.

        Stops at the first order the remaining stock cannot cover. Orders that
        another worker settled in the meantime are skipped.
        """
        report = ReplenishmentReport(product_id=product_id)
        queue = [
            order.id
            for order in await orders.list_pending_for_product(self.db, product_id)
        ]

        for index, order_id in enumerate(queue):
            order = await orders.find_by_id(self.db, order_id)
            if order is None or order.status != OrderStatus.PENDING:
                continue
            product = await inventory.get_product(self.db, product_id)
            if product.force_unavailable or product.stock_count < order.quantity:
                report.still_pending = len(queue) - index
                break

            account = await ledger.get_account(self.db, order.account_id)
            result = await self._allocate_and_deliver(order, product, account)
            settled = result.order.status if result.order is not None else None
            if result.outcome == PurchaseOutcome.COMPLETED:
                report.completed.append(order_id)
            elif settled == OrderStatus.CANCELLED:
                report.cancelled.append(order_id)
            elif settled == OrderStatus.COMPLETED:
                logger.info("Order %s was fulfilled elsewhere; skipping", order_id)
            else:
                report.still_pending = len(queue) - index
                break

        logger.info(
            "Replenishment for product %s: %d completed, %d cancelled, %d pending",
            product_id,
            len(report.completed),
            len(report.cancelled),
            report.still_pending,
        )
        return report

    async def fulfill_order(
        self, order_id: uuid.UUID, items: Sequence[str], note: Optional[str] = None
    ) -> Order:
        """Admin fulfilment with explicitly supplied content."""
        order = await orders.fulfill_order(self.db, order_id, items=items, note=note)
        product = await inventory.get_product(self.db, order.product_id)
        account = await ledger.get_account(self.db, order.account_id)
        account_id = account.id
        await send_quietly(
            self.notifier,
            account.external_id,
            messages.delivery_message(order, product, list(items)),
        )
        await self._trigger_referral(account_id)
        return await orders.find_by_id(self.db, order_id)

    async def cancel_order(
        self, order_id: uuid.UUID, reason: str, *, refund: bool = True
    ) -> Order:
        """Admin cancellation of a pending order, refunding GCoin payments."""
        order = await orders.cancel_order(self.db, order_id, reason=reason)
        account = await ledger.get_account(self.db, order.account_id)
        if refund and order.payment_method == PaymentMethod.BALANCE:
            product = await inventory.get_product(self.db, order.product_id)
            await self._refund(
                order_id=order_id,
                account_id=account.id,
                amount=int(order.total_amount),
                product_name=product.name,
                reason=reason,
            )
            return await orders.find_by_id(self.db, order_id)

        await send_quietly(
            self.notifier,
            account.external_id,
            messages.cancellation_message(order, reason),
        )
        return order

    async def retry_refund(
        self,
        *,
        order_id: uuid.UUID,
        account_id: uuid.UUID,
        amount: int,
        reason: str,
    ) -> bool:
        """Re-drive a refund that previously exhausted its retries."""
        await ledger.get_account(self.db, account_id)
        order = await orders.find_by_id(self.db, order_id)
        product_name = "your order"
        if order is not None:
            product = await self.db.get(Product, order.product_id)
            if product is not None:
                product_name = product.name
        return await self._refund(
            order_id=order_id,
            account_id=account_id,
            amount=amount,
            product_name=product_name,
            reason=reason,
            alert_on_failure=False,
        )

    # -- balance path -------------------------------------------------------

    async def _purchase_with_balance(
        self,
        account: Account,
        product: Product,
        quantity: int,
        customer_note: Optional[str],
    ) -> PurchaseResult:
        if not product.purchasable:
            if not product.force_unavailable and product.stock_count == 0:
                return PurchaseResult.rejected(
                    PurchaseError.INSUFFICIENT_STOCK, f"{product.name} is sold out"
                )
            return PurchaseResult.rejected(
                PurchaseError.PRODUCT_UNAVAILABLE, f"{product.name} is not available"
            )
        immediate = product.is_available
        if immediate and product.stock_count < quantity:
            return PurchaseResult.rejected(
                PurchaseError.INSUFFICIENT_STOCK,
                f"Only {product.stock_count} item(s) of {product.name} left",
            )

        account_id = account.id
        product_id = product.id
        product_name = product.name
        unit_price = product.gcoin_price
        total = unit_price * quantity
        order_id = uuid.uuid4()

        try:
            account = await ledger.debit(
                self.db,
                account_id=account_id,
                amount=total,
                kind=LedgerEntryKind.PRODUCT_PURCHASE,
                description=f"Purchase of {quantity} x {product_name}",
                reference_type=ReferenceType.ORDER,
                reference_id=str(order_id),
                idempotency_key=f"order-debit-{order_id}",
            )
        except InsufficientFundsError as e:
            return PurchaseResult.rejected(
                PurchaseError.INSUFFICIENT_FUNDS,
                f"Not enough GCoins: need {total}, have {e.available}",
            )
        except AccountNotFoundError as e:
            return PurchaseResult.rejected(PurchaseError.ACCOUNT_NOT_FOUND, e.message)

        try:
            order = await orders.create(
                self.db,
                order_id=order_id,
                account_id=account_id,
                product_id=product_id,
                quantity=quantity,
                unit_price=Decimal(unit_price),
                currency=GCOIN_CURRENCY,
                payment_method=PaymentMethod.BALANCE,
                kind=OrderKind.PURCHASE if immediate else OrderKind.PREORDER,
                customer_note=customer_note,
            )
        except Exception:
            logger.exception(
                "Order creation failed after debiting %d from account %s",
                total,
                account_id,
            )
            await self.db.rollback()
            await self._refund(
                order_id=order_id,
                account_id=account_id,
                amount=total,
                product_name=product_name,
                reason="order could not be recorded",
            )
            return PurchaseResult.rejected(
                PurchaseError.INTERNAL_ERROR, "Your order could not be recorded"
            )

        if immediate:
            return await self._allocate_and_deliver(order, product, account)
        return await self._defer(order, product, account)

    # -- external path ------------------------------------------------------

    async def _purchase_external(
        self,
        account: Account,
        product: Product,
        quantity: int,
        mode: ExternalPay,
        customer_note: Optional[str],
    ) -> PurchaseResult:
        try:
            order = await orders.create(
                self.db,
                account_id=account.id,
                product_id=product.id,
                quantity=quantity,
                unit_price=mode.unit_price,
                currency=mode.currency,
                payment_method=PaymentMethod.EXTERNAL,
                kind=OrderKind.PREORDER if mode.is_preorder else OrderKind.PURCHASE,
                customer_note=customer_note,
                payment_transaction_id=mode.payment_transaction_id,
            )
        except Exception:
            logger.exception(
                "Order creation failed for external payment %s",
                mode.payment_transaction_id,
            )
            await self.db.rollback()
            return PurchaseResult.rejected(
                PurchaseError.INTERNAL_ERROR, "Your order could not be recorded"
            )

        if mode.is_preorder:
            return await self._defer(order, product, account)
        return await self._allocate_and_deliver(order, product, account)

    # -- shared steps -------------------------------------------------------

    async def _defer(
        self, order: Order, product: Product, account: Account
    ) -> PurchaseResult:
        await send_quietly(
            self.notifier, account.external_id, messages.preorder_message(order, product)
        )
        await send_admins_quietly(
            self.notifier,
            messages.admin_new_order_message(order, product, account.external_id),
        )
        return PurchaseResult(
            outcome=PurchaseOutcome.PREORDERED,
            order=order,
            message="Preorder placed; you will be notified when stock arrives",
        )

    async def _allocate_and_deliver(
        self, order: Order, product: Product, account: Account
    ) -> PurchaseResult:
        order_id = order.id
        loaded_version = order.version
        product_id = product.id
        account_id = account.id
        external_id = account.external_id

        try:
            items = await inventory.allocate(
                self.db, product_id=product_id, quantity=order.quantity
            )
        except (InsufficientStockError, ConcurrentUpdateError) as e:
            logger.warning("Allocation for order %s failed: %s", order_id, e)
            return await self._handle_lost_stock(order, product, account)

        try:
            # Only the writer that still sees the pending order it loaded may
            # attach goods to it.
            order = await orders.update_status(
                self.db,
                order_id,
                OrderStatus.COMPLETED,
                note=f"Delivered {len(items)} item(s)",
                delivered_items=items,
                expected_status=OrderStatus.PENDING,
                expected_version=loaded_version,
            )
        except (InvalidStatusTransitionError, ConcurrentUpdateError) as e:
            logger.warning(
                "Order %s changed during fulfilment, releasing %d item(s): %s",
                order_id,
                len(items),
                e,
            )
            await inventory.release(self.db, product_id=product_id, items=items)
            current = await orders.find_by_id(self.db, order_id)
            return PurchaseResult.rejected(
                PurchaseError.INTERNAL_ERROR,
                "Order was modified while it was being fulfilled",
                order=current,
            )
        except Exception:
            logger.exception("Could not record delivery for order %s", order_id)
            await self.db.rollback()
            await alerts.raise_alert(
                self.db,
                kind=AlertKind.DELIVERY_FAILED,
                message="Items allocated but order completion was not recorded",
                account_id=account_id,
                order_id=order_id,
                details={"delivered_items": items},
            )
            order = await orders.find_by_id(self.db, order_id)
            product = await inventory.get_product(self.db, product_id)
            await send_quietly(
                self.notifier,
                external_id,
                messages.delivery_message(order, product, items),
            )
            return PurchaseResult(
                outcome=PurchaseOutcome.COMPLETED,
                error=PurchaseError.INTERNAL_ERROR,
                order=order,
                delivered_items=items,
                message="Items delivered; order record needs attention",
            )

        await send_quietly(
            self.notifier,
            external_id,
            messages.delivery_message(order, product, items),
        )
        await send_admins_quietly(
            self.notifier,
            messages.admin_new_order_message(order, product, external_id),
        )
        await self._trigger_referral(account_id)
        return PurchaseResult(
            outcome=PurchaseOutcome.COMPLETED,
            order=await orders.find_by_id(self.db, order_id),
            delivered_items=items,
            message=f"Delivered {len(items)} item(s)",
        )

    async def _handle_lost_stock(
        self, order: Order, product: Product, account: Account
    ) -> PurchaseResult:
        order_id = order.id
        product_id = product.id
        product_name = product.name
        account_id = account.id
        external_id = account.external_id

        if order.payment_method == PaymentMethod.EXTERNAL:
            await alerts.raise_alert(
                self.db,
                kind=AlertKind.FULFILLMENT_PENDING,
                message="External payment collected but stock ran out",
                account_id=account_id,
                order_id=order_id,
                payment_transaction_id=order.payment_transaction_id,
                details={"product_id": str(product_id), "quantity": order.quantity},
            )
            order = await orders.find_by_id(self.db, order_id)
            product = await inventory.get_product(self.db, product_id)
            await send_quietly(
                self.notifier,
                external_id,
                messages.awaiting_stock_message(order, product),
            )
            return PurchaseResult(
                outcome=PurchaseOutcome.AWAITING_STOCK,
                order=order,
                message="Payment received; order queued until stock is replenished",
            )

        refunded = await self._refund(
            order_id=order_id,
            account_id=account_id,
            amount=int(order.total_amount),
            product_name=product_name,
            reason=INVENTORY_EXHAUSTED,
        )
        try:
            order = await orders.update_status(
                self.db,
                order_id,
                OrderStatus.CANCELLED,
                note=INVENTORY_EXHAUSTED,
                expected_status=OrderStatus.PENDING,
            )
        except (InvalidStatusTransitionError, ConcurrentUpdateError, OrderNotFoundError) as e:
            logger.error("Could not cancel order %s after refund: %s", order_id, e)
            order = await orders.find_by_id(self.db, order_id)
        outcome = "your GCoins were refunded" if refunded else "a refund is on its way"
        return PurchaseResult.rejected(
            PurchaseError.INSUFFICIENT_STOCK,
            f"{product_name} sold out; {outcome}",
            order=order,
        )

    async def _reset_session(self, exc: BaseException) -> None:
        await self.db.rollback()

    async def _refund(
        self,
        *,
        order_id: uuid.UUID,
        account_id: uuid.UUID,
        amount: int,
        product_name: str,
        reason: str,
        alert_on_failure: bool = True,
    ) -> bool:
        """Credit ``amount`` back, retrying transient failures.

        Keyed on the order id so retries and re-drives can never refund twice.
        """
        key = refund_key(order_id)

        async def attempt() -> Account:
            return await ledger.credit(
                self.db,
                account_id=account_id,
                amount=amount,
                kind=LedgerEntryKind.REFUND,
                description=f"Refund for {product_name}: {reason}",
                reference_type=ReferenceType.ORDER,
                reference_id=str(order_id),
                idempotency_key=key,
            )

        try:
            account = await retry_async(
                attempt, self.refund_retry, on_retry=self._reset_session
            )
        except Exception as e:
            logger.critical(
                "Refund of %d GCoins to account %s for order %s failed: %s",
                amount,
                account_id,
                order_id,
                e,
            )
            await self.db.rollback()
            if alert_on_failure:
                await alerts.raise_alert(
                    self.db,
                    kind=AlertKind.REFUND_FAILED,
                    message=f"Refund failed after retries: {e}",
                    account_id=account_id,
                    order_id=order_id,
                    amount=amount,
                    details={"idempotency_key": key, "reason": reason},
                )
            return False

        await send_quietly(
            self.notifier,
            account.external_id,
            messages.refund_message(product_name, amount, reason),
        )
        return True

    async def _trigger_referral(self, account_id: uuid.UUID) -> None:
        try:
            await referrals.on_first_purchase_completed(
                self.db, account_id=account_id, notifier=self.notifier
            )
        except Exception:
            await self.db.rollback()
            logger.exception("Referral trigger failed for account %s", account_id)
