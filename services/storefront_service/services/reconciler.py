"""External payment reconciler: turns provider status changes into fulfilment.

Product payments precede their order: the pending ``PaymentTransaction`` keeps
the frozen purchase intent in ``payment_metadata`` and the order is only created
when the provider reports the payment finished. Every terminal transition is
claimed with a conditional ``UPDATE ... WHERE status = 'pending'``, so replayed
callbacks and concurrent polls fulfil at most once.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import gcoins_to_fiat, to_money
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.logging import get_logger
from libs.common.retry import RetryConfig, retry_async
from services.storefront_service.errors import (
    ConcurrentUpdateError,
    InsufficientStockError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    PaymentNotFoundError,
    ProductUnavailableError,
)
from services.storefront_service.models import (
    AlertKind,
    FulfillmentAlert,
    LedgerEntryKind,
    OrderStatus,
    PaymentPurpose,
    PaymentStatus,
    PaymentTransaction,
    ReferenceType,
)
from services.storefront_service.nowpayments_client import (
    PROVIDER_NAME,
    NowPaymentsClient,
    NowPaymentsError,
    map_provider_status,
)
from services.storefront_service.services import (
    alerts,
    inventory,
    ledger,
    messages,
    orders,
)
from services.storefront_service.services.notifier import MessagingSink, send_quietly
from services.storefront_service.services.purchase import (
    ExternalPay,
    PurchaseOrchestrator,
)
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class ReconcileSummary:
    checked: int = 0
    settled: int = 0
    expired: int = 0
    errors: int = 0
    stranded: int = 0


class PaymentReconciler:
    def __init__(
        self,
        db: AsyncSession,
        notifier: MessagingSink,
        provider: NowPaymentsClient,
        *,
        orchestrator: Optional[PurchaseOrchestrator] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.provider = provider
        self.orchestrator = orchestrator or PurchaseOrchestrator(db, notifier)

    # -- starting payments --------------------------------------------------

    async def start_product_payment(
        self,
        *,
        account_id: uuid.UUID,
        product_id: uuid.UUID,
        quantity: int,
        pay_currency: Optional[str] = None,
    ) -> PaymentTransaction:
        """Create a provider invoice for a product and store it as pending.

        The unit price and preorder flag are frozen into the metadata now; the
        order is created from them once the provider confirms the payment.
        """
        if not isinstance(quantity, int) or quantity <= 0:
            raise InvalidAmountError(quantity)
        account = await ledger.get_active_account(self.db, account_id)
        product = await inventory.get_product(self.db, product_id)
        if not product.purchasable:
            raise ProductUnavailableError(product.id, product.name)
        if product.is_available and product.stock_count < quantity:
            raise InsufficientStockError(product.id, quantity, product.stock_count)

        settings = get_settings()
        unit_price = to_money(product.price)
        metadata = {
            "account_id": str(account.id),
            "product_id": str(product.id),
            "quantity": quantity,
            "unit_price": str(unit_price),
            "is_preorder": not product.is_available,
        }
        return await self._start(
            account_id=account.id,
            purpose=PaymentPurpose.PRODUCT,
            amount=unit_price * quantity,
            currency=settings.PRICE_CURRENCY,
            metadata=metadata,
            pay_currency=pay_currency,
            description=f"{quantity} x {product.name}",
        )

    async def start_coin_purchase(
        self,
        *,
        account_id: uuid.UUID,
        coins: int,
        pay_currency: Optional[str] = None,
    ) -> PaymentTransaction:
        """Create a provider invoice for a GCoin top-up."""
        if not isinstance(coins, int) or coins <= 0:
            raise InvalidAmountError(coins)
        account = await ledger.get_active_account(self.db, account_id)
        amount = gcoins_to_fiat(coins)
        if amount <= 0:
            raise InvalidAmountError(coins)
        return await self._start(
            account_id=account.id,
            purpose=PaymentPurpose.COINS,
            amount=amount,
            currency=get_settings().PRICE_CURRENCY,
            metadata={"account_id": str(account.id), "coins": coins},
            pay_currency=pay_currency,
            description=f"{coins} GCoins",
        )

    async def _start(
        self,
        *,
        account_id: uuid.UUID,
        purpose: PaymentPurpose,
        amount: Decimal,
        currency: str,
        metadata: dict,
        pay_currency: Optional[str],
        description: str,
    ) -> PaymentTransaction:
        payment_id = uuid.uuid4()
        metadata = {**metadata, "reference": str(payment_id)}
        external = await self.provider.create_payment(
            amount,
            currency,
            metadata,
            pay_currency=pay_currency,
            description=description,
        )

        payment = PaymentTransaction(
            id=payment_id,
            account_id=account_id,
            provider=PROVIDER_NAME,
            provider_transaction_id=external.provider_transaction_id,
            purpose=purpose,
            amount=to_money(amount),
            currency=currency,
            pay_url=external.pay_url,
            status=PaymentStatus.PENDING,
            payment_metadata=metadata,
        )
        self.db.add(payment)
        await self.db.commit()

        logger.info(
            "Started %s payment %s (%s %s) for account %s, provider id %s",
            purpose.value,
            payment.id,
            payment.amount,
            currency,
            account_id,
            external.provider_transaction_id,
        )
        return payment

    # -- status changes -----------------------------------------------------

    async def _find(self, provider_transaction_id: str) -> PaymentTransaction:
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.provider_transaction_id == provider_transaction_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(provider_transaction_id)
        return payment

    async def on_provider_status_change(
        self,
        provider_transaction_id: str,
        raw_status: str,
        payload: Optional[dict] = None,
    ) -> PaymentTransaction:
        """Apply a provider status report. Safe to call any number of times."""
        payload = payload or {}
        payment = await self._find(provider_transaction_id)
        new_status = map_provider_status(raw_status)

        if payment.status.is_terminal:
            logger.info(
                "Payment %s already %s; ignoring provider status %s",
                payment.id,
                payment.status.value,
                raw_status,
            )
            return payment

        metadata = dict(payment.payment_metadata or {})
        if payload.get("payment_id") is not None:
            metadata["provider_payment_id"] = str(payload["payment_id"])

        values = {
            "provider_status": raw_status,
            "payment_metadata": metadata,
            "updated_at": utc_now(),
        }
        if new_status is not None:
            values["status"] = new_status
            if new_status == PaymentStatus.COMPLETED:
                values["completed_at"] = utc_now()

        result = await self.db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == payment.id,
                PaymentTransaction.status == PaymentStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            logger.info("Payment %s was settled concurrently", payment.id)
            return await self._find(provider_transaction_id)

        ref = _PaymentRef.of(await self._find(provider_transaction_id))
        if new_status is None:
            logger.info("Payment %s in flight: %s", ref.id, raw_status)
            return await self._find(provider_transaction_id)

        logger.info("Payment %s -> %s (%s)", ref.id, new_status.value, raw_status)
        if new_status == PaymentStatus.COMPLETED:
            if ref.purpose == PaymentPurpose.COINS:
                await self._credit_coins(ref)
            else:
                await self._fulfill_product(ref)
        else:
            await self._handle_failure(ref, raw_status)
        return await self._find(provider_transaction_id)

    async def _link_order(self, payment_id: uuid.UUID, order_id: uuid.UUID) -> None:
        await self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == payment_id)
            .values(order_id=order_id, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def _fulfill_product(self, ref: "_PaymentRef") -> None:
        meta = ref.metadata
        try:
            mode = ExternalPay(
                payment_transaction_id=ref.id,
                unit_price=Decimal(str(meta["unit_price"])),
                currency=ref.currency,
                is_preorder=bool(meta.get("is_preorder", False)),
            )
            result = await self.orchestrator.purchase(
                account_id=uuid.UUID(str(meta["account_id"])),
                product_id=uuid.UUID(str(meta["product_id"])),
                quantity=int(meta["quantity"]),
                mode=mode,
            )
        except Exception as e:
            logger.exception("Fulfilment of external payment %s crashed", ref.id)
            await self._fulfillment_pending(ref, f"Fulfilment crashed: {e}")
            return

        if result.order is None:
            await self._fulfillment_pending(
                ref,
                f"Order not created ({result.error.value if result.error else 'unknown'}): "
                f"{result.message}",
            )
            return

        order_id = result.order.id
        await self._link_order(ref.id, order_id)
        logger.info(
            "External payment %s fulfilled by order %s (%s)",
            ref.id,
            order_id,
            result.outcome.value,
        )

    async def _credit_coins(self, ref: "_PaymentRef") -> None:
        coins = int(ref.metadata.get("coins", 0))
        settings = get_settings()

        async def attempt():
            return await ledger.credit(
                self.db,
                account_id=ref.account_id,
                amount=coins,
                kind=LedgerEntryKind.COIN_PURCHASE,
                description=f"Purchase of {coins} GCoins",
                reference_type=ReferenceType.PAYMENT,
                reference_id=str(ref.id),
                idempotency_key=f"coins-{ref.id}",
            )

        async def reset_session(exc: BaseException) -> None:
            await self.db.rollback()

        try:
            account = await retry_async(
                attempt,
                RetryConfig(
                    max_attempts=settings.REFUND_MAX_ATTEMPTS,
                    base_delay=settings.REFUND_RETRY_BASE_DELAY,
                    retryable_exceptions=(SQLAlchemyError, OSError),
                ),
                on_retry=reset_session,
            )
        except Exception as e:
            logger.exception("Crediting coins for payment %s failed", ref.id)
            await self._fulfillment_pending(ref, f"GCoin credit failed: {e}", amount=coins)
            return

        await send_quietly(
            self.notifier,
            account.external_id,
            messages.coins_credited_message(coins, account.balance),
        )

    async def _handle_failure(self, ref: "_PaymentRef", raw_status: str) -> None:
        waiting = [
            order.id
            for order in await orders.find_by_payment(self.db, ref.id)
            if order.status == OrderStatus.PENDING
        ]
        for order_id in waiting:
            try:
                await orders.update_status(
                    self.db,
                    order_id,
                    OrderStatus.CANCELLED,
                    note=f"payment {raw_status}",
                    expected_status=OrderStatus.PENDING,
                )
            except (InvalidStatusTransitionError, ConcurrentUpdateError) as e:
                logger.warning("Order %s not cancelled: %s", order_id, e)

        account = await ledger.get_account(self.db, ref.account_id)
        await send_quietly(
            self.notifier,
            account.external_id,
            messages.payment_failed_message(ref.amount, ref.currency, raw_status),
        )

    async def _fulfillment_pending(
        self, ref: "_PaymentRef", message: str, amount: Optional[int] = None
    ) -> None:
        await alerts.raise_alert(
            self.db,
            kind=AlertKind.FULFILLMENT_PENDING,
            message=message,
            account_id=ref.account_id,
            payment_transaction_id=ref.id,
            amount=amount,
            details={
                "provider_transaction_id": ref.provider_transaction_id,
                "metadata": ref.metadata,
            },
        )

    # -- polling fallback ---------------------------------------------------

    async def reconcile_pending_payments(self) -> ReconcileSummary:
        """Poll the provider for payments still pending after the grace period,
        then flag completed product payments that never produced an order."""
        settings = get_settings()
        now = utc_now()
        cutoff = now - timedelta(minutes=settings.PAYMENT_RECONCILE_AFTER_MINUTES)
        expire_before = now - timedelta(hours=settings.PAYMENT_EXPIRE_AFTER_HOURS)

        result = await self.db.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.status == PaymentStatus.PENDING,
                PaymentTransaction.created_at <= cutoff,
            )
            .order_by(PaymentTransaction.created_at.asc())
        )
        pending = [_PaymentRef.of(payment) for payment in result.scalars().all()]
        summary = ReconcileSummary(checked=len(pending))

        for ref in pending:
            provider_payment_id = ref.metadata.get("provider_payment_id")
            try:
                if not provider_payment_id:
                    if as_utc(ref.created_at) <= expire_before:
                        await self.on_provider_status_change(
                            ref.provider_transaction_id, "expired"
                        )
                        summary.expired += 1
                    continue

                status = await self.provider.get_payment_status(provider_payment_id)
                if map_provider_status(status.payment_status) is None:
                    continue
                await self.on_provider_status_change(
                    ref.provider_transaction_id,
                    status.payment_status,
                    {"payment_id": status.payment_id},
                )
                summary.settled += 1
            except NowPaymentsError as e:
                summary.errors += 1
                logger.error("Reconciling payment %s failed: %s", ref.id, e)
            except SQLAlchemyError as e:
                await self.db.rollback()
                summary.errors += 1
                logger.error("Reconciling payment %s failed: %s", ref.id, e)

        summary.stranded = await self._flag_stranded_payments(cutoff)

        logger.info(
            "Reconciled pending payments: checked=%d settled=%d expired=%d "
            "errors=%d stranded=%d",
            summary.checked,
            summary.settled,
            summary.expired,
            summary.errors,
            summary.stranded,
        )
        return summary

    async def _flag_stranded_payments(self, cutoff) -> int:
        """Completed product payments with no linked order and no open case.

        The completion is committed before the order is created, so a crash in
        between leaves money collected with nothing to show for it. An order
        that exists but was never linked is linked; otherwise an alert is
        raised once per payment.
        """
        alerted = select(FulfillmentAlert.payment_transaction_id).where(
            FulfillmentAlert.kind == AlertKind.FULFILLMENT_PENDING,
            FulfillmentAlert.payment_transaction_id.is_not(None),
        )
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.status == PaymentStatus.COMPLETED,
                PaymentTransaction.purpose == PaymentPurpose.PRODUCT,
                PaymentTransaction.order_id.is_(None),
                PaymentTransaction.completed_at <= cutoff,
                PaymentTransaction.id.not_in(alerted),
            )
            .order_by(PaymentTransaction.completed_at.asc())
        )
        stranded = [_PaymentRef.of(payment) for payment in result.scalars().all()]

        flagged = 0
        for ref in stranded:
            existing = await orders.find_by_payment(self.db, ref.id)
            if existing:
                await self._link_order(ref.id, existing[0].id)
                logger.info("Linked payment %s to order %s", ref.id, existing[0].id)
                continue
            logger.error("Completed payment %s has no order", ref.id)
            await self._fulfillment_pending(
                ref, "Payment completed but no order was created"
            )
            flagged += 1
        return flagged


@dataclass(frozen=True)
class _PaymentRef:
    """Column values of a payment, safe to use after the session rolls back."""

    id: uuid.UUID
    account_id: uuid.UUID
    provider_transaction_id: str
    purpose: PaymentPurpose
    amount: Decimal
    currency: str
    metadata: dict
    created_at: datetime

    @classmethod
    def of(cls, payment: PaymentTransaction) -> "_PaymentRef":
        return cls(
            id=payment.id,
            account_id=payment.account_id,
            provider_transaction_id=payment.provider_transaction_id,
            purpose=payment.purpose,
            amount=payment.amount,
            currency=payment.currency,
            metadata=dict(payment.payment_metadata or {}),
            created_at=payment.created_at,
        )
