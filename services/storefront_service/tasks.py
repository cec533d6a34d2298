"""Background reconciliation tasks for the storefront service."""

from __future__ import annotations

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.storefront_service.models import AlertKind, AlertStatus
from services.storefront_service.nowpayments_client import (
    NowPaymentsClient,
    get_nowpayments_client,
)
from services.storefront_service.services import alerts, orders
from services.storefront_service.services.notifier import (
    MessagingSink,
    build_notifier,
)
from services.storefront_service.services.purchase import PurchaseOrchestrator
from services.storefront_service.services.reconciler import (
    PaymentReconciler,
    ReconcileSummary,
)

logger = get_logger(__name__)


async def reconcile_pending_payments(
    *,
    provider: NowPaymentsClient | None = None,
    notifier: MessagingSink | None = None,
    session_factory=AsyncSessionLocal,
) -> ReconcileSummary:
    """Poll the gateway for pending payments whose IPN never arrived."""
    provider = provider or get_nowpayments_client()
    notifier = notifier or build_notifier()

    async with session_factory() as db:
        reconciler = PaymentReconciler(db, notifier, provider)
        return await reconciler.reconcile_pending_payments()


async def retry_failed_refunds(
    *,
    notifier: MessagingSink | None = None,
    session_factory=AsyncSessionLocal,
    batch_size: int = 100,
) -> int:
    """Re-drive refunds behind open REFUND_FAILED alerts.

    The refund is keyed on the order id, so a refund that actually landed
    before the alert was raised is not applied twice. Returns the number of
    alerts resolved.
    """
    notifier = notifier or build_notifier()
    resolved = 0

    async with session_factory() as db:
        open_alerts, _ = await alerts.list_alerts(
            db,
            status=AlertStatus.OPEN,
            kind=AlertKind.REFUND_FAILED,
            page_size=batch_size,
        )
        orchestrator = PurchaseOrchestrator(db, notifier)
        # Plain values: a failed retry rolls the session back and expires rows.
        batch = [
            (
                alert.id,
                alert.order_id,
                alert.account_id,
                alert.amount,
                (alert.details or {}).get("reason"),
            )
            for alert in open_alerts
        ]

        for alert_id, order_id, account_id, amount, reason in batch:
            if order_id is None or account_id is None or not amount:
                logger.warning("Refund alert %s lacks order/account/amount", alert_id)
                continue

            try:
                refunded = await orchestrator.retry_refund(
                    order_id=order_id,
                    account_id=account_id,
                    amount=amount,
                    reason=reason or "order could not be fulfilled",
                )
            except Exception as exc:
                await db.rollback()
                logger.warning("Refund retry for alert %s failed: %s", alert_id, exc)
                continue

            if refunded:
                await alerts.resolve_alert(
                    db, alert_id, resolved_by="system:refund-retry"
                )
                resolved += 1

    if resolved:
        logger.info("Resolved %d refund alert(s)", resolved)
    return resolved


async def process_restocked_products(
    *,
    notifier: MessagingSink | None = None,
    session_factory=AsyncSessionLocal,
) -> int:
    """Fulfil pending orders for every product that has stock again.

    Returns the number of orders completed.
    """
    notifier = notifier or build_notifier()
    completed = 0

    async with session_factory() as db:
        orchestrator = PurchaseOrchestrator(db, notifier)
        for product_id in await orders.products_with_pending_orders(db):
            try:
                report = await orchestrator.process_pending_orders(product_id)
            except Exception as exc:
                await db.rollback()
                logger.warning(
                    "Replenishment for product %s failed: %s", product_id, exc
                )
                continue
            completed += len(report.completed)

    return completed
