"""Operational alerts for money/goods mismatches that need manual reconciliation."""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import AlertNotFoundError
from services.storefront_service.models import AlertKind, AlertStatus, FulfillmentAlert
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def raise_alert(
    db: AsyncSession,
    *,
    kind: AlertKind,
    message: str,
    account_id: Optional[uuid.UUID] = None,
    order_id: Optional[uuid.UUID] = None,
    payment_transaction_id: Optional[uuid.UUID] = None,
    amount: Optional[int] = None,
    details: Optional[dict] = None,
) -> FulfillmentAlert:
    """Persist an open alert and log it at CRITICAL.

    A session left unusable by a failed flush is rolled back first, which
    expires the caller's loaded objects; otherwise they stay usable.
    """
    if not db.is_active:
        await db.rollback()
    alert = FulfillmentAlert(
        kind=kind,
        status=AlertStatus.OPEN,
        message=message,
        account_id=account_id,
        order_id=order_id,
        payment_transaction_id=payment_transaction_id,
        amount=amount,
        details=details or {},
    )
    db.add(alert)
    await db.commit()

    logger.critical(
        "ALERT %s [%s]: %s (account=%s order=%s payment=%s amount=%s)",
        alert.id,
        kind.value,
        message,
        account_id,
        order_id,
        payment_transaction_id,
        amount,
    )
    return alert


async def list_alerts(
    db: AsyncSession,
    *,
    status: Optional[AlertStatus] = AlertStatus.OPEN,
    kind: Optional[AlertKind] = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[FulfillmentAlert], int]:
    page = max(page, 1)
    filters = []
    if status is not None:
        filters.append(FulfillmentAlert.status == status)
    if kind is not None:
        filters.append(FulfillmentAlert.kind == kind)

    total = await db.scalar(select(func.count(FulfillmentAlert.id)).where(*filters))
    result = await db.execute(
        select(FulfillmentAlert)
        .where(*filters)
        .order_by(FulfillmentAlert.created_at.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0


async def resolve_alert(
    db: AsyncSession,
    alert_id: uuid.UUID,
    *,
    resolved_by: str,
    note: Optional[str] = None,
) -> FulfillmentAlert:
    alert = await db.get(FulfillmentAlert, alert_id, populate_existing=True)
    if alert is None:
        raise AlertNotFoundError(alert_id)
    if alert.status == AlertStatus.RESOLVED:
        return alert

    alert.status = AlertStatus.RESOLVED
    alert.resolved_by = resolved_by
    alert.resolved_at = utc_now()
    if note:
        alert.details = {**(alert.details or {}), "resolution_note": note}
    await db.commit()

    logger.info("Alert %s resolved by %s", alert_id, resolved_by)
    return alert
