"""Order store: order records and their append-only status history."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from libs.common.currency import to_money
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    ConcurrentUpdateError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
)
from services.storefront_service.models import (
    Order,
    OrderKind,
    OrderStatus,
    OrderStatusEntry,
    PaymentMethod,
)
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    product_id: uuid.UUID,
    quantity: int,
    unit_price: Decimal,
    currency: str,
    payment_method: PaymentMethod,
    kind: OrderKind,
    customer_note: Optional[str] = None,
    payment_transaction_id: Optional[uuid.UUID] = None,
    order_id: Optional[uuid.UUID] = None,
) -> Order:
    """Persist a new pending order with its initial history entry.

    ``total_amount`` is computed here once from the frozen ``unit_price``.
    """
    if not isinstance(quantity, int) or quantity <= 0:
        raise InvalidAmountError(quantity)

    unit_price = to_money(unit_price)
    order = Order(
        id=order_id or uuid.uuid4(),
        account_id=account_id,
        product_id=product_id,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=unit_price * quantity,
        currency=currency,
        payment_method=payment_method,
        kind=kind,
        status=OrderStatus.PENDING,
        customer_note=customer_note,
        delivered_items=[],
        payment_transaction_id=payment_transaction_id,
    )
    initial_note = "Preorder placed" if kind == OrderKind.PREORDER else "Order created"
    order.status_history = [
        OrderStatusEntry(status=OrderStatus.PENDING, note=initial_note)
    ]
    db.add(order)
    await db.commit()

    logger.info(
        "Created %s order %s for account %s: %d x product %s at %s %s",
        kind.value,
        order.id,
        account_id,
        quantity,
        product_id,
        unit_price,
        currency,
    )
    return order


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


def _check_transition(
    order: Order,
    new_status: OrderStatus,
    *,
    expected_status: Optional[OrderStatus],
    delivers_items: bool,
) -> None:
    if expected_status is not None and order.status != expected_status:
        raise InvalidStatusTransitionError(
            order.id, order.status.value, new_status.value
        )
    if order.status == OrderStatus.COMPLETED and new_status == OrderStatus.COMPLETED:
        # Audit notes on a completed order are allowed; more goods are not.
        if not delivers_items:
            return
    if order.is_terminal:
        raise InvalidStatusTransitionError(
            order.id, order.status.value, new_status.value
        )


async def update_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    new_status: OrderStatus,
    *,
    note: Optional[str] = None,
    delivered_items: Optional[Sequence[str]] = None,
    expected_status: Optional[OrderStatus] = None,
    expected_version: Optional[int] = None,
) -> Order:
    """Append a history entry and move the order to ``new_status`` atomically.

    ``expected_status`` and ``expected_version`` make the write conditional on
    what the caller saw: when the stored order no longer matches, nothing is
    written and ``InvalidStatusTransitionError`` (status) or
    ``ConcurrentUpdateError`` (version) is raised. The same errors cover moves
    out of a terminal state and writers that commit in between.

    A failed write rolls the session back, which expires every loaded object;
    callers must reload anything they still need.
    """
    order = await find_by_id(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    items = list(delivered_items) if delivered_items else None
    if expected_version is not None and order.version != expected_version:
        raise ConcurrentUpdateError(
            f"Order {order_id} is at version {order.version}, expected {expected_version}"
        )
    _check_transition(
        order,
        new_status,
        expected_status=expected_status,
        delivers_items=bool(items),
    )

    now = utc_now()
    order.status_history.append(
        OrderStatusEntry(status=new_status, note=note, delivered_items=items)
    )
    order.status = new_status
    order.updated_at = now
    if new_status == OrderStatus.COMPLETED and order.completed_at is None:
        order.completed_at = now
    if items:
        order.delivered_items = list(order.delivered_items or []) + items

    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrentUpdateError(
            f"Order {order_id} was modified concurrently"
        ) from exc

    logger.info("Order %s -> %s (%s)", order_id, new_status.value, note or "-")
    return order


async def fulfill_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    items: Sequence[str],
    note: Optional[str] = None,
) -> Order:
    """Complete an order with the given content items."""
    items = [item for item in items if item]
    if not items:
        raise InvalidAmountError(0)
    return await update_status(
        db,
        order_id,
        OrderStatus.COMPLETED,
        note=note or f"Fulfilled with {len(items)} item(s)",
        delivered_items=items,
    )


async def cancel_order(
    db: AsyncSession, order_id: uuid.UUID, *, reason: str
) -> Order:
    return await update_status(db, order_id, OrderStatus.CANCELLED, note=reason)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def find_by_id(db: AsyncSession, order_id: uuid.UUID) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_by_payment(
    db: AsyncSession, payment_transaction_id: uuid.UUID
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.payment_transaction_id == payment_transaction_id)
        .order_by(Order.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def find_by_account(
    db: AsyncSession,
    account_id: uuid.UUID,
    *,
    page: int = 1,
    page_size: int = 20,
    status: Optional[OrderStatus] = None,
) -> tuple[list[Order], int]:
    """Orders placed by the account, newest first, with the total count."""
    page = max(page, 1)
    filters = [Order.account_id == account_id]
    if status is not None:
        filters.append(Order.status == status)

    total = await db.scalar(select(func.count(Order.id)).where(*filters))
    result = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0


def _awaiting_stock(product_id: Optional[uuid.UUID] = None) -> list:
    """Pending orders the replenishment queue may fulfil.

    Balance-paid immediate purchases are excluded: they are allocated by the
    request that created them.
    """
    filters = [
        Order.status == OrderStatus.PENDING,
        or_(
            Order.kind == OrderKind.PREORDER,
            Order.payment_method == PaymentMethod.EXTERNAL,
        ),
    ]
    if product_id is not None:
        filters.append(Order.product_id == product_id)
    return filters


async def list_pending_for_product(
    db: AsyncSession, product_id: uuid.UUID
) -> list[Order]:
    """Orders waiting on stock for the product, oldest first."""
    result = await db.execute(
        select(Order)
        .where(*_awaiting_stock(product_id))
        .order_by(Order.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def products_with_pending_orders(db: AsyncSession) -> list[uuid.UUID]:
    result = await db.execute(
        select(Order.product_id).where(*_awaiting_stock()).group_by(Order.product_id)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass
class ProductSales:
    product_id: uuid.UUID
    currency: str
    quantity: int
    total_amount: Decimal


@dataclass
class SalesStatistics:
    total_orders: int = 0
    totals_by_currency: dict[str, Decimal] = field(default_factory=dict)
    products: list[ProductSales] = field(default_factory=list)


async def sales_statistics(
    db: AsyncSession,
    *,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> SalesStatistics:
    """Completed-order totals per product, optionally bounded by completion time."""
    filters = [Order.status == OrderStatus.COMPLETED]
    if start_date is not None:
        filters.append(Order.completed_at >= start_date)
    if end_date is not None:
        filters.append(Order.completed_at <= end_date)

    result = await db.execute(
        select(
            Order.product_id,
            Order.currency,
            func.count(Order.id),
            func.sum(Order.quantity),
            func.sum(Order.total_amount),
        )
        .where(*filters)
        .group_by(Order.product_id, Order.currency)
    )

    stats = SalesStatistics()
    for product_id, currency, order_count, quantity, total in result.all():
        amount = to_money(total or 0)
        stats.total_orders += order_count
        stats.totals_by_currency[currency] = (
            stats.totals_by_currency.get(currency, Decimal("0.00")) + amount
        )
        stats.products.append(
            ProductSales(
                product_id=product_id,
                currency=currency,
                quantity=int(quantity or 0),
                total_amount=amount,
            )
        )
    return stats
