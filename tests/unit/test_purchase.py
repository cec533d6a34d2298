"""Unit tests for the purchase orchestrator.

Each test drives ``PurchaseOrchestrator`` against a real (SQLite) database and a
recording messaging sink.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from libs.common.retry import RetryConfig
from services.storefront_service.errors import (
    InsufficientStockError,
    InvalidStatusTransitionError,
)
from services.storefront_service.models import (
    AccountStatus,
    AlertKind,
    AlertStatus,
    FulfillmentAlert,
    LedgerEntry,
    LedgerEntryKind,
    Order,
    OrderKind,
    OrderStatus,
    PaymentMethod,
)
from services.storefront_service.services import (
    alerts,
    inventory,
    ledger,
    orders,
    referrals,
)
from services.storefront_service.services.purchase import (
    ExternalPay,
    PurchaseError,
    PurchaseOrchestrator,
    PurchaseOutcome,
    refund_key,
)
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tests.factories import make_account, make_product

FAST_RETRY = RetryConfig(
    max_attempts=3, base_delay=0, jitter=False, retryable_exceptions=(SQLAlchemyError,)
)


def _orchestrator(db, notifier) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(db, notifier, refund_retry=FAST_RETRY)


async def _order_count(db, account_id) -> int:
    return await db.scalar(select(func.count(Order.id)).where(Order.account_id == account_id))


async def _entries(db, account_id) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.asc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Balance path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_purchase_debits_allocates_and_delivers(db_session, notifier):
    account = await make_account(db_session, balance=100)
    product = await make_product(
        db_session, gcoin_price=30, digital_content=["a:1", "b:2", "c:3"]
    )

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=2
    )

    assert result.outcome == PurchaseOutcome.COMPLETED
    assert result.ok
    assert result.delivered_items == ["a:1", "b:2"]
    assert result.order.status == OrderStatus.COMPLETED
    assert result.order.total_amount == Decimal("60.00")
    assert result.order.delivered_items == ["a:1", "b:2"]

    assert await ledger.get_balance(db_session, account.id) == 40
    assert await ledger.ledger_sum(db_session, account.id) == 40
    fresh = await inventory.get_product(db_session, product.id)
    assert fresh.digital_content == ["c:3"]

    delivered = notifier.messages_for(account.external_id)
    assert len(delivered) == 1
    assert "Login: a\nPassword: 1" in delivered[0]
    assert "Login: b\nPassword: 2" in delivered[0]
    assert len(notifier.admin_messages) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_funds_has_no_side_effects(db_session, notifier):
    account = await make_account(db_session, balance=40)
    product = await make_product(db_session, gcoin_price=30)

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=2
    )

    assert result.outcome == PurchaseOutcome.REJECTED
    assert result.error == PurchaseError.INSUFFICIENT_FUNDS
    assert result.order is None
    assert await ledger.get_balance(db_session, account.id) == 40
    assert await _order_count(db_session, account.id) == 0
    fresh = await inventory.get_product(db_session, product.id)
    assert fresh.stock_count == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_validation_rejections(db_session, notifier):
    account = await make_account(db_session, balance=1000)
    product = await make_product(db_session, digital_content=["a:1"])
    forced_off = await make_product(
        db_session, digital_content=["a:1"], force_unavailable=True
    )
    sold_out = await make_product(db_session, digital_content=[])
    orchestrator = _orchestrator(db_session, notifier)

    cases = [
        (dict(account_id=account.id, product_id=product.id, quantity=0),
         PurchaseError.VALIDATION_ERROR),
        (dict(account_id=uuid.uuid4(), product_id=product.id, quantity=1),
         PurchaseError.ACCOUNT_NOT_FOUND),
        (dict(account_id=account.id, product_id=uuid.uuid4(), quantity=1),
         PurchaseError.PRODUCT_NOT_FOUND),
        (dict(account_id=account.id, product_id=forced_off.id, quantity=1),
         PurchaseError.PRODUCT_UNAVAILABLE),
        (dict(account_id=account.id, product_id=sold_out.id, quantity=1),
         PurchaseError.INSUFFICIENT_STOCK),
        (dict(account_id=account.id, product_id=product.id, quantity=2),
         PurchaseError.INSUFFICIENT_STOCK),
    ]
    for kwargs, expected in cases:
        result = await orchestrator.purchase(**kwargs)
        assert result.outcome == PurchaseOutcome.REJECTED, kwargs
        assert result.error == expected, kwargs

    assert await ledger.get_balance(db_session, account.id) == 1000
    assert await _order_count(db_session, account.id) == 0
    assert notifier.sent == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_lost_stock_race_refunds_and_cancels(db_session, notifier, monkeypatch):
    """Allocation failing after the debit is compensated with a keyed refund."""
    account = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30, digital_content=["a:1"])

    async def sold_elsewhere(db, *, product_id, quantity):
        raise InsufficientStockError(product_id, quantity, 0)

    monkeypatch.setattr(inventory, "allocate", sold_elsewhere)

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    assert result.outcome == PurchaseOutcome.REJECTED
    assert result.error == PurchaseError.INSUFFICIENT_STOCK
    assert result.order.status == OrderStatus.CANCELLED
    assert result.order.status_history[-1].note == "inventory exhausted"
    assert await ledger.get_balance(db_session, account.id) == 100
    assert await ledger.ledger_sum(db_session, account.id) == 100

    refund = await ledger.find_entry_by_idempotency_key(
        db_session, refund_key(result.order.id)
    )
    assert refund is not None
    assert refund.kind == LedgerEntryKind.REFUND
    assert refund.amount == 30
    assert "30 GCoins have been returned" in notifier.messages_for(account.external_id)[0]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_refund_raises_durable_alert(db_session, notifier, monkeypatch):
    """A refund that keeps failing is never silent: it becomes an open alert."""
    account = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30, digital_content=["a:1"])

    async def sold_elsewhere(db, *, product_id, quantity):
        raise InsufficientStockError(product_id, quantity, 0)

    calls = []

    async def broken_credit(db, **kwargs):
        calls.append(kwargs)
        raise OperationalError("UPDATE accounts", {}, Exception("disk I/O error"))

    monkeypatch.setattr(inventory, "allocate", sold_elsewhere)
    monkeypatch.setattr(ledger, "credit", broken_credit)

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    assert result.outcome == PurchaseOutcome.REJECTED
    assert len(calls) == FAST_RETRY.max_attempts
    assert await ledger.get_balance(db_session, account.id) == 70

    open_alerts, total = await alerts.list_alerts(db_session, kind=AlertKind.REFUND_FAILED)
    assert total == 1
    alert = open_alerts[0]
    assert alert.account_id == account.id
    assert alert.order_id == result.order.id
    assert alert.amount == 30
    assert alert.details["idempotency_key"] == refund_key(result.order.id)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_notification_failure_does_not_undo_purchase(db_session, notifier):
    account = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30)
    notifier.fail = True

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    assert result.outcome == PurchaseOutcome.COMPLETED
    assert result.order.status == OrderStatus.COMPLETED
    assert await ledger.get_balance(db_session, account.id) == 70


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_purchases_for_last_item(db_session, session_factory, notifier):
    """Two buyers, one item: one gets it, the other ends with their coins intact."""
    first = await make_account(db_session, balance=100)
    second = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30, digital_content=["a:1"])

    async def buy(account):
        async with session_factory() as session:
            return await _orchestrator(session, notifier).purchase(
                account_id=account.id, product_id=product.id, quantity=1
            )

    results = await asyncio.gather(buy(first), buy(second))

    winners = [r for r in results if r.outcome == PurchaseOutcome.COMPLETED]
    losers = [r for r in results if r.outcome == PurchaseOutcome.REJECTED]
    assert len(winners) == 1
    assert len(losers) == 1
    assert winners[0].delivered_items == ["a:1"]
    assert losers[0].error == PurchaseError.INSUFFICIENT_STOCK
    assert losers[0].order.status == OrderStatus.CANCELLED
    assert losers[0].order.status_history[-1].note == "inventory exhausted"

    balances = sorted(
        [
            await ledger.get_balance(db_session, first.id),
            await ledger.get_balance(db_session, second.id),
        ]
    )
    assert balances == [70, 100]
    for account in (first, second):
        assert await ledger.get_balance(db_session, account.id) == await ledger.ledger_sum(
            db_session, account.id
        )
    fresh = await inventory.get_product(db_session, product.id)
    assert fresh.digital_content == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inventory_is_conserved_under_contention(db_session, session_factory, notifier):
    stock = ["a:1", "b:2", "c:3"]
    product = await make_product(db_session, gcoin_price=10, digital_content=list(stock))
    buyers = [await make_account(db_session, balance=50) for _ in range(5)]

    async def buy(account):
        async with session_factory() as session:
            return await _orchestrator(session, notifier).purchase(
                account_id=account.id, product_id=product.id, quantity=1
            )

    results = await asyncio.gather(*(buy(a) for a in buyers))

    delivered = [item for r in results for item in r.delivered_items]
    fresh = await inventory.get_product(db_session, product.id)
    assert len(delivered) == len(set(delivered))
    assert sorted(delivered + fresh.digital_content) == sorted(stock)
    spent = sum([50 - await ledger.get_balance(db_session, a.id) for a in buyers])
    assert spent == 10 * len(delivered)


# ---------------------------------------------------------------------------
# Preorders and replenishment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_preorder_then_replenishment_completes_order(db_session, notifier):
    account = await make_account(db_session, balance=100)
    product = await make_product(
        db_session,
        gcoin_price=30,
        digital_content=[],
        allow_preorder=True,
        preorder_note="Ships within 48h",
    )
    orchestrator = _orchestrator(db_session, notifier)

    result = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    assert result.outcome == PurchaseOutcome.PREORDERED
    assert result.order.status == OrderStatus.PENDING
    assert result.order.kind == OrderKind.PREORDER
    assert await ledger.get_balance(db_session, account.id) == 70
    assert "Ships within 48h" in notifier.messages_for(account.external_id)[0]

    await inventory.restock(db_session, product_id=product.id, items=["x:9"])
    report = await orchestrator.process_pending_orders(product.id)

    assert report.completed == [result.order.id]
    assert report.still_pending == 0
    order = await orders.find_by_id(db_session, result.order.id)
    assert order.status == OrderStatus.COMPLETED
    assert order.delivered_items == ["x:9"]
    assert (await inventory.get_product(db_session, product.id)).digital_content == []
    assert await ledger.get_balance(db_session, account.id) == 70


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replenishment_is_fifo_and_stops_when_stock_runs_out(db_session, notifier):
    product = await make_product(
        db_session, gcoin_price=10, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    placed = []
    for _ in range(3):
        account = await make_account(db_session, balance=10)
        result = await orchestrator.purchase(
            account_id=account.id, product_id=product.id, quantity=1
        )
        placed.append(result.order.id)

    await inventory.restock(db_session, product_id=product.id, items=["x:1", "x:2"])
    report = await orchestrator.process_pending_orders(product.id)

    assert report.completed == placed[:2]
    assert report.still_pending == 1
    last = await orders.find_by_id(db_session, placed[2])
    assert last.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replenishment_skips_forced_off_product(db_session, notifier):
    account = await make_account(db_session, balance=10)
    product = await make_product(
        db_session, gcoin_price=10, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    result = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )
    await inventory.set_force_unavailable(
        db_session, product_id=product.id, force_unavailable=True
    )
    await inventory.restock(db_session, product_id=product.id, items=["x:1"])

    report = await orchestrator.process_pending_orders(product.id)

    assert report.completed == []
    assert report.still_pending == 1
    order = await orders.find_by_id(db_session, result.order.id)
    assert order.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_replenishment_reports_each_order_after_referral_check(db_session, notifier):
    """Orders stay readable after the referral hook finds nothing to pay."""
    product = await make_product(
        db_session, gcoin_price=10, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    account = await make_account(db_session, balance=10)
    placed = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    await inventory.restock(db_session, product_id=product.id, items=["x:9"])
    report = await orchestrator.process_pending_orders(product.id)

    assert report.completed == [placed.order.id]
    assert placed.order.status == OrderStatus.COMPLETED
    assert placed.order.delivered_items == ["x:9"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stale_replenishment_run_releases_its_items(
    db_session, session_factory, notifier
):
    """A second worker holding the same pending order cannot deliver it again."""
    account = await make_account(db_session, balance=30)
    product = await make_product(
        db_session, gcoin_price=30, digital_content=[], allow_preorder=True
    )
    placed = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )
    await inventory.restock(db_session, product_id=product.id, items=["x:9", "y:8"])

    async with session_factory() as first, session_factory() as second:
        loaded = []
        for session in (first, second):
            loaded.append(
                (
                    session,
                    await orders.find_by_id(session, placed.order.id),
                    await inventory.get_product(session, product.id),
                    await ledger.get_account(session, account.id),
                )
            )

        results = []
        for session, order, product_row, account_row in loaded:
            results.append(
                await _orchestrator(session, notifier)._allocate_and_deliver(
                    order, product_row, account_row
                )
            )

    assert results[0].outcome == PurchaseOutcome.COMPLETED
    assert results[1].outcome == PurchaseOutcome.REJECTED
    assert results[1].order.status == OrderStatus.COMPLETED

    async with session_factory() as check:
        order = await orders.find_by_id(check, placed.order.id)
        assert order.delivered_items == ["x:9"]
        assert [e.status for e in order.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.COMPLETED,
        ]
        assert (await inventory.get_product(check, product.id)).digital_content == [
            "y:8"
        ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_purchase_left_pending_is_not_replenished(db_session, notifier):
    """Only preorders and externally paid orders wait for stock."""
    account = await make_account(db_session, balance=30)
    product = await make_product(db_session, gcoin_price=30, digital_content=[])
    stuck = await orders.create(
        db_session,
        account_id=account.id,
        product_id=product.id,
        quantity=1,
        unit_price=Decimal(30),
        currency="GCOIN",
        payment_method=PaymentMethod.BALANCE,
        kind=OrderKind.PURCHASE,
    )

    await inventory.restock(db_session, product_id=product.id, items=["x:9"])
    report = await _orchestrator(db_session, notifier).process_pending_orders(product.id)

    assert report.completed == []
    assert (await orders.find_by_id(db_session, stuck.id)).status == OrderStatus.PENDING
    assert (await inventory.get_product(db_session, product.id)).digital_content == [
        "x:9"
    ]


# ---------------------------------------------------------------------------
# Suspended accounts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_suspended_account_cannot_spend_balance(db_session, notifier):
    account = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30)
    await ledger.set_account_status(
        db_session,
        account_id=account.id,
        status=AccountStatus.SUSPENDED,
        admin_name="ops",
        reason="chargeback",
    )

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    assert result.outcome == PurchaseOutcome.REJECTED
    assert result.error == PurchaseError.ACCOUNT_SUSPENDED
    assert await ledger.get_balance(db_session, account.id) == 100
    assert await _order_count(db_session, account.id) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_suspended_account_still_gets_externally_paid_goods(db_session, notifier):
    account = await make_account(db_session, status=AccountStatus.SUSPENDED)
    product = await make_product(db_session, digital_content=["a:1"])

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id,
        product_id=product.id,
        quantity=1,
        mode=ExternalPay(
            payment_transaction_id=uuid.uuid4(),
            unit_price=Decimal("4.99"),
            currency="USD",
            is_preorder=False,
        ),
    )

    assert result.outcome == PurchaseOutcome.COMPLETED
    assert result.delivered_items == ["a:1"]


# ---------------------------------------------------------------------------
# External path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_external_purchase_does_not_touch_balance(db_session, notifier):
    account = await make_account(db_session, balance=5)
    product = await make_product(db_session, digital_content=["a:1"])
    payment_id = uuid.uuid4()

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id,
        product_id=product.id,
        quantity=1,
        mode=ExternalPay(
            payment_transaction_id=payment_id,
            unit_price=Decimal("4.99"),
            currency="USD",
            is_preorder=False,
        ),
    )

    assert result.outcome == PurchaseOutcome.COMPLETED
    assert result.order.payment_method == PaymentMethod.EXTERNAL
    assert result.order.currency == "USD"
    assert result.order.total_amount == Decimal("4.99")
    assert result.order.payment_transaction_id == payment_id
    assert await ledger.get_balance(db_session, account.id) == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_external_purchase_without_stock_waits_and_alerts(db_session, notifier):
    """Money already collected: the order stays pending and operators are alerted."""
    account = await make_account(db_session)
    product = await make_product(db_session, digital_content=[])
    payment_id = uuid.uuid4()

    result = await _orchestrator(db_session, notifier).purchase(
        account_id=account.id,
        product_id=product.id,
        quantity=1,
        mode=ExternalPay(
            payment_transaction_id=payment_id,
            unit_price=Decimal("4.99"),
            currency="USD",
            is_preorder=False,
        ),
    )

    assert result.outcome == PurchaseOutcome.AWAITING_STOCK
    assert result.order.status == OrderStatus.PENDING
    found = await db_session.execute(
        select(FulfillmentAlert).where(
            FulfillmentAlert.kind == AlertKind.FULFILLMENT_PENDING
        )
    )
    alert = found.scalar_one()
    assert alert.payment_transaction_id == payment_id
    assert alert.status == AlertStatus.OPEN

    await inventory.restock(db_session, product_id=product.id, items=["late:1"])
    report = await _orchestrator(db_session, notifier).process_pending_orders(product.id)
    assert report.completed == [result.order.id]


# ---------------------------------------------------------------------------
# Admin settlement
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_cancel_refunds_balance_payment(db_session, notifier):
    account = await make_account(db_session, balance=50)
    product = await make_product(
        db_session, gcoin_price=20, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    placed = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=2
    )
    assert await ledger.get_balance(db_session, account.id) == 10

    cancelled = await orchestrator.cancel_order(placed.order.id, "supplier delay")

    assert cancelled.status == OrderStatus.CANCELLED
    assert await ledger.get_balance(db_session, account.id) == 50

    # A second cancel is an invalid transition and refunds nothing more.
    with pytest.raises(InvalidStatusTransitionError):
        await orchestrator.cancel_order(placed.order.id, "again")
    assert await ledger.get_balance(db_session, account.id) == 50


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_cancel_without_refund(db_session, notifier):
    account = await make_account(db_session, balance=50)
    product = await make_product(
        db_session, gcoin_price=20, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    placed = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    await orchestrator.cancel_order(placed.order.id, "fraud", refund=False)

    assert await ledger.get_balance(db_session, account.id) == 30
    assert "Reason: fraud" in notifier.messages_for(account.external_id)[-1]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_fulfil_with_manual_items(db_session, notifier):
    account = await make_account(db_session, balance=50)
    product = await make_product(
        db_session, gcoin_price=20, digital_content=[], allow_preorder=True
    )
    orchestrator = _orchestrator(db_session, notifier)
    placed = await orchestrator.purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    done = await orchestrator.fulfill_order(placed.order.id, ["manual-key-123"], note="by hand")

    assert done.status == OrderStatus.COMPLETED
    assert done.delivered_items == ["manual-key-123"]
    assert "Item 1: manual-key-123" in notifier.messages_for(account.external_id)[-1]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retry_refund_never_pays_twice(db_session, notifier):
    account = await make_account(db_session, balance=10)
    orchestrator = _orchestrator(db_session, notifier)
    order_id = uuid.uuid4()

    for _ in range(3):
        assert await orchestrator.retry_refund(
            order_id=order_id, account_id=account.id, amount=25, reason="sold out"
        )

    assert await ledger.get_balance(db_session, account.id) == 35


# ---------------------------------------------------------------------------
# Referral hook
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completed_purchase_pays_referrer_once(db_session, notifier):
    referrer = await make_account(db_session)
    buyer = await make_account(db_session, balance=100)
    assert await referrals.on_signup(
        db_session,
        referral_code=referrer.referral_code,
        account_id=buyer.id,
        is_new_account=True,
    )
    product = await make_product(db_session, gcoin_price=10)
    orchestrator = _orchestrator(db_session, notifier)

    for _ in range(2):
        result = await orchestrator.purchase(
            account_id=buyer.id, product_id=product.id, quantity=1
        )
        assert result.outcome == PurchaseOutcome.COMPLETED

    refreshed = await ledger.get_account(db_session, referrer.id)
    assert refreshed.balance == 50 + 100
    assert refreshed.referral_earnings == 150
