"""Integration tests for the admin storefront endpoints."""

import uuid

import pytest
from services.storefront_service.models import AlertKind, OrderStatus
from services.storefront_service.services import alerts, inventory, ledger
from services.storefront_service.services.purchase import PurchaseOrchestrator
from tests.factories import make_account, make_product

BASE = "/admin/storefront"


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_routes_require_admin_key(client, internal_headers):
    no_key = await client.get(f"{BASE}/alerts")
    internal_key = await client.get(f"{BASE}/alerts", headers=internal_headers)

    assert no_key.status_code == 403
    assert internal_key.status_code == 403


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_and_reprice_product(client, admin_headers):
    created = await client.post(
        f"{BASE}/products",
        json={
            "name": "Music Family 6 Months",
            "category": "music",
            "price": "12.50",
            "gcoin_price": 1250,
            "digital_content": ["fam1:pw1"],
        },
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    product = created.json()
    assert product["is_available"] is True
    assert product["stock_count"] == 1
    assert "digital_content" not in product

    updated = await client.patch(
        f"{BASE}/products/{product['id']}",
        json={"gcoin_price": 1100},
        headers=admin_headers,
    )

    assert updated.status_code == 200, updated.text
    assert updated.json()["gcoin_price"] == 1100
    assert updated.json()["price"] == "12.50"
    assert updated.json()["stock_count"] == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_product_validates_prices(client, admin_headers):
    response = await client.post(
        f"{BASE}/products",
        json={"name": "Broken", "price": "1.00", "gcoin_price": 0},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_restock_completes_preorders(client, db_session, admin_headers, notifier):
    account = await make_account(db_session, balance=200)
    product = await make_product(
        db_session, digital_content=[], allow_preorder=True, gcoin_price=100
    )
    result = await PurchaseOrchestrator(db_session, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )

    response = await client.post(
        f"{BASE}/products/{product.id}/restock",
        json={"items": ["new:1", "new:2"]},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["replenishment"]["completed"] == [str(result.order.id)]
    assert data["replenishment"]["still_pending"] == 0
    assert data["product"]["stock_count"] == 1
    assert data["product"]["is_available"] is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_restock_without_processing(client, db_session, admin_headers):
    product = await make_product(db_session, digital_content=[])

    response = await client.post(
        f"{BASE}/products/{product.id}/restock",
        json={"items": ["x:1"], "process_pending": False},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["replenishment"] is None
    assert response.json()["product"]["stock_count"] == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_restock_requires_items(client, db_session, admin_headers):
    product = await make_product(db_session)

    response = await client.post(
        f"{BASE}/products/{product.id}/restock", json={"items": []}, headers=admin_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_force_unavailable_toggle(client, db_session, admin_headers):
    product = await make_product(db_session)

    off = await client.post(
        f"{BASE}/products/{product.id}/availability",
        json={"force_unavailable": True},
        headers=admin_headers,
    )
    on = await client.post(
        f"{BASE}/products/{product.id}/availability",
        json={"force_unavailable": False},
        headers=admin_headers,
    )

    assert off.json()["is_available"] is False
    assert off.json()["stock_count"] == 3
    assert on.json()["is_available"] is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_product_is_404(client, admin_headers):
    response = await client.post(
        f"{BASE}/products/{uuid.uuid4()}/availability",
        json={"force_unavailable": True},
        headers=admin_headers,
    )
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


async def _preorder(db, notifier, balance=100, gcoin_price=60):
    account = await make_account(db, balance=balance)
    product = await make_product(
        db, digital_content=[], allow_preorder=True, gcoin_price=gcoin_price
    )
    result = await PurchaseOrchestrator(db, notifier).purchase(
        account_id=account.id, product_id=product.id, quantity=1
    )
    return account, product, result.order


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_cancel_refunds(client, db_session, admin_headers, notifier):
    account, _, order = await _preorder(db_session, notifier)
    assert await ledger.get_balance(db_session, account.id) == 40

    response = await client.post(
        f"{BASE}/orders/{order.id}/cancel",
        json={"reason": "supplier discontinued"},
        headers=admin_headers,
    )
    again = await client.post(
        f"{BASE}/orders/{order.id}/cancel",
        json={"reason": "supplier discontinued"},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "cancelled"
    assert response.json()["status_history"][-1]["note"] == (
        "supplier discontinued (by ops-anna)"
    )
    assert again.status_code == 409
    assert await ledger.get_balance(db_session, account.id) == 100


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_fulfill_with_manual_items(client, db_session, admin_headers, notifier):
    account, _, order = await _preorder(db_session, notifier)

    response = await client.post(
        f"{BASE}/orders/{order.id}/fulfill",
        json={"items": ["manual:key"]},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["status"] == OrderStatus.COMPLETED.value
    assert data["delivered_items"] == ["manual:key"]
    assert data["status_history"][-1]["note"] == "Fulfilled by ops-anna"
    assert "Login: manual" in notifier.messages_for(account.external_id)[-1]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sales_statistics(client, db_session, admin_headers, notifier):
    account = await make_account(db_session, balance=500)
    product = await make_product(db_session, gcoin_price=120)
    orchestrator = PurchaseOrchestrator(db_session, notifier)
    for _ in range(2):
        await orchestrator.purchase(
            account_id=account.id, product_id=product.id, quantity=1
        )

    response = await client.get(f"{BASE}/stats/sales", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total_orders"] == 2
    assert data["totals_by_currency"] == {"GCOIN": "240.00"}
    assert data["products"][0]["quantity"] == 2


# ---------------------------------------------------------------------------
# Balances and alerts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_adjust_balance(client, db_session, admin_headers):
    account = await make_account(db_session, balance=30)

    credit = await client.post(
        f"{BASE}/accounts/{account.id}/adjust-balance",
        json={"amount": 20, "reason": "goodwill credit"},
        headers=admin_headers,
    )
    overdraw = await client.post(
        f"{BASE}/accounts/{account.id}/adjust-balance",
        json={"amount": -500, "reason": "chargeback"},
        headers=admin_headers,
    )

    assert credit.status_code == 200, credit.text
    assert credit.json()["balance"] == 50
    assert overdraw.status_code == 402
    entries, _ = await ledger.history(db_session, account.id)
    assert entries[0].description == "Admin adjustment by ops-anna: goodwill credit"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_suspended_account_cannot_spend_or_pay(
    client, db_session, admin_headers, internal_headers, fake_nowpayments
):
    account = await make_account(db_session, balance=100)
    product = await make_product(db_session, gcoin_price=30)

    suspended = await client.post(
        f"{BASE}/accounts/{account.id}/status",
        json={"status": "suspended", "reason": "chargeback"},
        headers=admin_headers,
    )
    purchase = await client.post(
        "/internal/storefront/purchases",
        json={"account_id": str(account.id), "product_id": str(product.id)},
        headers=internal_headers,
    )
    coins = await client.post(
        "/internal/storefront/payments/coins",
        json={"account_id": str(account.id), "coins": 500},
        headers=internal_headers,
    )

    assert suspended.status_code == 200, suspended.text
    assert suspended.json()["status"] == "suspended"
    assert purchase.json()["error"] == "account_suspended"
    assert coins.status_code == 403
    assert fake_nowpayments.invoices == {}
    assert await ledger.get_balance(db_session, account.id) == 100

    reactivated = await client.post(
        f"{BASE}/accounts/{account.id}/status",
        json={"status": "active"},
        headers=admin_headers,
    )
    retried = await client.post(
        "/internal/storefront/purchases",
        json={"account_id": str(account.id), "product_id": str(product.id)},
        headers=internal_headers,
    )

    assert reactivated.json()["status"] == "active"
    assert retried.json()["success"] is True


@pytest.mark.asyncio
@pytest.mark.integration
async def test_list_and_resolve_alerts(client, db_session, admin_headers):
    alert = await alerts.raise_alert(
        db_session,
        kind=AlertKind.FULFILLMENT_PENDING,
        message="External payment collected but stock ran out",
    )
    await alerts.raise_alert(
        db_session, kind=AlertKind.REFUND_FAILED, message="Refund failed", amount=10
    )

    pending = await client.get(
        f"{BASE}/alerts", params={"kind": "fulfillment_pending"}, headers=admin_headers
    )
    resolved = await client.post(
        f"{BASE}/alerts/{alert.id}/resolve",
        json={"note": "Delivered by hand"},
        headers=admin_headers,
    )
    still_open = await client.get(f"{BASE}/alerts", headers=admin_headers)

    assert pending.json()["total"] == 1
    assert resolved.status_code == 200, resolved.text
    assert resolved.json()["status"] == "resolved"
    assert resolved.json()["resolved_by"] == "ops-anna"
    assert [a["kind"] for a in still_open.json()["alerts"]] == ["refund_failed"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reconcile_endpoint(client, admin_headers):
    response = await client.post(f"{BASE}/payments/reconcile", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {
        "checked": 0,
        "settled": 0,
        "expired": 0,
        "errors": 0,
        "stranded": 0,
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_process_pending_endpoint(client, db_session, admin_headers, notifier):
    _, product, order = await _preorder(db_session, notifier)
    await inventory.restock(db_session, product_id=product.id, items=["late:1"])

    response = await client.post(
        f"{BASE}/products/{product.id}/process-pending", headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["completed"] == [str(order.id)]
