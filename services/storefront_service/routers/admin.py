"""Admin endpoints: catalog and stock, order settlement, balances, alerts."""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import ApiCaller
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.storefront_service.dependencies import (
    get_orchestrator,
    get_reconciler,
    to_http_exception,
)
from services.storefront_service.errors import StorefrontError
from services.storefront_service.models import AlertKind, AlertStatus
from services.storefront_service.schemas import (
    AccountResponse,
    AccountStatusRequest,
    AdjustBalanceRequest,
    AlertListResponse,
    AlertResponse,
    AvailabilityRequest,
    CancelOrderRequest,
    FulfillOrderRequest,
    OrderResponse,
    ProductCreateRequest,
    ProductResponse,
    ProductUpdateRequest,
    ReconcileResponse,
    ReplenishmentResponse,
    ResolveAlertRequest,
    RestockRequest,
    RestockResponse,
    SalesStatisticsResponse,
)
from services.storefront_service.services import alerts, inventory, ledger, orders
from services.storefront_service.services.purchase import PurchaseOrchestrator
from services.storefront_service.services.reconciler import PaymentReconciler
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/storefront", tags=["admin-storefront"])


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    body: ProductCreateRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        product = await inventory.create_product(db, **body.model_dump())
    except StorefrontError as e:
        raise to_http_exception(e) from e
    logger.info("Admin %s created product %s", admin.name, product.id)
    return product


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: uuid.UUID,
    body: ProductUpdateRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Change prices or preorder settings. Existing orders keep their price."""
    try:
        return await inventory.update_prices(
            db, product_id=product_id, **body.model_dump(exclude_unset=True)
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e


@router.post("/products/{product_id}/restock", response_model=RestockResponse)
async def restock_product(
    product_id: uuid.UUID,
    body: RestockRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
):
    """Append content items, then fulfil waiting orders unless told not to."""
    try:
        product = await inventory.restock(db, product_id=product_id, items=body.items)
    except StorefrontError as e:
        raise to_http_exception(e) from e
    logger.info(
        "Admin %s restocked product %s with %d item(s)",
        admin.name,
        product_id,
        len(body.items),
    )

    replenishment = None
    if body.process_pending:
        report = await orchestrator.process_pending_orders(product_id)
        replenishment = ReplenishmentResponse.model_validate(report)
        product = await inventory.get_product(db, product_id)

    return RestockResponse(
        product=ProductResponse.model_validate(product), replenishment=replenishment
    )


@router.post("/products/{product_id}/availability", response_model=ProductResponse)
async def set_availability(
    product_id: uuid.UUID,
    body: AvailabilityRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        return await inventory.set_force_unavailable(
            db, product_id=product_id, force_unavailable=body.force_unavailable
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e


@router.post(
    "/products/{product_id}/process-pending", response_model=ReplenishmentResponse
)
async def process_pending_orders(
    product_id: uuid.UUID,
    admin: ApiCaller = Depends(require_admin),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
):
    try:
        report = await orchestrator.process_pending_orders(product_id)
    except StorefrontError as e:
        raise to_http_exception(e) from e
    return ReplenishmentResponse.model_validate(report)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.post("/orders/{order_id}/fulfill", response_model=OrderResponse)
async def fulfill_order(
    order_id: uuid.UUID,
    body: FulfillOrderRequest,
    admin: ApiCaller = Depends(require_admin),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
):
    """Complete an order with manually supplied content."""
    try:
        order = await orchestrator.fulfill_order(
            order_id, body.items, note=body.note or f"Fulfilled by {admin.name}"
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e
    return order


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    body: CancelOrderRequest,
    admin: ApiCaller = Depends(require_admin),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
):
    """Cancel a pending order. GCoin payments are refunded unless ``refund`` is off."""
    try:
        order = await orchestrator.cancel_order(
            order_id, f"{body.reason} (by {admin.name})", refund=body.refund
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e
    return order


@router.get("/stats/sales", response_model=SalesStatisticsResponse)
async def sales_statistics(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    stats = await orders.sales_statistics(db, start_date=start_date, end_date=end_date)
    return SalesStatisticsResponse.model_validate(stats)


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


@router.post("/accounts/{account_id}/adjust-balance", response_model=AccountResponse)
async def adjust_balance(
    account_id: uuid.UUID,
    body: AdjustBalanceRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        return await ledger.adjust_balance(
            db,
            account_id=account_id,
            amount=body.amount,
            reason=body.reason,
            admin_name=admin.name or "admin",
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e


@router.post("/accounts/{account_id}/status", response_model=AccountResponse)
async def set_account_status(
    account_id: uuid.UUID,
    body: AccountStatusRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Suspend or reactivate an account. Suspended accounts cannot spend GCoins
    or start new payments; orders already paid are still delivered."""
    try:
        return await ledger.set_account_status(
            db,
            account_id=account_id,
            status=body.status,
            admin_name=admin.name or "admin",
            reason=body.reason,
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e


# ---------------------------------------------------------------------------
# Alerts and reconciliation
# ---------------------------------------------------------------------------


@router.get("/alerts", response_model=AlertListResponse)
async def list_alerts(
    status: Optional[AlertStatus] = AlertStatus.OPEN,
    kind: Optional[AlertKind] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    found, total = await alerts.list_alerts(
        db, status=status, kind=kind, page=page, page_size=page_size
    )
    return AlertListResponse(
        alerts=[AlertResponse.model_validate(a) for a in found], total=total
    )


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: uuid.UUID,
    body: ResolveAlertRequest,
    admin: ApiCaller = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        return await alerts.resolve_alert(
            db, alert_id, resolved_by=admin.name or "admin", note=body.note
        )
    except StorefrontError as e:
        raise to_http_exception(e) from e


@router.post("/payments/reconcile", response_model=ReconcileResponse)
async def reconcile_payments(
    admin: ApiCaller = Depends(require_admin),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Run the pending-payment poll now instead of waiting for the worker."""
    summary = await reconciler.reconcile_pending_payments()
    return ReconcileResponse.model_validate(summary)
