"""Internal endpoints called by the Telegram bot transport.

Business-rule purchase failures are returned as ``success=False`` results so the
bot can render a message; everything else maps to HTTP errors.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_internal_service
from libs.auth.models import ApiCaller
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.storefront_service.dependencies import (
    get_notifier,
    get_orchestrator,
    get_reconciler,
    to_http_exception,
)
from services.storefront_service.errors import (
    AccountNotFoundError,
    OrderNotFoundError,
    StorefrontError,
)
from services.storefront_service.models import OrderStatus
from services.storefront_service.nowpayments_client import NowPaymentsError
from services.storefront_service.schemas import (
    AccountResponse,
    BalanceResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
    OrderListResponse,
    OrderResponse,
    PaymentResponse,
    ProductResponse,
    PurchaseRequest,
    PurchaseResponse,
    ReferralStatsResponse,
    RegisterAccountRequest,
    RegisterAccountResponse,
    StartCoinPaymentRequest,
    StartProductPaymentRequest,
)
from services.storefront_service.services import inventory, ledger, orders, referrals
from services.storefront_service.services.notifier import MessagingSink
from services.storefront_service.services.purchase import PurchaseOrchestrator
from services.storefront_service.services.reconciler import PaymentReconciler
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/internal/storefront", tags=["internal-storefront"])


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@router.post("/accounts", response_model=RegisterAccountResponse)
async def register_account(
    body: RegisterAccountRequest,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
    notifier: MessagingSink = Depends(get_notifier),
):
    """Register a chat identity, applying a referral code on first signup."""
    account, created = await ledger.register_account(
        db, external_id=body.external_id, username=body.username
    )
    referral_applied = False
    if body.referral_code:
        account_id = account.id
        referral_applied = await referrals.on_signup(
            db,
            referral_code=body.referral_code,
            account_id=account_id,
            is_new_account=created,
            notifier=notifier,
        )
        account = await ledger.get_account(db, account_id)

    return RegisterAccountResponse(
        account=AccountResponse.model_validate(account),
        created=created,
        referral_applied=referral_applied,
    )


@router.get("/accounts/by-external/{external_id}", response_model=AccountResponse)
async def get_account_by_external_id(
    external_id: str,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    account = await ledger.find_account_by_external_id(db, external_id)
    if account is None:
        raise to_http_exception(AccountNotFoundError(external_id))
    return account


@router.get("/accounts/{account_id}/balance", response_model=BalanceResponse)
async def get_balance(
    account_id: uuid.UUID,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        balance = await ledger.get_balance(db, account_id)
    except StorefrontError as e:
        raise to_http_exception(e) from e
    return BalanceResponse(account_id=account_id, balance=balance)


@router.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse)
async def get_ledger_history(
    account_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        await ledger.get_account(db, account_id)
    except StorefrontError as e:
        raise to_http_exception(e) from e
    entries, total = await ledger.history(
        db, account_id, page=page, page_size=page_size
    )
    return LedgerHistoryResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/accounts/{account_id}/orders", response_model=OrderListResponse)
async def list_account_orders(
    account_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    found, total = await orders.find_by_account(
        db, account_id, page=page, page_size=page_size, status=status
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in found],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/accounts/{account_id}/referrals", response_model=ReferralStatsResponse)
async def get_referral_stats(
    account_id: uuid.UUID,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        stats = await referrals.referral_stats(db, account_id)
    except StorefrontError as e:
        raise to_http_exception(e) from e
    return ReferralStatsResponse.model_validate(stats)


# ---------------------------------------------------------------------------
# Catalog and orders
# ---------------------------------------------------------------------------


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    category: Optional[str] = None,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    return await inventory.list_products(db, category=category)


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: uuid.UUID,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    try:
        return await inventory.get_product(db, product_id)
    except StorefrontError as e:
        raise to_http_exception(e) from e


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    _caller: ApiCaller = Depends(require_internal_service),
    db: AsyncSession = Depends(get_async_db),
):
    order = await orders.find_by_id(db, order_id)
    if order is None:
        raise to_http_exception(OrderNotFoundError(order_id))
    return order


# ---------------------------------------------------------------------------
# Purchases and payments
# ---------------------------------------------------------------------------


@router.post("/purchases", response_model=PurchaseResponse)
async def purchase_with_balance(
    body: PurchaseRequest,
    _caller: ApiCaller = Depends(require_internal_service),
    orchestrator: PurchaseOrchestrator = Depends(get_orchestrator),
):
    """Buy with GCoins. Rejections come back with ``success=False``."""
    result = await orchestrator.purchase(
        account_id=body.account_id,
        product_id=body.product_id,
        quantity=body.quantity,
        customer_note=body.customer_note,
    )
    return PurchaseResponse(
        success=result.ok,
        outcome=result.outcome.value,
        error=result.error.value if result.error else None,
        message=result.message,
        order=OrderResponse.model_validate(result.order) if result.order else None,
        delivered_items=result.delivered_items,
    )


@router.post("/payments/product", response_model=PaymentResponse)
async def start_product_payment(
    body: StartProductPaymentRequest,
    _caller: ApiCaller = Depends(require_internal_service),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Create a crypto invoice for a product; the order follows confirmation."""
    try:
        return await reconciler.start_product_payment(
            account_id=body.account_id,
            product_id=body.product_id,
            quantity=body.quantity,
            pay_currency=body.pay_currency,
        )
    except (StorefrontError, NowPaymentsError) as e:
        raise to_http_exception(e) from e


@router.post("/payments/coins", response_model=PaymentResponse)
async def start_coin_payment(
    body: StartCoinPaymentRequest,
    _caller: ApiCaller = Depends(require_internal_service),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Create a crypto invoice for a GCoin top-up."""
    try:
        return await reconciler.start_coin_purchase(
            account_id=body.account_id,
            coins=body.coins,
            pay_currency=body.pay_currency,
        )
    except (StorefrontError, NowPaymentsError) as e:
        raise to_http_exception(e) from e
