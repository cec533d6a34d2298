"""FastAPI dependencies wiring sessions, the messaging sink and the provider."""

from fastapi import Depends, HTTPException, status
from libs.db.session import get_async_db
from services.storefront_service.errors import (
    AccountNotFoundError,
    AccountSuspendedError,
    AlertNotFoundError,
    ConcurrentUpdateError,
    IdempotencyKeyConflictError,
    InsufficientFundsError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ProductNotFoundError,
    StorefrontError,
    ValidationError,
)
from services.storefront_service.nowpayments_client import (
    NowPaymentsClient,
    NowPaymentsError,
    get_nowpayments_client,
)
from services.storefront_service.services.notifier import MessagingSink, build_notifier
from services.storefront_service.services.purchase import PurchaseOrchestrator
from services.storefront_service.services.reconciler import PaymentReconciler
from sqlalchemy.ext.asyncio import AsyncSession

_NOT_FOUND = (
    AccountNotFoundError,
    ProductNotFoundError,
    OrderNotFoundError,
    PaymentNotFoundError,
    AlertNotFoundError,
)
_CONFLICT = (
    InsufficientStockError,
    InvalidStatusTransitionError,
    ConcurrentUpdateError,
    IdempotencyKeyConflictError,
)


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a domain or provider error to the HTTP error the routers return."""
    if isinstance(exc, _NOT_FOUND):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, AccountSuspendedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, InsufficientFundsError):
        code = status.HTTP_402_PAYMENT_REQUIRED
    elif isinstance(exc, _CONFLICT):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, NowPaymentsError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error. Please try again later.",
        )
    elif isinstance(exc, StorefrontError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


def get_notifier() -> MessagingSink:
    return build_notifier()


def get_payment_provider() -> NowPaymentsClient:
    try:
        return get_nowpayments_client()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider is not configured",
        ) from e


def get_orchestrator(
    db: AsyncSession = Depends(get_async_db),
    notifier: MessagingSink = Depends(get_notifier),
) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(db, notifier)


def get_reconciler(
    db: AsyncSession = Depends(get_async_db),
    notifier: MessagingSink = Depends(get_notifier),
    provider: NowPaymentsClient = Depends(get_payment_provider),
) -> PaymentReconciler:
    return PaymentReconciler(db, notifier, provider)
