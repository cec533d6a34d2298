"""Storefront Service schemas package.

Re-exports all schemas so routers can import from one place.
"""

from services.storefront_service.schemas.account import (  # noqa: F401
    AccountResponse,
    AccountStatusRequest,
    AdjustBalanceRequest,
    BalanceResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
    ReferralStatsResponse,
    RegisterAccountRequest,
    RegisterAccountResponse,
)
from services.storefront_service.schemas.alert import (  # noqa: F401
    AlertListResponse,
    AlertResponse,
    ResolveAlertRequest,
)
from services.storefront_service.schemas.catalog import (  # noqa: F401
    AvailabilityRequest,
    ProductCreateRequest,
    ProductResponse,
    ProductUpdateRequest,
    ReplenishmentResponse,
    RestockRequest,
    RestockResponse,
)
from services.storefront_service.schemas.order import (  # noqa: F401
    CancelOrderRequest,
    FulfillOrderRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusEntryResponse,
    ProductSalesResponse,
    PurchaseRequest,
    PurchaseResponse,
    SalesStatisticsResponse,
)
from services.storefront_service.schemas.payment import (  # noqa: F401
    PaymentResponse,
    ReconcileResponse,
    StartCoinPaymentRequest,
    StartProductPaymentRequest,
)

__all__ = [
    # Account
    "AccountResponse",
    "AccountStatusRequest",
    "AdjustBalanceRequest",
    "BalanceResponse",
    "LedgerEntryResponse",
    "LedgerHistoryResponse",
    "ReferralStatsResponse",
    "RegisterAccountRequest",
    "RegisterAccountResponse",
    # Alert
    "AlertListResponse",
    "AlertResponse",
    "ResolveAlertRequest",
    # Catalog
    "AvailabilityRequest",
    "ProductCreateRequest",
    "ProductResponse",
    "ProductUpdateRequest",
    "ReplenishmentResponse",
    "RestockRequest",
    "RestockResponse",
    # Order
    "CancelOrderRequest",
    "FulfillOrderRequest",
    "OrderListResponse",
    "OrderResponse",
    "OrderStatusEntryResponse",
    "ProductSalesResponse",
    "PurchaseRequest",
    "PurchaseResponse",
    "SalesStatisticsResponse",
    # Payment
    "PaymentResponse",
    "ReconcileResponse",
    "StartCoinPaymentRequest",
    "StartProductPaymentRequest",
]
