"""
NOWPayments API client for crypto invoices.

Provides async methods for:
- Creating hosted invoices (the customer pays on the returned URL)
- Fetching the status of a payment made against an invoice
- Verifying IPN callback signatures
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from services.storefront_service.models import PaymentStatus

logger = logging.getLogger(__name__)

PROVIDER_NAME = "nowpayments"

# Raw NOWPayments payment_status -> terminal PaymentStatus. Anything missing here
# (waiting, confirming, confirmed, sending, partially_paid) is still in flight.
STATUS_MAP = {
    "finished": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.CANCELLED,
}


def map_provider_status(raw_status: Optional[str]) -> Optional[PaymentStatus]:
    """Terminal status for a raw provider status, ``None`` while in flight."""
    if not raw_status:
        return None
    return STATUS_MAP.get(raw_status.strip().lower())


@dataclass
class ExternalPayment:
    """Result of creating an invoice."""

    provider_transaction_id: str  # invoice id
    pay_url: str
    amount: Decimal
    currency: str


@dataclass
class ProviderPaymentStatus:
    """Status of one payment made against an invoice."""

    payment_id: str
    invoice_id: Optional[str]
    payment_status: str
    order_id: Optional[str]
    price_amount: Optional[Decimal]
    actually_paid: Optional[Decimal]
    pay_currency: Optional[str]


class NowPaymentsError(Exception):
    """Base exception for NOWPayments API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def _decimal_or_none(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


class NowPaymentsClient:
    """Async client for the NOWPayments invoice and payment-status APIs."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        ipn_secret: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.NOWPAYMENTS_API_KEY
        if not self.api_key:
            raise ValueError("NOWPAYMENTS_API_KEY is required")
        self.base_url = (base_url or settings.NOWPAYMENTS_API_URL).rstrip("/")
        self.ipn_secret = ipn_secret or settings.NOWPAYMENTS_IPN_SECRET
        self._transport = transport
        self._headers = {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
    ) -> dict:
        """Make an async request to the NOWPayments API."""
        url = f"{self.base_url}{endpoint}"

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    json=json_data,
                )
            except httpx.RequestError as e:
                raise NowPaymentsError(message=f"NOWPayments unreachable: {e}") from e

            try:
                data = response.json()
            except ValueError:
                data = {"message": response.text}

            if not response.is_success:
                logger.error(
                    "NOWPayments API error: %s - %s", response.status_code, data
                )
                raise NowPaymentsError(
                    message=data.get("message", "Unknown NOWPayments error"),
                    status_code=response.status_code,
                    response_data=data,
                )

            return data

    # =========================================================================
    # Invoices
    # =========================================================================

    async def create_payment(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
        pay_currency: str = None,
        description: str = None,
    ) -> ExternalPayment:
        """
        Create a hosted invoice for ``amount`` in ``currency``.

        Args:
            amount: Price in the fiat price currency.
            currency: Price currency code (e.g. "USD").
            metadata: Must contain ``reference``, the local payment id echoed
                back in IPN callbacks as ``order_id``.
            pay_currency: Crypto the customer pays with (e.g. "usdt").
            description: Shown to the customer on the invoice page.

        Returns:
            ExternalPayment with the invoice id and URL.
        """
        settings = get_settings()
        data = await self._request(
            "POST",
            "/invoice",
            json_data={
                "price_amount": float(amount),
                "price_currency": currency.lower(),
                "pay_currency": (pay_currency or settings.DEFAULT_PAY_CURRENCY).lower(),
                "order_id": str(metadata.get("reference", "")),
                "order_description": description or "",
                "ipn_callback_url": settings.NOWPAYMENTS_IPN_CALLBACK_URL,
                "success_url": settings.NOWPAYMENTS_SUCCESS_URL,
                "cancel_url": settings.NOWPAYMENTS_CANCEL_URL,
            },
        )

        invoice_id = data.get("id")
        pay_url = data.get("invoice_url")
        if not invoice_id or not pay_url:
            raise NowPaymentsError(
                message="Invoice response missing id or invoice_url",
                response_data=data,
            )
        return ExternalPayment(
            provider_transaction_id=str(invoice_id),
            pay_url=pay_url,
            amount=amount,
            currency=currency,
        )

    async def get_payment_status(self, payment_id: str) -> ProviderPaymentStatus:
        """
        Fetch the current status of a payment.

        Args:
            payment_id: NOWPayments payment id (reported in IPN callbacks).
        """
        data = await self._request("GET", f"/payment/{payment_id}")
        invoice_id = data.get("invoice_id")
        order_id = data.get("order_id")
        return ProviderPaymentStatus(
            payment_id=str(data.get("payment_id", payment_id)),
            invoice_id=str(invoice_id) if invoice_id is not None else None,
            payment_status=data.get("payment_status", "waiting"),
            order_id=str(order_id) if order_id is not None else None,
            price_amount=_decimal_or_none(data.get("price_amount")),
            actually_paid=_decimal_or_none(data.get("actually_paid")),
            pay_currency=data.get("pay_currency"),
        )

    # =========================================================================
    # IPN
    # =========================================================================

    def verify_ipn_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check ``x-nowpayments-sig``: HMAC-SHA512 over the key-sorted JSON body."""
        if not signature or not self.ipn_secret:
            return False
        try:
            payload = json.loads(raw_body.decode("utf-8") or "{}")
        except ValueError:
            return False
        return hmac.compare_digest(sign_ipn_payload(payload, self.ipn_secret), signature)


def sign_ipn_payload(payload: dict, secret: str) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(
        secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha512
    ).hexdigest()


def get_nowpayments_client() -> NowPaymentsClient:
    """Get a NowPaymentsClient instance."""
    return NowPaymentsClient()
