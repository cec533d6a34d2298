"""NOWPayments IPN webhook."""

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.logging import get_logger
from services.storefront_service.dependencies import get_reconciler
from services.storefront_service.errors import PaymentNotFoundError
from services.storefront_service.services.reconciler import PaymentReconciler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/nowpayments")
async def nowpayments_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    NOWPayments IPN endpoint (no auth; verified by x-nowpayments-sig).
    """
    raw = await request.body()
    signature = request.headers.get("x-nowpayments-sig")
    if not reconciler.provider.verify_ipn_signature(raw, signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    payload = json.loads(raw.decode("utf-8") or "{}")
    provider_transaction_id = payload.get("invoice_id")
    payment_status = payload.get("payment_status")
    if provider_transaction_id is None or not payment_status:
        return {"received": True}

    try:
        payment = await reconciler.on_provider_status_change(
            str(provider_transaction_id), payment_status, payload
        )
    except PaymentNotFoundError:
        logger.warning(
            "IPN received for unknown invoice %s",
            provider_transaction_id,
            extra={
                "extra_fields": {
                    "invoice_id": str(provider_transaction_id),
                    "payment_status": payment_status,
                }
            },
        )
        return {"received": True}

    return {"received": True, "status": payment.status.value}
