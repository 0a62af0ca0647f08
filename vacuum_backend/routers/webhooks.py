"""
Payment webhook router.

Endpoints:
- POST /api/webhooks/payments - Asynchronous payment notification
"""

from fastapi import APIRouter, Depends
import logging

from vacuum_backend.core.dependency import get_session_orchestrator
from vacuum_backend.models.session import PaymentNotification, UsageSession
from vacuum_backend.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhooks/payments", response_model=UsageSession)
async def payment_webhook(
    notification: PaymentNotification,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator)
):
    """
    Settle a deferred (PIX) payment.

    The payment is re-read from Mercado Pago; a status sent in the body is
    only logged. Duplicate deliveries return the session unchanged. A 409
    MACHINE_BUSY or 502 PAYMENT_GATEWAY_ERROR asks the gateway to retry later.

    Example request:
        ```json
        {"payment_id": "1234567890"}
        ```
    """
    logger.info(
        f"POST /api/webhooks/payments - payment={notification.payment_id}, "
        f"reported status={notification.status}"
    )
    return await orchestrator.reconcile_payment(notification.payment_id)
