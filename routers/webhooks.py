# Payment Gateway Webhooks
# Razorpay posts payment.captured / payment.failed here

from fastapi import APIRouter, Depends, Request
from typing import Optional
import logging

from schemas.workflow import WebhookAck
from services.webhook_reconciler import WebhookReconciler
from routers.deps import get_webhook_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def _signature_from(request: Request) -> Optional[str]:
    return request.headers.get("X-Signature") or request.headers.get("X-Razorpay-Signature")


@router.post("/razorpay", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """
    Verify and apply a gateway event. Unknown payments are acknowledged
    with 200 so the gateway stops redelivering them.
    """
    raw_body = await request.body()
    outcome = reconciler.handle(raw_body, _signature_from(request))
    logger.info(f"Webhook {outcome.event}: {outcome.result} ({outcome.payment_id})")
    return WebhookAck(event=outcome.event, result=outcome.result, transactionId=outcome.correlation_id)
