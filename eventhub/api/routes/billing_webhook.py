"""
Stripe webhook endpoint.

The signature is verified before anything else; verified events are decoded
and reconciled against the subscription ledger. Every verified event is
acknowledged with 200, including ones that were dropped or ignored, so the
provider only redelivers on real failures.
"""
import logging
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from eventhub.db.session import get_db
from eventhub.core.logging_config import sanitize_log_data
from eventhub.api.routes.subscriptions import get_payment_provider
from eventhub.schemas.subscription import WebhookAck
from eventhub.services.payment_provider import PaymentProvider
from eventhub.services.webhook_reconciler import decode_event, reconcile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions/webhook", tags=["Billing Webhook"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    payload = await request.body()

    # Raises InvalidWebhookSignatureError -> 400
    raw_event = provider.verify_webhook(payload, stripe_signature)

    event_object = (raw_event.get("data") or {}).get("object") or {}
    logger.debug(f"Webhook received: type={raw_event.get('type')}, object={sanitize_log_data(event_object)}")

    event = decode_event(raw_event)
    result = reconcile(db, event)
    return WebhookAck(received=True, outcome=result.outcome.value)
