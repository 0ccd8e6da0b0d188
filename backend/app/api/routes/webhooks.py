"""
Razorpay Webhook Handler

Receives signed gateway events for the subscription lifecycle and the
legacy one-time order flow.

Handled events:
- subscription.activated / charged / cancelled / completed
- payment.authorized / payment.captured / payment.failed

Unknown events are acknowledged with 200. Store failures return 500 so the
gateway retries; a missing local record returns 404.
"""

import logging

from fastapi import APIRouter, Depends, Request

from app.api.dependencies import get_webhook_service
from app.infrastructure.services.webhook_service import WebhookService


logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-razorpay-signature"
SIGNATURE_HEADER_ALIAS = "x-signature"
EVENT_ID_HEADER = "x-razorpay-event-id"


@router.post("/webhooks/razorpay")
async def razorpay_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    """
    Handle a Razorpay webhook delivery.

    The body is read raw: the signature covers the exact bytes sent.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER) or request.headers.get(SIGNATURE_HEADER_ALIAS)
    event_id = request.headers.get(EVENT_ID_HEADER)

    outcome = await service.process(payload, signature, event_id)

    body = {"success": True, "status": outcome.status, "event": outcome.event}
    if outcome.detail:
        body["detail"] = outcome.detail
    return body
