"""
Webhook Router - Stripe event ingestion
"""

import logging
from fastapi import APIRouter, Depends, Request

from dependencies import get_gateway, get_membership_service
from services.gateway import PaymentGateway
from services.membership_service import MembershipService

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/api", tags=["webhook"])


@webhook_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_gateway),
    service: MembershipService = Depends(get_membership_service),
):
    """
    Handle Stripe webhook events with signature verification.

    A payload that fails verification is rejected with 400. A verified event
    is always acknowledged with 200; if applying it fails, the error is logged
    and its writes are rolled back.
    """
    # Raw body is required for signature verification
    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))

    try:
        await service.handle_webhook_event(event)
    except Exception as e:
        logger.error(f"Error processing webhook {event['type']}: {e}", exc_info=True)
        # Nothing from a half-applied event is committed
        await service.storage.rollback()

    return {"received": True}
