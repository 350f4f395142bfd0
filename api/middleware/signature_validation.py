"""Dependency for Stripe webhook signature validation."""

import logging
from typing import Any, cast

import stripe
from fastapi import HTTPException, Request
from stripe import SignatureVerificationError

from shared.config import get_settings

logger = logging.getLogger(__name__)


async def validate_stripe_signature(request: Request) -> dict[str, Any]:
    """
    Verify the Stripe-Signature header against the raw body and parse the event.

    The event is only trusted after this check; nothing in the payload is read
    before it.

    Returns:
        Parsed Stripe event

    Raises:
        HTTPException: 400 if the header is missing, the signature does not
            match, or the payload is not valid JSON
    """
    settings = get_settings()
    body = await request.body()

    signature_header: str | None = request.headers.get("Stripe-Signature")
    if not signature_header:
        logger.warning("Stripe webhook received without signature header")
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(
            payload=body,
            sig_header=signature_header,
            secret=settings.STRIPE_WEBHOOK_SECRET,
        )
    except SignatureVerificationError as e:
        logger.warning(f"Stripe signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature") from e
    except ValueError as e:
        logger.warning(f"Stripe webhook payload is not valid JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload") from e

    logger.debug(f"Stripe signature validated: event_type={event['type']}")
    # StripeObject -> plain dicts all the way down
    return cast(dict[str, Any], event.to_dict())
