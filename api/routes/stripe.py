"""Stripe webhook route handler."""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from api.middleware.signature_validation import validate_stripe_signature
from api.models.stripe_webhook import CheckoutMetadata
from scheduling.errors import SchedulingError
from scheduling.services import invoice_ledger
from scheduling.transactions.reservation import get_reservation_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])

# Stripe event types we process
PROCESSED_EVENT_TYPES = {"checkout.session.completed", "payment_intent.payment_failed"}


def _parse_uuid(value: Any) -> UUID | None:
    try:
        return UUID(str(value)) if value else None
    except ValueError:
        return None


@router.post("/webhook")
async def receive_stripe_webhook(
    event: dict[str, Any] = Depends(validate_stripe_signature),
) -> JSONResponse:
    """
    Receive and process Stripe webhook events.

    - checkout.session.completed: settle the invoice or fulfil the package
      purchase named in the session metadata
    - payment_intent.payment_failed: logged only

    Replays are safe: settlement and fulfilment are idempotent per checkout.

    Raises:
        HTTPException: 400 if the checkout metadata is missing or malformed
    """
    event_type = event.get("type")

    if event_type not in PROCESSED_EVENT_TYPES:
        logger.debug(f"Ignoring Stripe event type: {event_type}")
        return JSONResponse(status_code=200, content={"status": "ignored"})

    event_data = event.get("data", {}).get("object", {})
    metadata = event_data.get("metadata") or {}

    if event_type == "payment_intent.payment_failed":
        error = event_data.get("last_payment_error") or {}
        invoice_ledger.payment_failed(_parse_uuid(metadata.get("invoice_id")), error.get("message"))
        return JSONResponse(status_code=200, content={"status": "received"})

    try:
        checkout = CheckoutMetadata.model_validate(metadata)
    except PydanticValidationError as e:
        logger.error(f"Invalid checkout metadata in Stripe event {event.get('id')}: {e}")
        raise HTTPException(status_code=400, detail="Invalid checkout metadata") from e

    session_id = event_data.get("id")
    payment_intent = event_data.get("payment_intent")
    coordinator = get_reservation_coordinator()

    try:
        if checkout.type == "invoice_payment":
            await coordinator.settle_processor_payment(
                checkout.invoice_id,
                external_payment_id=payment_intent,
                external_reference=session_id,
            )
        else:
            await coordinator.complete_package_purchase(
                checkout.client_id,
                checkout.package_id,
                external_reference=session_id,
                external_payment_id=payment_intent,
            )
    except SchedulingError as e:
        # Retrying will not change the outcome, so acknowledge and leave it to staff
        logger.error(
            f"Stripe event {event.get('id')} could not be applied: {e.message}",
            extra={"client_id": checkout.client_id},
        )
        return JSONResponse(status_code=200, content={"status": "rejected", "error": e.message})

    logger.info(
        f"Stripe event processed: type={event_type}, checkout={checkout.type}, session={session_id}",
        extra={"client_id": checkout.client_id},
    )
    return JSONResponse(status_code=200, content={"status": "received"})
