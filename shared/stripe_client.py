"""
Stripe API client for payment processing.

Only Checkout Session creation lives here; the webhook side is handled by
api/middleware/signature_validation.py and api/routes/stripe.py.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any

import pybreaker
import stripe
from stripe import StripeError

from scheduling.errors import ExternalServiceError
from shared.circuit_breaker import call_with_breaker, stripe_breaker
from shared.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Stripe with API key (use secret key for server-side operations)
stripe.api_key = settings.STRIPE_SECRET_KEY


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to the smallest currency unit Stripe expects."""
    return int((amount * 100).quantize(Decimal("1")))


async def create_checkout_session(
    amount_cents: int,
    description: str,
    client_id: str,
    client_email: str,
    metadata: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Create a Stripe Checkout Session for a one-off payment.

    Uses ad-hoc price_data so no permanent Stripe product is created per
    invoice or package.

    Args:
        amount_cents: Amount to charge in cents
        description: Line item description shown on the checkout page
        client_id: UUID of the paying client (stored as client_reference_id)
        client_email: Pre-filled checkout email
        metadata: Extra metadata echoed back by the webhook
            (``type`` = invoice_payment | package_purchase plus ids)

    Returns:
        dict with:
            - session_id: str - Checkout Session id
            - url: str - Hosted checkout URL to redirect the client to

    Raises:
        ExternalServiceError: Stripe is unreachable, rejected the call, or the
            circuit breaker is open
    """
    if amount_cents <= 0:
        raise ValueError("amount_cents must be positive")

    session_metadata = {"client_id": str(client_id), **(metadata or {})}

    params: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": settings.STRIPE_CURRENCY,
                    "unit_amount": amount_cents,
                    "product_data": {"name": description},
                },
                "quantity": 1,
            }
        ],
        "customer_email": client_email,
        "client_reference_id": str(client_id),
        "metadata": session_metadata,
        "success_url": f"{settings.APP_URL}/dashboard/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{settings.APP_URL}/dashboard/payment/cancel",
    }

    logger.info(
        f"Creating Stripe Checkout Session: {description} ({amount_cents} cents)",
        extra={"client_id": client_id},
    )

    async def _create() -> Any:
        return await asyncio.to_thread(stripe.checkout.Session.create, **params)

    try:
        checkout_session = await call_with_breaker(stripe_breaker, _create)
    except pybreaker.CircuitBreakerError as e:
        raise ExternalServiceError("Payment processor temporarily unavailable") from e
    except StripeError as e:
        logger.error(f"Stripe API error creating checkout session: {e}")
        raise ExternalServiceError(
            "Payment processor rejected the checkout request",
            details={"stripe_error": str(e)},
        ) from e

    logger.info(f"Checkout Session created successfully: {checkout_session.id}")

    return {
        "session_id": checkout_session.id,
        "url": checkout_session.url,
    }
