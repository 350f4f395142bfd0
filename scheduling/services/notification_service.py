"""
Notification dispatch.

Events are published as JSON to the Redis notifications channel, where the
email worker picks them up. Delivery is fire-and-forget: it runs only after the
triggering transaction has committed, and a failure is logged without ever
affecting the booking or payment that caused it.
"""

import asyncio
import logging
from typing import Any

from redis.exceptions import RedisError

from shared.config import get_settings
from shared.redis_client import publish_to_channel

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_RESCHEDULED = "booking.rescheduled"
INVOICE_CREATED = "invoice.created"
INVOICE_SENT = "invoice.sent"
INVOICE_PAID = "invoice.paid"
PACKAGE_PURCHASED = "package.purchased"

# Strong references to in-flight sends so they are not garbage collected
_pending: set[asyncio.Task] = set()


async def send(event: str, recipient: str, payload: dict[str, Any]) -> bool:
    """
    Publish one notification event.

    Returns:
        True if published, False if it could not be (already logged)
    """
    message = {"event": event, "recipient": recipient, "payload": payload}
    try:
        await publish_to_channel(get_settings().NOTIFICATIONS_CHANNEL, message)
    except (RedisError, OSError) as e:
        logger.warning(f"Notification '{event}' for {recipient} not delivered: {e}")
        return False
    except Exception:
        # Runs as a detached task; nothing else would ever see this
        logger.error(f"Notification '{event}' for {recipient} failed", exc_info=True)
        return False

    logger.debug(f"Notification '{event}' queued for {recipient}")
    return True


def dispatch(event: str, recipient: str, payload: dict[str, Any]) -> None:
    """Schedule ``send`` in the background without awaiting it."""
    task = asyncio.create_task(send(event, recipient, payload))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
