"""
Transaction Validators for Booking Business Rules.

Validators that check business constraints inside the reservation
transaction. Unlike the slot list, these run at write time against the
session that will insert the appointment, so the check and the insert form one
atomic unit.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import BLOCKING_APPOINTMENT_STATUSES, Appointment, BlockedTime
from scheduling.errors import SlotUnavailableError, ValidationError
from scheduling.services.availability_calendar import day_of_week_for, list_active_windows
from scheduling.services.slot_generator import business_timezone, merge_windows

logger = logging.getLogger(__name__)


async def validate_slot_availability(
    session: AsyncSession,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: UUID | None = None,
) -> None:
    """
    Ensure ``[start_time, end_time)`` overlaps no non-cancelled appointment.

    Uses SELECT FOR UPDATE so concurrent PostgreSQL transactions touching the
    same rows serialize; SQLite ignores the lock clause (the coordinator's
    process lock covers it there).

    Args:
        session: SQLAlchemy async session (must be in the booking transaction)
        start_time: Proposed start (timezone-aware)
        end_time: Proposed end (timezone-aware)
        exclude_appointment_id: Appointment being moved; its current interval
            does not count as a conflict

    Raises:
        SlotUnavailableError: The interval is taken or blocked
    """
    stmt = (
        select(Appointment)
        .where(Appointment.status.in_(BLOCKING_APPOINTMENT_STATUSES))
        .where(Appointment.scheduled_at < end_time)
        .where(Appointment.ends_at > start_time)
        .order_by(Appointment.scheduled_at)
        .with_for_update()
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)
    result = await session.execute(stmt)
    conflict = result.scalars().first()

    if conflict is not None:
        logger.warning(
            f"Slot conflict detected: {start_time.isoformat()} - {end_time.isoformat()}",
            extra={"appointment_id": conflict.id},
        )
        raise SlotUnavailableError(
            details={
                "conflicting_appointment_id": str(conflict.id),
                "requested_start": start_time.isoformat(),
                "requested_end": end_time.isoformat(),
            }
        )

    blocked = await session.execute(
        select(BlockedTime.id).where(
            BlockedTime.starts_at < end_time,
            BlockedTime.ends_at > start_time,
        )
    )
    if blocked.first() is not None:
        logger.warning(f"Slot falls in blocked time: {start_time.isoformat()}")
        raise SlotUnavailableError()


def validate_future_start(scheduled_at: datetime, now: datetime, min_lead_minutes: int = 0) -> None:
    """
    Reject appointments that start in the past or inside the lead time.

    Raises:
        ValidationError: scheduled_at is naive, in the past, or too soon
    """
    if scheduled_at.tzinfo is None:
        raise ValidationError("scheduledAt must include a timezone offset")

    earliest = now + timedelta(minutes=min_lead_minutes)
    if scheduled_at <= earliest:
        raise ValidationError(
            "Cannot book appointments in the past"
            if scheduled_at <= now
            else f"Appointments must be booked at least {min_lead_minutes} minutes in advance",
            details={"scheduled_at": scheduled_at.isoformat(), "earliest": earliest.isoformat()},
        )


async def validate_within_availability(
    session: AsyncSession,
    start_time: datetime,
    end_time: datetime,
) -> None:
    """
    Ensure the interval lies inside one merged availability window.

    Raises:
        ValidationError: Outside business availability
    """
    tz = business_timezone()
    local_start = start_time.astimezone(tz)
    local_end = end_time.astimezone(tz)

    # Windows are same-day wall-clock intervals
    if local_end.date() == local_start.date():
        windows = await list_active_windows(session, day_of_week_for(local_start.date()))
        start_t = local_start.time()
        end_t = local_end.time()

        for window_start, window_end in merge_windows((w.start_time, w.end_time) for w in windows):
            if window_start <= start_t and end_t <= window_end:
                return

    raise ValidationError(
        "Requested time is outside business availability",
        details={"requested_start": start_time.isoformat()},
    )
