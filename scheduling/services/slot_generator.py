"""
Slot Generator - bookable time slots for a date and service duration.

The database is the single source of truth: every call recomputes the slot
list from availability windows, non-cancelled appointments and blocked times,
so the result is deterministic for a fixed database state and ``now``.

Algorithm:
1. Resolve the day of week of ``target_date`` (business timezone, 0 = Sunday)
2. Fetch the active availability windows for that day
3. Merge overlapping/adjacent windows into disjoint intervals
4. Enumerate candidate starts every min(duration, granularity) minutes such
   that start + duration <= interval end
5. Drop candidates overlapping a busy interval (half-open overlap test)
6. Drop candidates starting at or before now + minimum lead time

Usage:
    async with get_async_session() as session:
        slots = await generate_slots(session, date(2026, 11, 2), 60)
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    BLOCKING_APPOINTMENT_STATUSES,
    Appointment,
    AvailabilityWindow,
    BlockedTime,
)
from database.types import utcnow
from scheduling.errors import ValidationError
from scheduling.services.availability_calendar import day_of_week_for, list_active_windows
from shared.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeSlot:
    """A candidate bookable interval ``[start, end)`` of exact service duration."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"startTime": self.start.isoformat(), "endTime": self.end.isoformat()}


def business_timezone() -> ZoneInfo:
    return ZoneInfo(get_settings().TIMEZONE)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: touching intervals do not overlap."""
    return a_start < b_end and b_start < a_end


def merge_windows(windows: Iterable[tuple[time, time]]) -> list[tuple[time, time]]:
    """
    Merge overlapping or adjacent (start, end) windows into disjoint maximal intervals.

    Example:
        >>> merge_windows([(time(9), time(11)), (time(10), time(12)), (time(12), time(13))])
        [(datetime.time(9, 0), datetime.time(13, 0))]
    """
    merged: list[tuple[time, time]] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            last_start, last_end = merged[-1]
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))
    return merged


def iter_candidate_slots(
    target_date: date,
    windows: Iterable[tuple[time, time]],
    duration_minutes: int,
    step_minutes: int,
    tz: ZoneInfo,
) -> Iterator[TimeSlot]:
    """Lazily yield every candidate slot inside the merged windows, in order."""
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)

    for window_start, window_end in merge_windows(windows):
        interval_start = datetime.combine(target_date, window_start, tzinfo=tz)
        interval_end = datetime.combine(target_date, window_end, tzinfo=tz)

        current = interval_start
        while current + duration <= interval_end:
            yield TimeSlot(start=current, end=current + duration)
            current += step


def iter_available_slots(
    target_date: date,
    windows: Iterable[tuple[time, time]],
    busy: list[tuple[datetime, datetime]],
    duration_minutes: int,
    *,
    now: datetime,
    granularity_minutes: int,
    min_lead_minutes: int,
    tz: ZoneInfo,
) -> Iterator[TimeSlot]:
    """
    Pure slot computation over already-fetched windows and busy intervals.

    Yields slots chronologically; nothing here touches the database.
    """
    step_minutes = min(duration_minutes, granularity_minutes)
    earliest_start = now + timedelta(minutes=min_lead_minutes)

    for slot in iter_candidate_slots(target_date, windows, duration_minutes, step_minutes, tz):
        if slot.start <= earliest_start:
            continue
        if any(intervals_overlap(slot.start, slot.end, b_start, b_end) for b_start, b_end in busy):
            continue
        yield slot


async def get_busy_intervals(
    session: AsyncSession,
    range_start: datetime,
    range_end: datetime,
) -> list[tuple[datetime, datetime]]:
    """
    Busy intervals touching ``[range_start, range_end)``.

    Includes pending, confirmed and completed appointments plus blocked times.
    """
    appointment_rows = await session.execute(
        select(Appointment.scheduled_at, Appointment.ends_at).where(
            Appointment.status.in_(BLOCKING_APPOINTMENT_STATUSES),
            Appointment.scheduled_at < range_end,
            Appointment.ends_at > range_start,
        )
    )
    blocked_rows = await session.execute(
        select(BlockedTime.starts_at, BlockedTime.ends_at).where(
            BlockedTime.starts_at < range_end,
            BlockedTime.ends_at > range_start,
        )
    )

    busy = [(start, end) for start, end in appointment_rows.all()]
    busy.extend((start, end) for start, end in blocked_rows.all())
    busy.sort()
    return busy


async def generate_slots(
    session: AsyncSession,
    target_date: date,
    service_duration_minutes: int,
    *,
    now: datetime | None = None,
    granularity_minutes: int | None = None,
    min_lead_minutes: int | None = None,
) -> list[TimeSlot]:
    """
    Compute the bookable slots for a date and service duration.

    Args:
        session: Database session
        target_date: Calendar date in the business timezone
        service_duration_minutes: Exact slot length
        now: Current time (defaults to the wall clock; injectable for tests)
        granularity_minutes: Overrides SLOT_GRANULARITY_MINUTES
        min_lead_minutes: Overrides MIN_LEAD_TIME_MINUTES

    Returns:
        Chronologically ordered list of TimeSlot

    Raises:
        ValidationError: Non-positive duration or granularity
    """
    settings = get_settings()
    granularity = settings.SLOT_GRANULARITY_MINUTES if granularity_minutes is None else granularity_minutes
    lead = settings.MIN_LEAD_TIME_MINUTES if min_lead_minutes is None else min_lead_minutes

    if service_duration_minutes <= 0:
        raise ValidationError("Service duration must be positive")
    if granularity <= 0:
        raise ValidationError("Slot granularity must be positive")

    tz = business_timezone()
    now = now or utcnow()

    windows: list[AvailabilityWindow] = await list_active_windows(session, day_of_week_for(target_date))
    if not windows:
        logger.info(f"No availability windows on {target_date}")
        return []

    day_start = datetime.combine(target_date, time.min, tzinfo=tz)
    day_end = datetime.combine(target_date + timedelta(days=1), time.min, tzinfo=tz)
    busy = await get_busy_intervals(session, day_start, day_end)

    slots = list(
        iter_available_slots(
            target_date,
            [(w.start_time, w.end_time) for w in windows],
            busy,
            service_duration_minutes,
            now=now,
            granularity_minutes=granularity,
            min_lead_minutes=lead,
            tz=tz,
        )
    )

    logger.info(
        f"Found {len(slots)} available slots on {target_date} "
        f"(duration={service_duration_minutes}min, windows={len(windows)}, busy={len(busy)})"
    )
    return slots
