"""
Availability Calendar - recurring weekly availability windows.

Windows are wall-clock intervals in the business timezone keyed by day of week
(0 = Sunday ... 6 = Saturday). Readers never swallow storage errors: a failed
query propagates to the caller so the slot list is never silently empty.

Usage:
    from scheduling.services.availability_calendar import list_active_windows

    async with get_async_session() as session:
        windows = await list_active_windows(session, day_of_week=1)  # Monday
"""

import logging
from datetime import date, time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AvailabilityWindow
from scheduling.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def day_of_week_for(target_date: date) -> int:
    """Return the 0 = Sunday day-of-week index for a calendar date."""
    return (target_date.weekday() + 1) % 7


def _validate_window(day_of_week: int, start_time: time, end_time: time) -> None:
    if not (0 <= day_of_week <= 6):
        raise ValidationError(
            f"day_of_week must be between 0 (Sunday) and 6 (Saturday), got {day_of_week}"
        )
    if start_time >= end_time:
        raise ValidationError(
            "Availability window must start before it ends",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


async def list_active_windows(session: AsyncSession, day_of_week: int) -> list[AvailabilityWindow]:
    """
    List active windows for one day of the week, ordered by start time.

    Args:
        session: Database session
        day_of_week: 0 (Sunday) to 6 (Saturday)

    Returns:
        Active windows ordered by start_time (overlaps are possible; the slot
        generator merges them)
    """
    if not (0 <= day_of_week <= 6):
        raise ValidationError(f"Invalid day_of_week: {day_of_week}. Must be 0-6.")

    result = await session.execute(
        select(AvailabilityWindow)
        .where(
            AvailabilityWindow.day_of_week == day_of_week,
            AvailabilityWindow.is_active.is_(True),
        )
        .order_by(AvailabilityWindow.start_time, AvailabilityWindow.end_time)
    )
    return list(result.scalars().all())


async def list_windows(session: AsyncSession, include_inactive: bool = False) -> list[AvailabilityWindow]:
    stmt = select(AvailabilityWindow).order_by(
        AvailabilityWindow.day_of_week, AvailabilityWindow.start_time
    )
    if not include_inactive:
        stmt = stmt.where(AvailabilityWindow.is_active.is_(True))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_window(
    session: AsyncSession,
    day_of_week: int,
    start_time: time,
    end_time: time,
) -> AvailabilityWindow:
    """Create an active window. Overlap with existing windows is allowed."""
    _validate_window(day_of_week, start_time, end_time)

    window = AvailabilityWindow(
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        is_active=True,
    )
    session.add(window)
    await session.flush()

    logger.info(
        f"Availability window created: {DAY_NAMES[day_of_week]} "
        f"{start_time:%H:%M}-{end_time:%H:%M} ({window.id})"
    )
    return window


async def _get_window(session: AsyncSession, window_id: UUID) -> AvailabilityWindow:
    window = await session.get(AvailabilityWindow, window_id)
    if window is None:
        raise NotFoundError("Availability window not found", details={"window_id": str(window_id)})
    return window


async def update_window(
    session: AsyncSession,
    window_id: UUID,
    *,
    day_of_week: int | None = None,
    start_time: time | None = None,
    end_time: time | None = None,
    is_active: bool | None = None,
) -> AvailabilityWindow:
    window = await _get_window(session, window_id)

    new_day = window.day_of_week if day_of_week is None else day_of_week
    new_start = window.start_time if start_time is None else start_time
    new_end = window.end_time if end_time is None else end_time
    _validate_window(new_day, new_start, new_end)

    window.day_of_week = new_day
    window.start_time = new_start
    window.end_time = new_end
    if is_active is not None:
        window.is_active = is_active

    await session.flush()
    logger.info(f"Availability window updated: {window!r}")
    return window


async def deactivate_window(session: AsyncSession, window_id: UUID) -> AvailabilityWindow:
    """Logical delete: historical bookings may still fall inside the window."""
    window = await _get_window(session, window_id)
    window.is_active = False
    await session.flush()
    logger.info(f"Availability window deactivated: {window_id}")
    return window
