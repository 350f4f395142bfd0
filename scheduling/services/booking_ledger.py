"""
Booking Ledger - the transactional store of appointments.

Owns conflict detection at write time and the appointment state machine:

    pending -> confirmed -> completed
    pending | confirmed -> cancelled

cancelled and completed are terminal. Cancelling an already cancelled
appointment is a no-op (retry safety); every other invalid transition raises
ConflictError. Rows are never deleted.

All functions take the caller's session and never commit: the Reservation
Coordinator (or the API route) owns the transaction boundary.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Appointment, AppointmentStatus, LocationType, UserRole
from database.types import utcnow
from scheduling.errors import AuthError, ConflictError, NotFoundError, ValidationError
from scheduling.validators.transaction_validators import (
    validate_future_start,
    validate_slot_availability,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

# Statuses whose time, location and notes may still change
EDITABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the auth collaborator."""

    id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


async def get_booking(session: AsyncSession, appointment_id: UUID, *, for_update: bool = False) -> Appointment:
    stmt = select(Appointment).where(Appointment.id == appointment_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    appointment = result.scalar_one_or_none()
    if appointment is None:
        raise NotFoundError("Appointment not found", details={"appointment_id": str(appointment_id)})
    return appointment


def ensure_can_access(record: Any, actor: Actor) -> None:
    """Clients may only touch their own appointments and invoices; admins may touch any."""
    if not actor.is_admin and record.client_id != actor.id:
        raise AuthError("Forbidden", status_code=403)


async def create_booking(
    session: AsyncSession,
    *,
    client_id: UUID,
    service_id: UUID,
    scheduled_at: datetime,
    duration_minutes: int,
    location_type: LocationType,
    location_address: str | None = None,
    notes: str | None = None,
    status: AppointmentStatus = AppointmentStatus.PENDING,
    client_package_id: UUID | None = None,
    invoice_id: UUID | None = None,
    now: datetime | None = None,
    min_lead_minutes: int = 0,
) -> Appointment:
    """
    Insert an appointment after re-validating the interval at write time.

    Raises:
        ValidationError: Non-positive duration, bad initial status, or start not in the future
        SlotUnavailableError: Interval overlaps a non-cancelled appointment or blocked time
    """
    if duration_minutes <= 0:
        raise ValidationError("durationMins must be positive")
    if status not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
        raise ValidationError(f"Appointments cannot be created as '{status.value}'")

    validate_future_start(scheduled_at, now or utcnow(), min_lead_minutes)

    ends_at = scheduled_at + timedelta(minutes=duration_minutes)
    await validate_slot_availability(session, scheduled_at, ends_at)

    appointment = Appointment(
        client_id=client_id,
        service_id=service_id,
        scheduled_at=scheduled_at,
        duration_minutes=duration_minutes,
        ends_at=ends_at,
        status=status,
        location_type=location_type,
        location_address=location_address,
        notes=notes,
        client_package_id=client_package_id,
        invoice_id=invoice_id,
    )
    session.add(appointment)
    await session.flush()

    logger.info(
        f"Appointment record created ({status.value}): {scheduled_at.isoformat()} +{duration_minutes}min",
        extra={"appointment_id": appointment.id, "client_id": client_id},
    )
    return appointment


async def reschedule_booking(
    session: AsyncSession,
    appointment: Appointment,
    scheduled_at: datetime,
    *,
    now: datetime | None = None,
    min_lead_minutes: int = 0,
) -> Appointment:
    """
    Move a pending or confirmed appointment to a new start, keeping its duration.

    The appointment's own current interval is ignored by the overlap check, so
    it can be shifted onto time it partly occupies already.

    Raises:
        ConflictError: Appointment is cancelled or completed
        ValidationError: New start not in the future
        SlotUnavailableError: New interval overlaps another appointment or blocked time
    """
    if appointment.status not in EDITABLE_STATUSES:
        raise ConflictError(
            f"Cannot reschedule a {appointment.status.value} appointment",
            details={"appointment_id": str(appointment.id), "status": appointment.status.value},
        )

    validate_future_start(scheduled_at, now or utcnow(), min_lead_minutes)

    ends_at = scheduled_at + timedelta(minutes=appointment.duration_minutes)
    await validate_slot_availability(session, scheduled_at, ends_at, exclude_appointment_id=appointment.id)

    previous = appointment.scheduled_at
    appointment.scheduled_at = scheduled_at
    appointment.ends_at = ends_at
    await session.flush()

    logger.info(
        f"Appointment rescheduled: {previous.isoformat()} -> {scheduled_at.isoformat()}",
        extra={"appointment_id": appointment.id},
    )
    return appointment


async def transition(
    session: AsyncSession,
    appointment: Appointment,
    target: AppointmentStatus,
) -> Appointment:
    """
    Move an appointment forward in the state machine.

    Raises:
        ConflictError: Transition not allowed from the current status
    """
    current = appointment.status
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot change appointment from '{current.value}' to '{target.value}'",
            details={"appointment_id": str(appointment.id), "status": current.value},
        )

    appointment.status = target
    if target == AppointmentStatus.CANCELLED:
        appointment.cancelled_at = utcnow()
    await session.flush()

    logger.info(
        f"Appointment transitioned: {current.value} -> {target.value}",
        extra={"appointment_id": appointment.id},
    )
    return appointment


async def cancel_booking(
    session: AsyncSession,
    appointment_id: UUID,
    actor: Actor,
) -> tuple[Appointment, bool]:
    """
    Cancel an appointment.

    Returns:
        (appointment, changed) - changed is False when it was already cancelled

    Raises:
        NotFoundError: Unknown appointment
        AuthError: Client cancelling someone else's appointment (403)
        ConflictError: Appointment already completed
    """
    appointment = await get_booking(session, appointment_id, for_update=True)
    ensure_can_access(appointment, actor)

    if appointment.status == AppointmentStatus.CANCELLED:
        logger.info(
            "Cancel requested on already cancelled appointment (no-op)",
            extra={"appointment_id": appointment.id},
        )
        return appointment, False

    await transition(session, appointment, AppointmentStatus.CANCELLED)
    return appointment, True


async def list_bookings(
    session: AsyncSession,
    actor: Actor,
    *,
    client_id: UUID | None = None,
    status: AppointmentStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict[str, Any]:
    """
    Page through appointments, newest first.

    Clients only ever see their own; admins may filter by client.
    """
    conditions = []
    if not actor.is_admin:
        conditions.append(Appointment.client_id == actor.id)
    elif client_id is not None:
        conditions.append(Appointment.client_id == client_id)
    if status is not None:
        conditions.append(Appointment.status == status)
    if start is not None:
        conditions.append(Appointment.scheduled_at >= start)
    if end is not None:
        conditions.append(Appointment.scheduled_at <= end)

    total = await session.scalar(select(func.count()).select_from(Appointment).where(*conditions))
    result = await session.execute(
        select(Appointment)
        .where(*conditions)
        .order_by(Appointment.scheduled_at.desc())
        .limit(limit)
        .offset(offset)
    )

    return {"items": list(result.scalars().all()), "total": int(total or 0)}
