"""
Reservation Coordinator - atomic booking and cancellation.

This is the single entry point for anything that changes who holds a slot or
how it is paid for. Each operation is one database transaction:

reserve_appointment():
1. Re-validate the request (client, service, future start, availability window
   for client actors, no overlapping booking) with row locks
2. Debit a session from a matching client package
3. On a miss, create a draft invoice for the service price
4. Insert the appointment (confirmed when nothing is owed, else pending)
5. Commit everything together, or nothing

reschedule_appointment():
1. Re-validate the new interval exactly as reserve_appointment does, ignoring
   the appointment's own row
2. Move it and apply location / notes edits, then commit

create_invoice():
   Staff-issued invoice. Numbers come from a per-year counter row, so
   concurrent issuers never draw the same one.

cancel_appointment():
1. Move the appointment to cancelled (no-op if it already is)
2. Credit the debited package, or cancel the linked unpaid invoice
3. Commit

Isolation: on PostgreSQL the transaction runs SERIALIZABLE and overlapping
rows are read FOR UPDATE. A reservation that hits a serialization failure is
re-run, and reported as the slot being taken once SERIALIZATION_ATTEMPTS runs
have failed. Inside one process an asyncio.Lock serializes the critical
section (this also covers SQLite, which has no row locks).

Notifications go out only after commit and never affect the outcome.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Any, AsyncContextManager
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_async_session, is_postgres
from database.models import (
    Appointment,
    AppointmentStatus,
    ClientPackage,
    Invoice,
    InvoiceStatus,
    LocationType,
    Service,
    User,
    UserRole,
)
from database.types import utcnow
from scheduling.errors import (
    AuthError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from scheduling.services import booking_ledger, invoice_ledger, notification_service, session_account
from scheduling.services.booking_ledger import Actor
from scheduling.services.session_account import NeedsPayment
from scheduling.services.slot_generator import business_timezone
from scheduling.validators.transaction_validators import (
    validate_future_start,
    validate_slot_availability,
    validate_within_availability,
)
from shared.config import get_settings

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = "40001"
SERIALIZATION_ATTEMPTS = 3

# Marks a keyword that was not supplied, as opposed to an explicit None
UNCHANGED: Any = object()


@dataclass
class ReservationResult:
    appointment: Appointment
    needs_payment: bool
    invoice: Invoice | None = None
    client_package: ClientPackage | None = None


def is_serialization_failure(error: DBAPIError) -> bool:
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code == SERIALIZATION_FAILURE:
            return True
    return False


class ReservationCoordinator:
    """
    Coordinates the Booking Ledger, Session Account and Invoice Ledger.

    One instance is shared by the API process (see get_reservation_coordinator);
    its lock is the in-process serialization point for reservations.
    """

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]] = get_async_session):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    async def _begin(self, session: AsyncSession) -> None:
        if is_postgres(session):
            await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))

    async def _load_client(self, session: AsyncSession, client_id: UUID) -> User:
        client = await session.get(User, client_id)
        if client is None or client.role != UserRole.CLIENT:
            raise NotFoundError("Client not found", details={"client_id": str(client_id)})
        return client

    async def _load_service(self, session: AsyncSession, service_id: UUID) -> Service:
        service = await session.get(Service, service_id)
        if service is None or not service.is_active:
            raise NotFoundError("Service not found or inactive", details={"service_id": str(service_id)})
        return service

    async def _reserve_once(
        self,
        *,
        actor: Actor,
        client_id: UUID,
        service_id: UUID,
        scheduled_at: datetime,
        location_type: LocationType,
        duration_minutes: int | None,
        location_address: str | None,
        notes: str | None,
        now: datetime,
    ) -> tuple[ReservationResult, User, Service]:
        async with self._session_factory() as session:
            await self._begin(session)

            client = await self._load_client(session, client_id)
            service = await self._load_service(session, service_id)

            if duration_minutes is not None and duration_minutes != service.duration_minutes:
                raise ValidationError(
                    "durationMins does not match the service duration",
                    details={"durationMins": duration_minutes, "service": service.duration_minutes},
                )
            duration = service.duration_minutes
            ends_at = scheduled_at + timedelta(minutes=duration)

            # Step 1: authoritative re-validation
            validate_future_start(scheduled_at, now, get_settings().MIN_LEAD_TIME_MINUTES)
            if not actor.is_admin:
                await validate_within_availability(session, scheduled_at, ends_at)
            await validate_slot_availability(session, scheduled_at, ends_at)

            # Step 2: pay with a package session if possible
            debit = await session_account.debit_session(session, client.id, service, now)
            client_package = None if isinstance(debit, NeedsPayment) else debit

            # Step 3: otherwise invoice the service price
            invoice = None
            if client_package is None and service.price > Decimal("0"):
                local_start = scheduled_at.astimezone(business_timezone())
                invoice = await invoice_ledger.create_invoice(
                    session,
                    client.id,
                    service.price,
                    description=f"{service.name} - {local_start:%Y-%m-%d %H:%M}",
                    now=now,
                )

            # Step 4: write the booking
            appointment = await booking_ledger.create_booking(
                session,
                client_id=client.id,
                service_id=service.id,
                scheduled_at=scheduled_at,
                duration_minutes=duration,
                location_type=location_type,
                location_address=location_address,
                notes=notes,
                status=AppointmentStatus.PENDING if invoice else AppointmentStatus.CONFIRMED,
                client_package_id=client_package.id if client_package else None,
                invoice_id=invoice.id if invoice else None,
                now=now,
            )

            # Step 5: commit all of it
            await session.commit()

        result = ReservationResult(
            appointment=appointment,
            needs_payment=invoice is not None,
            invoice=invoice,
            client_package=client_package,
        )
        return result, client, service

    async def reserve_appointment(
        self,
        *,
        actor: Actor,
        service_id: UUID,
        scheduled_at: datetime,
        location_type: LocationType,
        client_id: UUID | None = None,
        duration_minutes: int | None = None,
        location_address: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ReservationResult:
        """
        Book a slot and settle how it is paid for, atomically.

        A serialization failure rolls the whole attempt back and it is run
        again from the top, so the re-run sees the competing commit. Only
        after SERIALIZATION_ATTEMPTS failures is the slot reported as taken.

        Args:
            actor: Authenticated caller
            service_id: Service to book
            scheduled_at: Start (timezone-aware)
            location_type: mobile | virtual
            client_id: Client to book for (defaults to the actor; required for admins)
            duration_minutes: Must equal the service duration when given
            location_address: Address for mobile sessions
            notes: Free text
            now: Current time override (tests)

        Returns:
            ReservationResult. needs_payment is True when an invoice was created.

        Raises:
            ValidationError: Bad input, past start, or outside availability
            AuthError: Client booking for someone else (403)
            NotFoundError: Unknown client or inactive/unknown service
            SlotUnavailableError: The interval is already taken
        """
        if client_id is None:
            if actor.is_admin:
                raise ValidationError("Admin must specify a clientId")
            client_id = actor.id
        elif not actor.is_admin and client_id != actor.id:
            raise AuthError("Cannot book appointments for other clients", status_code=403)

        if location_type == LocationType.MOBILE and not (location_address or "").strip():
            raise ValidationError("locationAddress is required for mobile sessions")

        now = now or utcnow()
        trace_id = f"{client_id}_{scheduled_at.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting reservation",
            extra={"trace_id": trace_id, "client_id": client_id},
        )

        async with self._lock:
            for attempt in range(1, SERIALIZATION_ATTEMPTS + 1):
                try:
                    result, client, service = await self._reserve_once(
                        actor=actor,
                        client_id=client_id,
                        service_id=service_id,
                        scheduled_at=scheduled_at,
                        location_type=location_type,
                        duration_minutes=duration_minutes,
                        location_address=location_address,
                        notes=notes,
                        now=now,
                    )
                    break
                except DBAPIError as e:
                    if not is_serialization_failure(e):
                        logger.error(f"[{trace_id}] Database error during reservation", exc_info=True)
                        raise
                    if attempt == SERIALIZATION_ATTEMPTS:
                        logger.warning(f"[{trace_id}] Serialization failure on final attempt, slot taken")
                        raise SlotUnavailableError() from e
                    logger.warning(
                        f"[{trace_id}] Serialization failure (attempt {attempt}/{SERIALIZATION_ATTEMPTS}), retrying"
                    )

        appointment, invoice = result.appointment, result.invoice
        logger.info(
            f"[{trace_id}] Reservation committed ({appointment.status.value})",
            extra={
                "trace_id": trace_id,
                "appointment_id": appointment.id,
                "invoice_id": invoice.id if invoice else None,
                "client_package_id": result.client_package.id if result.client_package else None,
            },
        )

        notification_service.dispatch(
            notification_service.BOOKING_CREATED,
            client.email,
            {
                "appointmentId": str(appointment.id),
                "service": service.name,
                "scheduledAt": scheduled_at.isoformat(),
                "status": appointment.status.value,
            },
        )
        if invoice is not None:
            notification_service.dispatch(
                notification_service.INVOICE_CREATED,
                client.email,
                {"invoiceId": str(invoice.id), "number": invoice.number, "amount": str(invoice.amount)},
            )

        return result

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        actor: Actor,
        *,
        scheduled_at: datetime | None = None,
        location_type: LocationType | None = None,
        location_address: Any = UNCHANGED,
        notes: Any = UNCHANGED,
        now: datetime | None = None,
    ) -> Appointment:
        """
        Move an appointment and/or edit its location and notes.

        The new interval goes through the same checks as a new reservation
        (future start, inside availability for clients, no overlap with any
        other appointment) in one transaction under the reservation lock.
        Clients may only edit their own pending appointments; admins may
        also edit confirmed ones.

        Raises:
            NotFoundError: Unknown appointment
            AuthError: Client editing someone else's appointment (403)
            ConflictError: Appointment is cancelled or completed
            InvalidStateError: Client editing an appointment that is no longer pending
            ValidationError: Past start, outside availability, or mobile without an address
            SlotUnavailableError: The new interval is already taken
        """
        trace_id = f"reschedule_{appointment_id}"
        now = now or utcnow()
        moved = False

        async with self._lock:
            async with self._session_factory() as session:
                try:
                    await self._begin(session)

                    appointment = await booking_ledger.get_booking(session, appointment_id, for_update=True)
                    booking_ledger.ensure_can_access(appointment, actor)

                    if appointment.status not in booking_ledger.EDITABLE_STATUSES:
                        raise ConflictError(
                            f"Cannot edit a {appointment.status.value} appointment",
                            details={"appointment_id": str(appointment.id), "status": appointment.status.value},
                        )
                    if not actor.is_admin and appointment.status != AppointmentStatus.PENDING:
                        raise InvalidStateError("Only pending appointments can be changed; contact the studio")

                    previous_start = appointment.scheduled_at
                    if scheduled_at is not None and scheduled_at != previous_start:
                        if not actor.is_admin:
                            ends_at = scheduled_at + timedelta(minutes=appointment.duration_minutes)
                            await validate_within_availability(session, scheduled_at, ends_at)
                        await booking_ledger.reschedule_booking(
                            session,
                            appointment,
                            scheduled_at,
                            now=now,
                            min_lead_minutes=get_settings().MIN_LEAD_TIME_MINUTES,
                        )
                        moved = True

                    if location_type is not None:
                        appointment.location_type = location_type
                    if location_address is not UNCHANGED:
                        appointment.location_address = location_address
                    if notes is not UNCHANGED:
                        appointment.notes = notes
                    if appointment.location_type == LocationType.MOBILE and not (
                        appointment.location_address or ""
                    ).strip():
                        raise ValidationError("locationAddress is required for mobile sessions")

                    client = await session.get(User, appointment.client_id)
                    await session.commit()

                except DBAPIError as e:
                    if is_serialization_failure(e):
                        logger.warning(f"[{trace_id}] Serialization failure, slot taken concurrently")
                        raise SlotUnavailableError() from e
                    logger.error(f"[{trace_id}] Database error during reschedule", exc_info=True)
                    raise

        logger.info(
            f"[{trace_id}] Appointment updated" + (" and moved" if moved else ""),
            extra={"trace_id": trace_id, "appointment_id": appointment.id},
        )
        if moved and client is not None:
            notification_service.dispatch(
                notification_service.BOOKING_RESCHEDULED,
                client.email,
                {
                    "appointmentId": str(appointment.id),
                    "previousScheduledAt": previous_start.isoformat(),
                    "scheduledAt": appointment.scheduled_at.isoformat(),
                },
            )
        return appointment

    async def cancel_appointment(self, appointment_id: UUID, actor: Actor) -> Appointment:
        """
        Cancel a booking and reverse how it was paid for.

        Idempotent: cancelling an already cancelled appointment returns it
        unchanged and reverses nothing a second time.

        Raises:
            NotFoundError: Unknown appointment
            AuthError: Client cancelling someone else's appointment (403)
            ConflictError: Appointment already completed
        """
        trace_id = f"cancel_{appointment_id}"

        async with self._lock:
            async with self._session_factory() as session:
                await self._begin(session)

                appointment, changed = await booking_ledger.cancel_booking(session, appointment_id, actor)
                if not changed:
                    return appointment

                if appointment.client_package_id is not None:
                    await session_account.credit_session(session, appointment.client_package_id)
                elif appointment.invoice_id is not None:
                    invoice = await invoice_ledger.get_invoice(session, appointment.invoice_id, for_update=True)
                    if invoice.status in invoice_ledger.PAYABLE_INVOICE_STATUSES:
                        await invoice_ledger.cancel_invoice(session, invoice.id)
                    else:
                        logger.info(
                            f"[{trace_id}] Linked invoice is {invoice.status.value}, left unchanged",
                            extra={"invoice_id": invoice.id},
                        )

                client = await session.get(User, appointment.client_id)
                await session.commit()

        logger.info(
            f"[{trace_id}] Appointment cancelled",
            extra={"trace_id": trace_id, "appointment_id": appointment.id},
        )
        if client is not None:
            notification_service.dispatch(
                notification_service.BOOKING_CANCELLED,
                client.email,
                {"appointmentId": str(appointment.id), "scheduledAt": appointment.scheduled_at.isoformat()},
            )
        return appointment

    async def change_status(
        self,
        appointment_id: UUID,
        target: AppointmentStatus,
        actor: Actor,
    ) -> Appointment:
        """Staff transition (confirm, complete, cancel)."""
        if not actor.is_admin:
            raise AuthError("Admin access required", status_code=403)
        if target == AppointmentStatus.CANCELLED:
            return await self.cancel_appointment(appointment_id, actor)

        async with self._lock:
            async with self._session_factory() as session:
                appointment = await booking_ledger.get_booking(session, appointment_id, for_update=True)
                await booking_ledger.transition(session, appointment, target)
                await session.commit()
        return appointment

    async def _confirm_paid_appointments(self, session: AsyncSession, invoice: Invoice) -> list[Appointment]:
        """Confirm pending appointments that were waiting on this invoice."""
        if invoice.status != InvoiceStatus.PAID:
            return []

        result = await session.execute(
            select(Appointment).where(
                Appointment.invoice_id == invoice.id,
                Appointment.status == AppointmentStatus.PENDING,
            )
        )
        confirmed = []
        for appointment in result.scalars().all():
            await booking_ledger.transition(session, appointment, AppointmentStatus.CONFIRMED)
            confirmed.append(appointment)
        return confirmed

    async def _after_payment(self, session: AsyncSession, invoice: Invoice, confirmed: list[Appointment]) -> None:
        client = await session.get(User, invoice.client_id)
        if client is None:
            return
        if invoice.status == InvoiceStatus.PAID:
            notification_service.dispatch(
                notification_service.INVOICE_PAID,
                client.email,
                {"invoiceId": str(invoice.id), "number": invoice.number, "amount": str(invoice.amount)},
            )
        for appointment in confirmed:
            notification_service.dispatch(
                notification_service.BOOKING_CONFIRMED,
                client.email,
                {"appointmentId": str(appointment.id), "scheduledAt": appointment.scheduled_at.isoformat()},
            )

    async def create_invoice(
        self,
        client_id: UUID,
        amount: Decimal,
        *,
        description: str | None = None,
        due_date: datetime | None = None,
        status: InvoiceStatus = InvoiceStatus.DRAFT,
        now: datetime | None = None,
    ) -> Invoice:
        """
        Issue a standalone invoice (staff). A ``sent`` invoice notifies the client.

        Raises:
            NotFoundError: Unknown client
            ValidationError: Negative amount or an initial status other than draft/sent
        """
        async with self._lock:
            async with self._session_factory() as session:
                client = await self._load_client(session, client_id)
                invoice = await invoice_ledger.create_invoice(
                    session,
                    client.id,
                    amount,
                    description=description,
                    due_date=due_date,
                    status=status,
                    now=now,
                )
                await session.commit()

        if invoice.status == InvoiceStatus.SENT:
            notification_service.dispatch(
                notification_service.INVOICE_SENT,
                client.email,
                {"invoiceId": str(invoice.id), "number": invoice.number, "amount": str(invoice.amount)},
            )
        return invoice

    async def record_invoice_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        *,
        method: str | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """Direct (staff-recorded) payment; a settled invoice confirms its appointment."""
        async with self._lock:
            async with self._session_factory() as session:
                invoice, _ = await invoice_ledger.record_payment(
                    session, invoice_id, amount, method=method, now=now
                )
                confirmed = await self._confirm_paid_appointments(session, invoice)
                await session.commit()
                await self._after_payment(session, invoice, confirmed)
        return invoice

    async def settle_processor_payment(
        self,
        invoice_id: UUID,
        *,
        external_payment_id: str | None = None,
        external_reference: str | None = None,
    ) -> Invoice:
        """Payment processor confirmed the invoice was paid (webhook)."""
        async with self._lock:
            async with self._session_factory() as session:
                invoice, changed = await invoice_ledger.payment_succeeded(
                    session,
                    invoice_id,
                    external_payment_id=external_payment_id,
                    external_reference=external_reference,
                )
                confirmed = await self._confirm_paid_appointments(session, invoice) if changed else []
                await session.commit()
                if changed:
                    await self._after_payment(session, invoice, confirmed)
        return invoice

    async def cancel_invoice(self, invoice_id: UUID) -> Invoice:
        """
        Void an unpaid invoice.

        Pending appointments waiting on it are cancelled too, so their slots
        are released.
        """
        async with self._lock:
            async with self._session_factory() as session:
                invoice = await invoice_ledger.cancel_invoice(session, invoice_id)
                result = await session.execute(
                    select(Appointment).where(
                        Appointment.invoice_id == invoice.id,
                        Appointment.status == AppointmentStatus.PENDING,
                    )
                )
                for appointment in result.scalars().all():
                    await booking_ledger.transition(session, appointment, AppointmentStatus.CANCELLED)
                await session.commit()
        return invoice

    async def complete_package_purchase(
        self,
        client_id: UUID,
        package_id: UUID,
        *,
        external_reference: str | None = None,
        external_payment_id: str | None = None,
    ) -> dict[str, Any]:
        async with self._lock:
            async with self._session_factory() as session:
                account, invoice, created = await session_account.fulfil_package_purchase(
                    session,
                    client_id,
                    package_id,
                    external_reference=external_reference,
                    external_payment_id=external_payment_id,
                )
                await session.commit()
                client = await session.get(User, client_id)

        if created and client is not None:
            notification_service.dispatch(
                notification_service.PACKAGE_PURCHASED,
                client.email,
                {"clientPackageId": str(account.id), "sessions": account.remaining_sessions},
            )
        return {"client_package": account, "invoice": invoice, "created": created}


@lru_cache
def get_reservation_coordinator() -> ReservationCoordinator:
    return ReservationCoordinator()
