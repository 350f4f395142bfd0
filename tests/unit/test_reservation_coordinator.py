"""
Unit tests for scheduling/transactions/reservation.py.

Tests coverage:
- reserve_appointment() debit path: confirmed appointment, session consumed
- reserve_appointment() payment path: draft invoice + pending appointment
- Concurrent identical requests: exactly one succeeds
- Rollback: a failure after the debit leaves no trace
- cancel_appointment(): credit / invoice cancellation, idempotence
- Payment settlement confirming pending appointments
- Request validation (actor, location, duration, availability window)
- reschedule_appointment(): re-validation ignoring its own row, edit rules
- Serialization failures retried, staff invoices numbered without collisions
"""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError

from conftest import at
from database.connection import get_async_session
from database.models import (
    Appointment,
    AppointmentStatus,
    ClientPackage,
    Invoice,
    InvoiceStatus,
    LocationType,
    Service,
    UserRole,
)
from scheduling.errors import (
    AuthError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from scheduling.services import booking_ledger, notification_service
from scheduling.services.booking_ledger import Actor
from scheduling.transactions.reservation import (
    SERIALIZATION_ATTEMPTS,
    ReservationCoordinator,
    is_serialization_failure,
)


@pytest.fixture
def coordinator():
    return ReservationCoordinator()


async def _count(model) -> int:
    async with get_async_session() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _remaining(account_id) -> int:
    async with get_async_session() as session:
        return await session.scalar(
            select(ClientPackage.remaining_sessions).where(ClientPackage.id == account_id)
        )


def _reserve(coordinator, actor, service, start, **kwargs):
    kwargs.setdefault("location_type", LocationType.VIRTUAL)
    return coordinator.reserve_appointment(actor=actor, service_id=service.id, scheduled_at=start, **kwargs)


def _serialization_error() -> DBAPIError:
    orig = type("PgError", (Exception,), {"sqlstate": "40001"})()
    return DBAPIError("INSERT INTO appointments ...", {}, orig)


# ============================================================================
# Reservation
# ============================================================================


class TestReserveWithSessions:
    async def test_debit_path_confirms_appointment(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date, notifications
    ):
        account = await make_account(remaining=3)

        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert result.needs_payment is False
        assert result.invoice is None
        assert result.client_package.id == account.id
        assert result.appointment.status == AppointmentStatus.CONFIRMED
        assert result.appointment.client_package_id == account.id
        assert await _remaining(account.id) == 2
        assert await _count(Invoice) == 0

        events = [c.args[0] for c in notifications.call_args_list]
        assert events == [notification_service.BOOKING_CREATED]

    async def test_last_session_then_payment_required(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=1)

        first = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        second = await _reserve(coordinator, client_actor, training_service, at(booking_date, 10))

        assert first.needs_payment is False
        assert second.needs_payment is True
        assert await _remaining(account.id) == 0

    async def test_concurrent_reservations_share_last_session(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=1)

        results = await asyncio.gather(
            _reserve(coordinator, client_actor, training_service, at(booking_date, 9)),
            _reserve(coordinator, client_actor, training_service, at(booking_date, 10)),
        )

        assert sorted(r.needs_payment for r in results) == [False, True]
        assert await _remaining(account.id) == 0
        assert await _count(Appointment) == 2
        assert await _count(Invoice) == 1


class TestReserveNeedsPayment:
    async def test_no_sessions_creates_draft_invoice(
        self, coordinator, client_actor, client_user, training_service, monday_window, booking_date, notifications
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert result.needs_payment is True
        assert result.appointment.status == AppointmentStatus.PENDING
        assert result.invoice.status == InvoiceStatus.DRAFT
        assert result.invoice.amount == Decimal("150.00")
        assert result.invoice.client_id == client_user.id
        assert result.appointment.invoice_id == result.invoice.id

        events = [c.args[0] for c in notifications.call_args_list]
        assert events == [notification_service.BOOKING_CREATED, notification_service.INVOICE_CREATED]

    async def test_free_service_confirms_without_invoice(
        self, coordinator, client_actor, free_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, free_service, at(booking_date, 9))

        assert result.needs_payment is False
        assert result.appointment.status == AppointmentStatus.CONFIRMED
        assert await _count(Invoice) == 0


class TestReserveConflicts:
    async def test_overlapping_request_rejected(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        with pytest.raises(SlotUnavailableError):
            await _reserve(coordinator, client_actor, training_service, at(booking_date, 9, 30))

        assert await _count(Appointment) == 1
        assert await _count(Invoice) == 1

    async def test_concurrent_identical_requests_one_wins(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=5)
        start = at(booking_date, 10)

        results = await asyncio.gather(
            *[_reserve(coordinator, client_actor, training_service, start) for _ in range(5)],
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert all(isinstance(f, SlotUnavailableError) for f in failures)
        assert await _count(Appointment) == 1
        assert await _remaining(account.id) == 4

    async def test_failure_after_debit_rolls_everything_back(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=2)

        with patch(
            "scheduling.transactions.reservation.booking_ledger.create_booking",
            new=AsyncMock(side_effect=SlotUnavailableError()),
        ):
            with pytest.raises(SlotUnavailableError):
                await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert await _remaining(account.id) == 2
        assert await _count(Appointment) == 0
        assert await _count(Invoice) == 0


class TestReserveValidation:
    async def test_past_start_rejected(self, coordinator, client_actor, training_service, monday_window, booking_date):
        with pytest.raises(ValidationError):
            await _reserve(coordinator, client_actor, training_service, at(booking_date - timedelta(days=28), 9))

    async def test_outside_availability_rejected_for_clients(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        with pytest.raises(ValidationError):
            await _reserve(coordinator, client_actor, training_service, at(booking_date, 11, 30))

    async def test_admin_may_book_outside_availability(
        self, coordinator, admin_actor, client_user, training_service, booking_date
    ):
        result = await _reserve(
            coordinator, admin_actor, training_service, at(booking_date, 18), client_id=client_user.id
        )
        assert result.appointment.client_id == client_user.id

    async def test_admin_must_name_client(self, coordinator, admin_actor, training_service, booking_date):
        with pytest.raises(ValidationError):
            await _reserve(coordinator, admin_actor, training_service, at(booking_date, 9))

    async def test_client_cannot_book_for_someone_else(
        self, coordinator, client_actor, other_client, training_service, monday_window, booking_date
    ):
        with pytest.raises(AuthError) as exc_info:
            await _reserve(
                coordinator, client_actor, training_service, at(booking_date, 9), client_id=other_client.id
            )
        assert exc_info.value.status_code == 403

    async def test_mobile_requires_address(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        with pytest.raises(ValidationError):
            await _reserve(
                coordinator, client_actor, training_service, at(booking_date, 9), location_type=LocationType.MOBILE
            )

        result = await _reserve(
            coordinator,
            client_actor,
            training_service,
            at(booking_date, 9),
            location_type=LocationType.MOBILE,
            location_address="200 E Randolph St, Chicago",
        )
        assert result.appointment.location_address == "200 E Randolph St, Chicago"

    async def test_duration_must_match_service(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        with pytest.raises(ValidationError):
            await _reserve(coordinator, client_actor, training_service, at(booking_date, 9), duration_minutes=30)

    async def test_inactive_service(self, coordinator, client_actor, training_service, monday_window, booking_date):
        async with get_async_session() as session:
            service = await session.get(Service, training_service.id)
            service.is_active = False
            await session.commit()

        with pytest.raises(NotFoundError):
            await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

    async def test_unknown_client(self, coordinator, training_service, monday_window, booking_date):
        ghost = Actor(id=uuid4(), role=UserRole.CLIENT)
        with pytest.raises(NotFoundError):
            await _reserve(coordinator, ghost, training_service, at(booking_date, 9))


# ============================================================================
# Rescheduling
# ============================================================================


class TestRescheduleAppointment:
    async def test_move_to_free_slot_releases_old_one(
        self, coordinator, client_actor, training_service, monday_window, booking_date, notifications
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        moved = await coordinator.reschedule_appointment(
            result.appointment.id, client_actor, scheduled_at=at(booking_date, 10)
        )

        assert moved.scheduled_at == at(booking_date, 10)
        assert moved.ends_at == at(booking_date, 11)
        assert moved.status == AppointmentStatus.PENDING
        assert notifications.call_args_list[-1].args[0] == notification_service.BOOKING_RESCHEDULED

        again = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        assert again.appointment.scheduled_at == at(booking_date, 9)

    async def test_overlap_with_another_appointment_rejected(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        first = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        await _reserve(coordinator, client_actor, training_service, at(booking_date, 10))

        with pytest.raises(SlotUnavailableError):
            await coordinator.reschedule_appointment(
                first.appointment.id, client_actor, scheduled_at=at(booking_date, 10, 30)
            )

        async with get_async_session() as session:
            unchanged = await session.get(Appointment, first.appointment.id)
        assert unchanged.scheduled_at == at(booking_date, 9)

    async def test_shift_over_its_own_time(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        moved = await coordinator.reschedule_appointment(
            result.appointment.id, client_actor, scheduled_at=at(booking_date, 9, 30)
        )

        assert moved.ends_at == at(booking_date, 10, 30)

    async def test_client_outside_availability_rejected(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        with pytest.raises(ValidationError):
            await coordinator.reschedule_appointment(
                result.appointment.id, client_actor, scheduled_at=at(booking_date, 11, 30)
            )

    async def test_past_start_rejected(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        with pytest.raises(ValidationError):
            await coordinator.reschedule_appointment(
                result.appointment.id, client_actor, scheduled_at=at(booking_date - timedelta(days=28), 9)
            )

    async def test_client_cannot_move_confirmed_but_admin_can(
        self, coordinator, client_actor, admin_actor, training_service, monday_window, make_account, booking_date
    ):
        await make_account(remaining=1)
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        assert result.appointment.status == AppointmentStatus.CONFIRMED

        with pytest.raises(InvalidStateError):
            await coordinator.reschedule_appointment(
                result.appointment.id, client_actor, scheduled_at=at(booking_date, 10)
            )

        moved = await coordinator.reschedule_appointment(
            result.appointment.id, admin_actor, scheduled_at=at(booking_date, 18)
        )
        assert moved.scheduled_at == at(booking_date, 18)

    async def test_other_client_forbidden(
        self, coordinator, client_actor, other_client, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        intruder = Actor(id=other_client.id, role=other_client.role)

        with pytest.raises(AuthError) as exc_info:
            await coordinator.reschedule_appointment(result.appointment.id, intruder, notes="mine now")
        assert exc_info.value.status_code == 403

    async def test_cancelled_cannot_be_edited(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        await coordinator.cancel_appointment(result.appointment.id, client_actor)

        with pytest.raises(ConflictError):
            await coordinator.reschedule_appointment(
                result.appointment.id, client_actor, scheduled_at=at(booking_date, 10)
            )

    async def test_location_and_notes_edit(
        self, coordinator, client_actor, training_service, monday_window, booking_date, notifications
    ):
        result = await _reserve(
            coordinator, client_actor, training_service, at(booking_date, 9), notes="Bring bands"
        )

        with pytest.raises(ValidationError):
            await coordinator.reschedule_appointment(
                result.appointment.id, client_actor, location_type=LocationType.MOBILE
            )

        edited = await coordinator.reschedule_appointment(
            result.appointment.id,
            client_actor,
            location_type=LocationType.MOBILE,
            location_address="200 E Randolph St, Chicago",
            notes=None,
        )

        assert edited.location_type == LocationType.MOBILE
        assert edited.location_address == "200 E Randolph St, Chicago"
        assert edited.notes is None
        assert edited.scheduled_at == at(booking_date, 9)
        events = [c.args[0] for c in notifications.call_args_list]
        assert notification_service.BOOKING_RESCHEDULED not in events


# ============================================================================
# Cancellation
# ============================================================================


class TestCancelAppointment:
    async def test_cancel_credits_session_back(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=3)
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        assert await _remaining(account.id) == 2

        cancelled = await coordinator.cancel_appointment(result.appointment.id, client_actor)

        assert cancelled.status == AppointmentStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert await _remaining(account.id) == 3

    async def test_cancel_twice_credits_once(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date, notifications
    ):
        account = await make_account(remaining=3)
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        await coordinator.cancel_appointment(result.appointment.id, client_actor)
        again = await coordinator.cancel_appointment(result.appointment.id, client_actor)

        assert again.status == AppointmentStatus.CANCELLED
        assert await _remaining(account.id) == 3
        cancel_events = [
            c for c in notifications.call_args_list if c.args[0] == notification_service.BOOKING_CANCELLED
        ]
        assert len(cancel_events) == 1

    async def test_cancel_voids_unpaid_invoice(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        await coordinator.cancel_appointment(result.appointment.id, client_actor)

        async with get_async_session() as session:
            invoice = await session.get(Invoice, result.invoice.id)
        assert invoice.status == InvoiceStatus.CANCELLED

    async def test_cancel_leaves_paid_invoice_alone(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        await coordinator.record_invoice_payment(result.invoice.id, Decimal("150.00"))

        await coordinator.cancel_appointment(result.appointment.id, client_actor)

        async with get_async_session() as session:
            invoice = await session.get(Invoice, result.invoice.id)
        assert invoice.status == InvoiceStatus.PAID

    async def test_cancelled_slot_can_be_rebooked(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        first = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))
        await coordinator.cancel_appointment(first.appointment.id, client_actor)

        second = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert second.appointment.id != first.appointment.id

    async def test_other_client_cannot_cancel(
        self, coordinator, client_actor, other_client, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        with pytest.raises(AuthError):
            await coordinator.cancel_appointment(
                result.appointment.id, Actor(id=other_client.id, role=other_client.role)
            )


# ============================================================================
# Payments & status changes
# ============================================================================


class TestPaymentsConfirmAppointments:
    async def test_full_direct_payment_confirms(
        self, coordinator, client_actor, training_service, monday_window, booking_date, notifications
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        await coordinator.record_invoice_payment(result.invoice.id, Decimal("75.00"), method="card")
        async with get_async_session() as session:
            assert (await session.get(Appointment, result.appointment.id)).status == AppointmentStatus.PENDING

        invoice = await coordinator.record_invoice_payment(result.invoice.id, Decimal("75.00"), method="card")

        assert invoice.status == InvoiceStatus.PAID
        async with get_async_session() as session:
            assert (await session.get(Appointment, result.appointment.id)).status == AppointmentStatus.CONFIRMED

        events = [c.args[0] for c in notifications.call_args_list]
        assert notification_service.INVOICE_PAID in events
        assert notification_service.BOOKING_CONFIRMED in events

    async def test_processor_payment_confirms_and_replay_is_safe(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        await coordinator.settle_processor_payment(
            result.invoice.id, external_payment_id="pi_123", external_reference="cs_123"
        )
        invoice = await coordinator.settle_processor_payment(
            result.invoice.id, external_payment_id="pi_123", external_reference="cs_123"
        )

        assert invoice.status == InvoiceStatus.PAID
        async with get_async_session() as session:
            assert (await session.get(Appointment, result.appointment.id)).status == AppointmentStatus.CONFIRMED

    async def test_cancel_invoice_releases_pending_appointment(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        invoice = await coordinator.cancel_invoice(result.invoice.id)

        assert invoice.status == InvoiceStatus.CANCELLED
        async with get_async_session() as session:
            assert (await session.get(Appointment, result.appointment.id)).status == AppointmentStatus.CANCELLED


class TestChangeStatus:
    async def test_admin_completes_confirmed(
        self, coordinator, client_actor, admin_actor, free_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, free_service, at(booking_date, 9))

        completed = await coordinator.change_status(result.appointment.id, AppointmentStatus.COMPLETED, admin_actor)

        assert completed.status == AppointmentStatus.COMPLETED

    async def test_completed_cannot_be_cancelled(
        self, coordinator, client_actor, admin_actor, free_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, free_service, at(booking_date, 9))
        await coordinator.change_status(result.appointment.id, AppointmentStatus.COMPLETED, admin_actor)

        with pytest.raises(ConflictError):
            await coordinator.change_status(result.appointment.id, AppointmentStatus.CANCELLED, admin_actor)

    async def test_clients_cannot_change_status(
        self, coordinator, client_actor, free_service, monday_window, booking_date
    ):
        result = await _reserve(coordinator, client_actor, free_service, at(booking_date, 9))

        with pytest.raises(AuthError):
            await coordinator.change_status(result.appointment.id, AppointmentStatus.COMPLETED, client_actor)


class TestPackagePurchase:
    async def test_purchase_then_book_with_session(
        self, coordinator, client_user, client_actor, training_package, training_service, monday_window, booking_date
    ):
        purchase = await coordinator.complete_package_purchase(
            client_user.id, training_package.id, external_reference="cs_pkg", external_payment_id="pi_pkg"
        )
        replay = await coordinator.complete_package_purchase(
            client_user.id, training_package.id, external_reference="cs_pkg", external_payment_id="pi_pkg"
        )

        assert purchase["created"] is True
        assert replay["created"] is False

        result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert result.needs_payment is False
        assert await _remaining(purchase["client_package"].id) == 4


class TestSerializationFailure:
    def test_detects_sqlstate_40001(self):
        orig = type("PgError", (Exception,), {"sqlstate": "40001"})()
        error = type("Wrapped", (), {"orig": orig})()
        assert is_serialization_failure(error)

    def test_other_errors_are_not_serialization_failures(self):
        orig = type("PgError", (Exception,), {"sqlstate": "23505"})()
        error = type("Wrapped", (), {"orig": orig})()
        assert not is_serialization_failure(error)

    async def test_reservation_retried_after_serialization_failure(
        self, coordinator, client_actor, training_service, monday_window, make_account, booking_date
    ):
        account = await make_account(remaining=2)
        real_create = booking_ledger.create_booking
        attempts = []

        async def conflicting_then_real(*args, **kwargs):
            attempts.append(kwargs["scheduled_at"])
            if len(attempts) == 1:
                raise _serialization_error()
            return await real_create(*args, **kwargs)

        with patch("scheduling.transactions.reservation.booking_ledger.create_booking", new=conflicting_then_real):
            result = await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert len(attempts) == 2
        assert result.needs_payment is False
        # The first attempt's debit was rolled back
        assert await _remaining(account.id) == 1

    async def test_slot_reported_taken_after_repeated_failures(
        self, coordinator, client_actor, training_service, monday_window, booking_date
    ):
        failing = AsyncMock(side_effect=_serialization_error())

        with patch("scheduling.transactions.reservation.booking_ledger.create_booking", new=failing):
            with pytest.raises(SlotUnavailableError):
                await _reserve(coordinator, client_actor, training_service, at(booking_date, 9))

        assert failing.await_count == SERIALIZATION_ATTEMPTS
        assert await _count(Appointment) == 0
        assert await _count(Invoice) == 0


# ============================================================================
# Staff-issued invoices
# ============================================================================


class TestCreateInvoice:
    async def test_concurrent_issuers_draw_distinct_numbers(self, coordinator, client_user):
        now = datetime(2031, 3, 1, 12, tzinfo=UTC)

        invoices = await asyncio.gather(
            *[coordinator.create_invoice(client_user.id, Decimal("25"), now=now) for _ in range(5)]
        )

        assert sorted(i.number for i in invoices) == [f"INV-2031-{n:03d}" for n in range(1, 6)]

    async def test_sent_invoice_notifies_client(self, coordinator, client_user, notifications):
        invoice = await coordinator.create_invoice(
            client_user.id, Decimal("80"), description="Assessment", status=InvoiceStatus.SENT
        )

        assert invoice.status == InvoiceStatus.SENT
        notifications.assert_called_once()
        assert notifications.call_args.args[:2] == (notification_service.INVOICE_SENT, client_user.email)

    async def test_unknown_client(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.create_invoice(uuid4(), Decimal("80"))
        assert await _count(Invoice) == 0
