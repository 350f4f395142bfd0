"""
Unit tests for scheduling/services/booking_ledger.py.

Tests coverage:
- create_booking(): write-time conflict detection, past start, initial status
- reschedule_booking(): ignores its own interval, rejects terminal appointments
- Appointment state machine (allowed and rejected transitions)
- cancel_booking(): idempotence and ownership
- list_bookings(): client scoping and filters
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from conftest import at
from database.models import AppointmentStatus, LocationType
from scheduling.errors import AuthError, ConflictError, NotFoundError, SlotUnavailableError, ValidationError
from scheduling.services import booking_ledger
from scheduling.services.booking_ledger import ALLOWED_TRANSITIONS, can_transition


async def _create(session, client_user, service, start, **kwargs):
    return await booking_ledger.create_booking(
        session,
        client_id=client_user.id,
        service_id=service.id,
        scheduled_at=start,
        duration_minutes=kwargs.pop("duration_minutes", 60),
        location_type=LocationType.VIRTUAL,
        **kwargs,
    )


class TestStateMachine:
    @pytest.mark.parametrize(
        "current, target",
        [
            (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED),
            (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED),
            (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED),
            (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED),
            (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED),
            (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[AppointmentStatus.CANCELLED] == frozenset()
        assert ALLOWED_TRANSITIONS[AppointmentStatus.COMPLETED] == frozenset()


class TestCreateBooking:
    async def test_creates_pending_with_end_time(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.ends_at - appointment.scheduled_at == timedelta(minutes=60)

    async def test_overlap_rejected(self, session, client_user, training_service, booking_date):
        await _create(session, client_user, training_service, at(booking_date, 9))

        with pytest.raises(SlotUnavailableError) as exc_info:
            await _create(session, client_user, training_service, at(booking_date, 9, 30))
        assert exc_info.value.status_code == 409

    async def test_adjacent_booking_allowed(self, session, client_user, training_service, booking_date):
        await _create(session, client_user, training_service, at(booking_date, 9))
        second = await _create(session, client_user, training_service, at(booking_date, 10))
        assert second.scheduled_at == at(booking_date, 10)

    async def test_cancelled_booking_frees_interval(
        self, session, client_user, client_actor, training_service, booking_date
    ):
        first = await _create(session, client_user, training_service, at(booking_date, 9))
        await booking_ledger.cancel_booking(session, first.id, client_actor)

        again = await _create(session, client_user, training_service, at(booking_date, 9))
        assert again.status == AppointmentStatus.PENDING

    async def test_past_start_rejected(self, session, client_user, training_service):
        with pytest.raises(ValidationError):
            await _create(session, client_user, training_service, datetime.now(UTC) - timedelta(hours=1))

    async def test_naive_start_rejected(self, session, client_user, training_service, booking_date):
        with pytest.raises(ValidationError):
            await _create(session, client_user, training_service, datetime(2099, 1, 5, 9))

    async def test_non_positive_duration(self, session, client_user, training_service, booking_date):
        with pytest.raises(ValidationError):
            await _create(session, client_user, training_service, at(booking_date, 9), duration_minutes=0)

    async def test_cannot_create_as_completed(self, session, client_user, training_service, booking_date):
        with pytest.raises(ValidationError):
            await _create(
                session, client_user, training_service, at(booking_date, 9), status=AppointmentStatus.COMPLETED
            )


class TestRescheduleBooking:
    async def test_overlap_with_own_interval_ignored(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        await booking_ledger.reschedule_booking(session, appointment, at(booking_date, 9, 30))

        assert appointment.scheduled_at == at(booking_date, 9, 30)
        assert appointment.ends_at == at(booking_date, 10, 30)

    async def test_overlap_with_other_booking_rejected(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))
        await _create(session, client_user, training_service, at(booking_date, 11))

        with pytest.raises(SlotUnavailableError):
            await booking_ledger.reschedule_booking(session, appointment, at(booking_date, 10, 30))
        assert appointment.scheduled_at == at(booking_date, 9)

    async def test_completed_cannot_move(self, session, client_user, training_service, booking_date):
        appointment = await _create(
            session, client_user, training_service, at(booking_date, 9), status=AppointmentStatus.CONFIRMED
        )
        await booking_ledger.transition(session, appointment, AppointmentStatus.COMPLETED)

        with pytest.raises(ConflictError):
            await booking_ledger.reschedule_booking(session, appointment, at(booking_date, 10))

    async def test_past_start_rejected(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        with pytest.raises(ValidationError):
            await booking_ledger.reschedule_booking(session, appointment, datetime(2020, 1, 6, 15, tzinfo=UTC))


class TestTransitions:
    async def test_confirm_then_complete(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        await booking_ledger.transition(session, appointment, AppointmentStatus.CONFIRMED)
        await booking_ledger.transition(session, appointment, AppointmentStatus.COMPLETED)

        assert appointment.status == AppointmentStatus.COMPLETED

    async def test_invalid_transition_raises_conflict(self, session, client_user, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        with pytest.raises(ConflictError):
            await booking_ledger.transition(session, appointment, AppointmentStatus.COMPLETED)
        assert appointment.status == AppointmentStatus.PENDING


class TestCancelBooking:
    async def test_cancel_is_idempotent(self, session, client_user, client_actor, training_service, booking_date):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))

        cancelled, changed = await booking_ledger.cancel_booking(session, appointment.id, client_actor)
        assert changed is True
        assert cancelled.status == AppointmentStatus.CANCELLED
        first_cancelled_at = cancelled.cancelled_at

        again, changed_again = await booking_ledger.cancel_booking(session, appointment.id, client_actor)
        assert changed_again is False
        assert again.cancelled_at == first_cancelled_at

    async def test_completed_cannot_be_cancelled(
        self, session, client_user, admin_actor, training_service, booking_date
    ):
        appointment = await _create(
            session, client_user, training_service, at(booking_date, 9), status=AppointmentStatus.CONFIRMED
        )
        await booking_ledger.transition(session, appointment, AppointmentStatus.COMPLETED)

        with pytest.raises(ConflictError):
            await booking_ledger.cancel_booking(session, appointment.id, admin_actor)

    async def test_other_client_forbidden(
        self, session, client_user, other_client, training_service, booking_date
    ):
        appointment = await _create(session, client_user, training_service, at(booking_date, 9))
        intruder = booking_ledger.Actor(id=other_client.id, role=other_client.role)

        with pytest.raises(AuthError) as exc_info:
            await booking_ledger.cancel_booking(session, appointment.id, intruder)
        assert exc_info.value.status_code == 403

    async def test_unknown_appointment(self, session, admin_actor):
        with pytest.raises(NotFoundError):
            await booking_ledger.cancel_booking(session, uuid4(), admin_actor)


class TestListBookings:
    async def test_client_sees_only_own(
        self, session, client_user, other_client, client_actor, admin_actor, training_service, booking_date
    ):
        await _create(session, client_user, training_service, at(booking_date, 9))
        await _create(session, other_client, training_service, at(booking_date, 10))

        own = await booking_ledger.list_bookings(session, client_actor)
        everyone = await booking_ledger.list_bookings(session, admin_actor)
        filtered = await booking_ledger.list_bookings(session, admin_actor, client_id=other_client.id)

        assert own["total"] == 1
        assert own["items"][0].client_id == client_user.id
        assert everyone["total"] == 2
        assert [a.client_id for a in filtered["items"]] == [other_client.id]

    async def test_status_filter_and_paging(self, session, client_user, admin_actor, training_service, booking_date):
        for hour in (9, 10, 11):
            await _create(session, client_user, training_service, at(booking_date, hour))

        page = await booking_ledger.list_bookings(
            session, admin_actor, status=AppointmentStatus.PENDING, limit=2, offset=0
        )

        assert page["total"] == 3
        assert len(page["items"]) == 2
        # newest first
        assert page["items"][0].scheduled_at == at(booking_date, 11)
