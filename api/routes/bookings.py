"""
Booking API Endpoints.

- GET    /api/bookings/availability  - bookable slots for a date and service
- POST   /api/bookings               - reserve a slot (session debit or invoice)
- GET    /api/bookings               - list appointments (own, or any for admins)
- GET    /api/bookings/{id}          - one appointment
- PATCH  /api/bookings/{id}          - reschedule, edit location / notes
- PATCH  /api/bookings/{id}/status   - staff confirm / complete / cancel
- DELETE /api/bookings/{id}          - cancel (idempotent)
"""

import logging
from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.auth import CurrentAdmin, CurrentUser
from api.models.bookings import (
    AppointmentOut,
    AvailabilityResponse,
    BookingListResponse,
    BookingResponse,
    CreateBookingRequest,
    RescheduleRequest,
    SlotOut,
    StatusUpdateRequest,
    service_summary,
)
from api.models.common import ERROR_RESPONSES
from api.models.invoices import InvoiceOut
from database.connection import get_async_session
from database.models import AppointmentStatus, Service
from scheduling.errors import NotFoundError, ValidationError
from scheduling.services import booking_ledger
from scheduling.services.slot_generator import generate_slots
from scheduling.transactions.reservation import get_reservation_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"], responses=ERROR_RESPONSES)


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    current_user: CurrentUser,
    date_: date = Query(alias="date"),
    service_id: UUID = Query(alias="serviceId"),
):
    """Bookable slots for one date (business timezone) and service."""
    async with get_async_session() as session:
        service = await session.get(Service, service_id)
        if service is None or not service.is_active:
            raise NotFoundError("Service not found or inactive", details={"service_id": str(service_id)})

        slots = await generate_slots(session, date_, service.duration_minutes)

    return AvailabilityResponse(
        date=date_,
        service=service_summary(service),
        slots=[SlotOut.from_slot(slot) for slot in slots],
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(request: CreateBookingRequest, current_user: CurrentUser):
    """
    Reserve a slot.

    Returns needsPayment=true together with the draft invoice when the client
    has no usable package session for the service.
    """
    result = await get_reservation_coordinator().reserve_appointment(
        actor=current_user,
        client_id=request.client_id,
        service_id=request.service_id,
        scheduled_at=request.scheduled_at,
        duration_minutes=request.duration_mins,
        location_type=request.location_type,
        location_address=request.location_address,
        notes=request.notes,
    )

    return BookingResponse(
        appointment=AppointmentOut.from_appointment(result.appointment),
        needs_payment=result.needs_payment,
        invoice=InvoiceOut.from_invoice(result.invoice) if result.invoice else None,
    )


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    current_user: CurrentUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status_: AppointmentStatus | None = Query(default=None, alias="status"),
    client_id: UUID | None = Query(default=None, alias="clientId"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
):
    for name, value in (("startDate", start_date), ("endDate", end_date)):
        if value is not None and value.tzinfo is None:
            raise ValidationError(f"{name} must include a timezone offset")

    async with get_async_session() as session:
        result = await booking_ledger.list_bookings(
            session,
            current_user,
            client_id=client_id,
            status=status_,
            start=start_date,
            end=end_date,
            limit=limit,
            offset=(page - 1) * limit,
        )

    return BookingListResponse(
        data=[AppointmentOut.from_appointment(a) for a in result["items"]],
        total=result["total"],
        page=page,
        limit=limit,
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_booking(appointment_id: UUID, current_user: CurrentUser):
    async with get_async_session() as session:
        appointment = await booking_ledger.get_booking(session, appointment_id)
        booking_ledger.ensure_can_access(appointment, current_user)
    return AppointmentOut.from_appointment(appointment)


@router.patch("/{appointment_id}", response_model=AppointmentOut)
async def update_booking(appointment_id: UUID, request: RescheduleRequest, current_user: CurrentUser):
    """
    Reschedule and/or edit location and notes.

    Clients may change their own pending appointments; admins any pending or
    confirmed one.
    """
    appointment = await get_reservation_coordinator().reschedule_appointment(
        appointment_id, current_user, **request.model_dump(exclude_unset=True)
    )
    return AppointmentOut.from_appointment(appointment)


@router.patch("/{appointment_id}/status", response_model=AppointmentOut)
async def update_booking_status(
    appointment_id: UUID,
    request: StatusUpdateRequest,
    current_admin: CurrentAdmin,
):
    appointment = await get_reservation_coordinator().change_status(
        appointment_id, request.status, current_admin
    )
    return AppointmentOut.from_appointment(appointment)


@router.delete("/{appointment_id}", response_model=AppointmentOut)
async def cancel_booking(appointment_id: UUID, current_user: CurrentUser):
    """Cancel; repeating the call on a cancelled appointment returns it unchanged."""
    appointment = await get_reservation_coordinator().cancel_appointment(appointment_id, current_user)
    return AppointmentOut.from_appointment(appointment)
