"""Pydantic models for the booking endpoints."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field, field_validator

from api.models.common import CamelModel
from api.models.invoices import InvoiceOut
from database.models import Appointment, AppointmentStatus, LocationType, Service, ServiceCategory
from scheduling.services.slot_generator import TimeSlot


class SlotOut(CamelModel):
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> "SlotOut":
        return cls(start_time=slot.start, end_time=slot.end)


class ServiceSummary(CamelModel):
    id: UUID
    name: str
    duration_minutes: int
    price: Decimal
    category: ServiceCategory | None = None


class AvailabilityResponse(CamelModel):
    date: date
    service: ServiceSummary
    slots: list[SlotOut]


class CreateBookingRequest(CamelModel):
    client_id: UUID | None = None
    service_id: UUID
    scheduled_at: datetime
    duration_mins: int | None = Field(default=None, gt=0)
    location_type: LocationType
    location_address: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("scheduled_at")
    @classmethod
    def require_offset(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("scheduledAt must include a timezone offset")
        return v


class RescheduleRequest(CamelModel):
    """Only the fields present in the body are changed; an explicit null clears address or notes."""

    scheduled_at: datetime | None = None
    location_type: LocationType | None = None
    location_address: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("scheduled_at")
    @classmethod
    def require_offset(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            raise ValueError("scheduledAt must include a timezone offset")
        return v


class AppointmentOut(CamelModel):
    id: UUID
    client_id: UUID
    service_id: UUID
    scheduled_at: datetime
    ends_at: datetime
    duration_mins: int
    status: AppointmentStatus
    location_type: LocationType
    location_address: str | None = None
    notes: str | None = None
    client_package_id: UUID | None = None
    invoice_id: UUID | None = None
    awaiting_payment: bool = False
    cancelled_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentOut":
        return cls(
            id=appointment.id,
            client_id=appointment.client_id,
            service_id=appointment.service_id,
            scheduled_at=appointment.scheduled_at,
            ends_at=appointment.ends_at,
            duration_mins=appointment.duration_minutes,
            status=appointment.status,
            location_type=appointment.location_type,
            location_address=appointment.location_address,
            notes=appointment.notes,
            client_package_id=appointment.client_package_id,
            invoice_id=appointment.invoice_id,
            awaiting_payment=appointment.awaiting_payment,
            cancelled_at=appointment.cancelled_at,
            created_at=appointment.created_at,
        )


class BookingResponse(CamelModel):
    appointment: AppointmentOut
    needs_payment: bool
    invoice: InvoiceOut | None = None


class BookingListResponse(CamelModel):
    data: list[AppointmentOut]
    total: int
    page: int
    limit: int


class StatusUpdateRequest(CamelModel):
    status: AppointmentStatus


def service_summary(service: Service) -> ServiceSummary:
    return ServiceSummary.model_validate(service)
