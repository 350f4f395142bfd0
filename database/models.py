"""
SQLAlchemy ORM models for the scheduling and billing tables.

This module defines:
- users: clients and admins (owned by the auth service, read here for roles)
- services / packages: the catalogue clients book and buy
- availability_windows / blocked_times: when the provider can be booked
- appointments: the booking ledger
- client_packages: per-client session accounts
- invoices / payments: billing ledger (invoice_sequences numbers invoices per year)
- business_info: the single business configuration record

All models use:
- UUID primary keys (auto-generated)
- timezone-aware UTC timestamps (see database.types.UTCDateTime)
- Proper indexes and constraints
"""

from datetime import datetime, time
from decimal import Decimal
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from database.types import UTCDateTime, utcnow

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _enum_column(enum_cls: type[PyEnum], name: str) -> SQLEnum:
    # values_callable stores "pending" rather than "PENDING"
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda x: [e.value for e in x],
        validate_strings=True,
    )


# ============================================================================
# Enums
# ============================================================================


class UserRole(str, PyEnum):
    ADMIN = "admin"
    CLIENT = "client"


class ServiceCategory(str, PyEnum):
    """Category shared by services and packages; a package only pays for its own category."""

    PERSONAL_TRAINING = "personal_training"
    GOLF_FITNESS = "golf_fitness"
    RECOVERY = "recovery"


class AppointmentStatus(str, PyEnum):
    """Appointment lifecycle status."""

    PENDING = "pending"        # Awaiting payment or staff confirmation
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def __str__(self):
        return self.value


class LocationType(str, PyEnum):
    MOBILE = "mobile"
    VIRTUAL = "virtual"


class InvoiceStatus(str, PyEnum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"

    def __str__(self):
        return self.value


class SessionAccountStatus(str, PyEnum):
    """Derived (never stored) status of a client package."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


# Statuses that occupy the provider's time axis
BLOCKING_APPOINTMENT_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.COMPLETED,
)


# ============================================================================
# Catalogue & Users
# ============================================================================


class User(Base):
    """
    User model - clients and admins.

    Rows are created by the auth service (magic-link sign-in); the scheduling
    core only reads them.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"), default=UserRole.CLIENT, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"


class Service(Base):
    """Service model - a bookable service with fixed duration and price."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    category: Mapped[ServiceCategory | None] = mapped_column(
        _enum_column(ServiceCategory, "service_category"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_service_duration_positive"),
        CheckConstraint("price >= 0", name="check_service_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}')>"


class Package(Base):
    """Package model - a bundle of pre-paid sessions for one service category."""

    __tablename__ = "packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_count: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    validity_days: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[ServiceCategory] = mapped_column(
        _enum_column(ServiceCategory, "service_category"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("session_count > 0", name="check_package_sessions_positive"),
        CheckConstraint("validity_days > 0", name="check_package_validity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Package(id={self.id}, name='{self.name}', category='{self.category.value}')>"


# ============================================================================
# Availability
# ============================================================================


class AvailabilityWindow(Base):
    """
    Recurring weekly availability window.

    day_of_week follows the 0 = Sunday ... 6 = Saturday convention.
    Times are wall-clock times in the business timezone. Windows are never
    deleted, only deactivated.
    """

    __tablename__ = "availability_windows"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="check_window_day_of_week"),
        CheckConstraint("start_time < end_time", name="check_window_start_before_end"),
    )

    def __repr__(self) -> str:
        return (
            f"<AvailabilityWindow(day={self.day_of_week}, "
            f"{self.start_time:%H:%M}-{self.end_time:%H:%M}, active={self.is_active})>"
        )


class BlockedTime(Base):
    """One-off unavailability (vacation, maintenance) that removes slots."""

    __tablename__ = "blocked_times"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("starts_at < ends_at", name="check_blocked_time_order"),
    )


# ============================================================================
# Transactional Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - the booking ledger.

    ends_at is stored (scheduled_at + duration_minutes) so overlap checks are
    plain column comparisons on every backend. Rows are never deleted;
    cancellation is a status.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    client_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("services.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus, "appointment_status"),
        default=AppointmentStatus.PENDING,
        nullable=False,
        index=True,
    )

    location_type: Mapped[LocationType] = mapped_column(
        _enum_column(LocationType, "location_type"), nullable=False
    )
    location_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # How the appointment is paid for: a debited session account or an invoice
    client_package_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("client_packages.id", ondelete="SET NULL"), nullable=True
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_appointment_duration_positive"),
        Index("idx_appointments_interval", "scheduled_at", "ends_at"),
    )

    @property
    def awaiting_payment(self) -> bool:
        return self.invoice_id is not None and self.status == AppointmentStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, scheduled_at={self.scheduled_at.isoformat()}, "
            f"status='{self.status.value}')>"
        )


class ClientPackage(Base):
    """
    Session account - a client's remaining sessions from one purchased package.

    remaining_sessions is only ever changed by an atomic UPDATE guarded by
    ``remaining_sessions > 0`` (debit) or a plain increment (credit).
    """

    __tablename__ = "client_packages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("packages.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    remaining_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    # Paid invoice of the purchase; makes processor callback replays detectable
    invoice_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, unique=True
    )
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)

    __table_args__ = (
        CheckConstraint("remaining_sessions >= 0", name="check_remaining_sessions_non_negative"),
    )

    def status_at(self, now: datetime) -> SessionAccountStatus:
        if self.expires_at is not None and self.expires_at <= now:
            return SessionAccountStatus.EXPIRED
        if self.remaining_sessions <= 0:
            return SessionAccountStatus.DEPLETED
        return SessionAccountStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<ClientPackage(id={self.id}, client_id={self.client_id}, "
            f"remaining={self.remaining_sessions})>"
        )


class Invoice(Base):
    """Invoice model - amount owed by a client; paid and cancelled are terminal."""

    __tablename__ = "invoices"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    # Display number, INV-<year>-<NNN>
    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    client_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        _enum_column(InvoiceStatus, "invoice_status"),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Payment-processor reference (checkout session id)
    external_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_invoice_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.number}', amount={self.amount}, status='{self.status.value}')>"


class InvoiceSequence(Base):
    """
    Per-year invoice counter.

    Incremented with a single UPDATE ... RETURNING, so concurrent transactions
    (in any process) queue on the row lock and never draw the same number.
    """

    __tablename__ = "invoice_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Payment(Base):
    """Payment model - append-only record of money applied to an invoice."""

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount_positive"),
    )


class BusinessInfo(Base):
    """
    Business configuration record.

    Exactly one row (id = 1). Read and written only through
    shared.business_settings.BusinessSettingsService.
    """

    __tablename__ = "business_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(50), nullable=False)
    zip: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="check_business_info_singleton"),
    )
