"""Pydantic models for the service and package catalogue endpoints."""

from decimal import Decimal
from uuid import UUID

from pydantic import Field

from api.models.common import CamelModel
from database.models import Service, ServiceCategory


class ServiceIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    duration_mins: int = Field(gt=0)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    category: ServiceCategory | None = None


class ServiceUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    duration_mins: int | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    category: ServiceCategory | None = None
    is_active: bool | None = None

    def changes(self) -> dict:
        """Fields present in the request body, keyed by model attribute."""
        changes = self.model_dump(exclude_unset=True)
        if "duration_mins" in changes:
            changes["duration_minutes"] = changes.pop("duration_mins")
        return changes


class ServiceOut(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    duration_mins: int
    price: Decimal
    category: ServiceCategory | None = None
    is_active: bool

    @classmethod
    def from_service(cls, service: Service) -> "ServiceOut":
        return cls(
            id=service.id,
            name=service.name,
            description=service.description,
            duration_mins=service.duration_minutes,
            price=service.price,
            category=service.category,
            is_active=service.is_active,
        )


class PackageIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    session_count: int = Field(gt=0)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    validity_days: int = Field(gt=0)
    category: ServiceCategory


class PackageUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    session_count: int | None = Field(default=None, gt=0)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    validity_days: int | None = Field(default=None, gt=0)
    category: ServiceCategory | None = None
    is_active: bool | None = None


class PackageOut(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    session_count: int
    price: Decimal
    validity_days: int
    category: ServiceCategory
    is_active: bool
