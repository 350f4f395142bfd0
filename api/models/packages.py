"""Pydantic models for client session accounts."""

from datetime import datetime
from uuid import UUID

from api.models.common import CamelModel
from database.models import ServiceCategory, SessionAccountStatus


class PackageBalanceOut(CamelModel):
    id: UUID
    package_id: UUID
    name: str
    description: str | None = None
    category: ServiceCategory
    sessions_used: int
    sessions_remaining: int
    sessions_total: int
    purchased_at: datetime
    expires_at: datetime | None = None
    status: SessionAccountStatus


class ClientPackagesResponse(CamelModel):
    active: list[PackageBalanceOut]
    inactive: list[PackageBalanceOut]
    all: list[PackageBalanceOut]
