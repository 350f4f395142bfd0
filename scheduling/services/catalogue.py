"""
Catalogue - bookable services and pre-paid session packages.

Both are deactivated, never deleted: appointments, invoices and session
accounts keep pointing at them. Inactive entries cannot be booked or bought
and are hidden from clients.

Usage:
    from scheduling.services import catalogue

    async with get_async_session() as session:
        services = await catalogue.list_services(session)
"""

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Package, Service, ServiceCategory
from scheduling.errors import NotFoundError, ValidationError
from scheduling.services.session_account import get_package

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

SERVICE_FIELDS = frozenset({"name", "description", "duration_minutes", "price", "category", "is_active"})
PACKAGE_FIELDS = frozenset(
    {"name", "description", "session_count", "price", "validity_days", "category", "is_active"}
)


def _price(value: Decimal | int | str) -> Decimal:
    price = Decimal(str(value)).quantize(CENT)
    if price < 0:
        raise ValidationError("Price cannot be negative", details={"price": str(value)})
    return price


def _positive(field: str, value: int | None) -> int:
    if value is None or value <= 0:
        raise ValidationError(f"{field} must be positive", details={field: value})
    return value


def _name(value: str | None) -> str:
    if not (value or "").strip():
        raise ValidationError("Name is required")
    return value.strip()


def _apply(record: Service | Package, changes: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    for field, value in changes.items():
        if field == "name":
            value = _name(value)
        elif field == "price":
            value = _price(value)
        elif field in ("duration_minutes", "session_count", "validity_days"):
            value = _positive(field, value)
        elif field == "category" and value is None and isinstance(record, Package):
            raise ValidationError("Packages must have a category")
        elif field == "is_active" and value is None:
            continue
        setattr(record, field, value)


# =============================================================================
# Services
# =============================================================================


async def list_services(session: AsyncSession, include_inactive: bool = False) -> list[Service]:
    stmt = select(Service).order_by(Service.name)
    if not include_inactive:
        stmt = stmt.where(Service.is_active.is_(True))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_service(session: AsyncSession, service_id: UUID, *, include_inactive: bool = False) -> Service:
    service = await session.get(Service, service_id)
    if service is None or not (service.is_active or include_inactive):
        raise NotFoundError("Service not found", details={"service_id": str(service_id)})
    return service


async def create_service(
    session: AsyncSession,
    *,
    name: str,
    duration_minutes: int,
    price: Decimal,
    description: str | None = None,
    category: ServiceCategory | None = None,
) -> Service:
    """
    Create an active service.

    Raises:
        ValidationError: Empty name, non-positive duration or negative price
    """
    service = Service(
        name=_name(name),
        description=description,
        duration_minutes=_positive("duration_minutes", duration_minutes),
        price=_price(price),
        category=category,
        is_active=True,
    )
    session.add(service)
    await session.flush()

    logger.info(f"Service created: {service.name} ({service.duration_minutes}min, {service.price})")
    return service


async def update_service(session: AsyncSession, service_id: UUID, changes: dict[str, Any]) -> Service:
    """Apply a partial update. Existing appointments keep their booked duration."""
    service = await get_service(session, service_id, include_inactive=True)
    _apply(service, changes, SERVICE_FIELDS)
    await session.flush()
    logger.info(f"Service updated: {service!r} ({', '.join(sorted(changes))})")
    return service


async def deactivate_service(session: AsyncSession, service_id: UUID) -> Service:
    service = await get_service(session, service_id, include_inactive=True)
    service.is_active = False
    await session.flush()
    logger.info(f"Service deactivated: {service_id}")
    return service


# =============================================================================
# Packages
# =============================================================================


async def list_packages(session: AsyncSession, include_inactive: bool = False) -> list[Package]:
    stmt = select(Package).order_by(Package.price, Package.name)
    if not include_inactive:
        stmt = stmt.where(Package.is_active.is_(True))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_package(
    session: AsyncSession,
    *,
    name: str,
    session_count: int,
    price: Decimal,
    validity_days: int,
    category: ServiceCategory,
    description: str | None = None,
) -> Package:
    """
    Create an active package.

    Raises:
        ValidationError: Empty name, non-positive count or validity, or negative price
    """
    package = Package(
        name=_name(name),
        description=description,
        session_count=_positive("session_count", session_count),
        price=_price(price),
        validity_days=_positive("validity_days", validity_days),
        category=category,
        is_active=True,
    )
    session.add(package)
    await session.flush()

    logger.info(
        f"Package created: {package.name} ({package.session_count} x {package.category.value}, {package.price})"
    )
    return package


async def update_package(session: AsyncSession, package_id: UUID, changes: dict[str, Any]) -> Package:
    """Apply a partial update. Session accounts already sold keep their balance and expiry."""
    package = await get_package(session, package_id)
    _apply(package, changes, PACKAGE_FIELDS)
    await session.flush()
    logger.info(f"Package updated: {package!r} ({', '.join(sorted(changes))})")
    return package


async def deactivate_package(session: AsyncSession, package_id: UUID) -> Package:
    package = await get_package(session, package_id)
    package.is_active = False
    await session.flush()
    logger.info(f"Package deactivated: {package_id}")
    return package
