"""
Service catalogue endpoints.

- GET    /api/services        - active services (admins: includeInactive)
- GET    /api/services/{id}   - one service
- POST   /api/services        - create (admin)
- PATCH  /api/services/{id}   - partial update (admin)
- DELETE /api/services/{id}   - deactivate (admin)
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.auth import CurrentAdmin, CurrentUser
from api.models.catalogue import ServiceIn, ServiceOut, ServiceUpdate
from api.models.common import ERROR_RESPONSES
from database.connection import get_async_session
from scheduling.services import catalogue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/services", tags=["services"], responses=ERROR_RESPONSES)


@router.get("", response_model=list[ServiceOut])
async def list_services(
    current_user: CurrentUser,
    include_inactive: bool = Query(default=False, alias="includeInactive"),
):
    """Clients always get the active catalogue; includeInactive is honoured for admins only."""
    async with get_async_session() as session:
        services = await catalogue.list_services(
            session, include_inactive=include_inactive and current_user.is_admin
        )
    return [ServiceOut.from_service(service) for service in services]


@router.get("/{service_id}", response_model=ServiceOut)
async def get_service(service_id: UUID, current_user: CurrentUser):
    async with get_async_session() as session:
        service = await catalogue.get_service(session, service_id, include_inactive=current_user.is_admin)
    return ServiceOut.from_service(service)


@router.post("", response_model=ServiceOut, status_code=status.HTTP_201_CREATED)
async def create_service(request: ServiceIn, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        service = await catalogue.create_service(
            session,
            name=request.name,
            description=request.description,
            duration_minutes=request.duration_mins,
            price=request.price,
            category=request.category,
        )
        await session.commit()
    return ServiceOut.from_service(service)


@router.patch("/{service_id}", response_model=ServiceOut)
async def update_service(service_id: UUID, request: ServiceUpdate, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        service = await catalogue.update_service(session, service_id, request.changes())
        await session.commit()
    return ServiceOut.from_service(service)


@router.delete("/{service_id}", response_model=ServiceOut)
async def deactivate_service(service_id: UUID, current_admin: CurrentAdmin):
    """Deactivate (never delete); booked appointments are unaffected."""
    async with get_async_session() as session:
        service = await catalogue.deactivate_service(session, service_id)
        await session.commit()
    logger.info(f"Service {service_id} deactivated by {current_admin.id}")
    return ServiceOut.from_service(service)
