"""
Admin API Endpoints.

Provides REST endpoints for:
- Weekly availability windows (list, create, update, deactivate)
- Business information settings
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.auth import CurrentAdmin
from api.models.admin import (
    AvailabilityWindowIn,
    AvailabilityWindowOut,
    AvailabilityWindowUpdate,
    BusinessInfoModel,
    BusinessInfoUpdate,
)
from api.models.common import ERROR_RESPONSES
from database.connection import get_async_session
from scheduling.services import availability_calendar
from shared.business_settings import get_business_settings_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], responses=ERROR_RESPONSES)


# =============================================================================
# Availability
# =============================================================================


@router.get("/availability", response_model=list[AvailabilityWindowOut])
async def list_availability(
    current_admin: CurrentAdmin,
    include_inactive: bool = Query(default=False, alias="includeInactive"),
):
    async with get_async_session() as session:
        return await availability_calendar.list_windows(session, include_inactive=include_inactive)


@router.post("/availability", response_model=AvailabilityWindowOut, status_code=status.HTTP_201_CREATED)
async def create_availability(request: AvailabilityWindowIn, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        window = await availability_calendar.create_window(
            session, request.day_of_week, request.start_time, request.end_time
        )
        await session.commit()
    return window


@router.put("/availability/{window_id}", response_model=AvailabilityWindowOut)
async def update_availability(
    window_id: UUID,
    request: AvailabilityWindowUpdate,
    current_admin: CurrentAdmin,
):
    async with get_async_session() as session:
        window = await availability_calendar.update_window(
            session,
            window_id,
            day_of_week=request.day_of_week,
            start_time=request.start_time,
            end_time=request.end_time,
            is_active=request.is_active,
        )
        await session.commit()
    return window


@router.delete("/availability/{window_id}", response_model=AvailabilityWindowOut)
async def deactivate_availability(window_id: UUID, current_admin: CurrentAdmin):
    """Deactivate (never delete) a window; existing bookings are unaffected."""
    async with get_async_session() as session:
        window = await availability_calendar.deactivate_window(session, window_id)
        await session.commit()
    return window


# =============================================================================
# Business Info
# =============================================================================


@router.get("/settings/business", response_model=BusinessInfoModel)
async def get_business_info(current_admin: CurrentAdmin):
    return await get_business_settings_service().get()


@router.put("/settings/business", response_model=BusinessInfoModel)
async def update_business_info(request: BusinessInfoUpdate, current_admin: CurrentAdmin):
    changes = request.model_dump(exclude_unset=True)
    info = await get_business_settings_service().update(changes)
    logger.info(f"Business info updated by {current_admin.id}")
    return info
