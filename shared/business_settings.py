"""
Business Settings Service.

Owns the single business_info record (name, contact details, address shown on
invoices and emails). Reads go through an in-process cache guarded by an
asyncio.Lock; updates write the row and refresh the cache in the same step, so
concurrent readers never see a half-applied update.

Usage:
    from shared.business_settings import get_business_settings_service

    service = get_business_settings_service()
    info = await service.get()
    await service.update({"phone": "(312) 555-0199"})
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, AsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_async_session
from database.models import BusinessInfo
from scheduling.errors import ValidationError

logger = logging.getLogger(__name__)

BUSINESS_INFO_ID = 1

DEFAULT_BUSINESS_INFO: dict[str, Any] = {
    "name": "Peak Performance Lab",
    "email": "contact@peakperformancelab.com",
    "phone": "(312) 555-0100",
    "address": "123 Fitness Avenue",
    "city": "Chicago",
    "state": "IL",
    "zip": "60601",
    "description": (
        "Mobile fitness and wellness practice offering personal training, "
        "golf fitness, and therapeutic services."
    ),
    "website": "https://peakperformancelab.com",
}

EDITABLE_FIELDS = tuple(DEFAULT_BUSINESS_INFO)
REQUIRED_FIELDS = ("name", "email", "phone", "address", "city", "state", "zip")


def _as_dict(info: BusinessInfo) -> dict[str, Any]:
    return {field: getattr(info, field) for field in EDITABLE_FIELDS}


class BusinessSettingsService:
    """Cached access to the business_info record."""

    def __init__(self, session_factory: Callable[[], AsyncContextManager[AsyncSession]] = get_async_session):
        self._session_factory = session_factory
        self._cache: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def _load_or_create(self, session: AsyncSession) -> BusinessInfo:
        info = await session.get(BusinessInfo, BUSINESS_INFO_ID)
        if info is None:
            info = BusinessInfo(id=BUSINESS_INFO_ID, **DEFAULT_BUSINESS_INFO)
            session.add(info)
            await session.flush()
            logger.info("Business info initialized with defaults")
        return info

    async def get(self) -> dict[str, Any]:
        """Return a copy of the business info, loading it on first use."""
        async with self._lock:
            if self._cache is None:
                async with self._session_factory() as session:
                    info = await self._load_or_create(session)
                    await session.commit()
                    self._cache = _as_dict(info)
            return dict(self._cache)

    async def update(self, changes: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a partial update.

        Raises:
            ValidationError: Unknown field, or a required field set empty
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown business info fields: {', '.join(sorted(unknown))}")
        for field in REQUIRED_FIELDS:
            if field in changes and not (changes[field] or "").strip():
                raise ValidationError(f"{field} cannot be empty")

        async with self._lock:
            async with self._session_factory() as session:
                info = await self._load_or_create(session)
                for field, value in changes.items():
                    # Optional fields store "" as NULL
                    if field in ("description", "website") and not value:
                        value = None
                    setattr(info, field, value)
                await session.commit()
                self._cache = _as_dict(info)

        logger.info(f"Business info updated: {', '.join(sorted(changes)) or 'no fields'}")
        return dict(self._cache)

    def invalidate(self) -> None:
        self._cache = None


_service: BusinessSettingsService | None = None


def get_business_settings_service() -> BusinessSettingsService:
    global _service
    if _service is None:
        _service = BusinessSettingsService()
    return _service
