"""
Seed data for the catalogue: services, packages and weekly availability.

Idempotent: rows that already exist (matched by name, or by day and times for
availability) are skipped. Can be run standalone: python -m database.seeds.catalogue
"""

import asyncio
import logging
from datetime import time
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_async_session
from database.models import AvailabilityWindow, Package, Service, ServiceCategory

logger = logging.getLogger(__name__)

SERVICES: list[dict[str, Any]] = [
    {
        "name": "Personal Training",
        "description": "One-on-one personal training session tailored to your fitness goals.",
        "duration_minutes": 60,
        "price": Decimal("85.00"),
        "category": ServiceCategory.PERSONAL_TRAINING,
    },
    {
        "name": "Golf Fitness",
        "description": "Specialized fitness training to improve your golf performance.",
        "duration_minutes": 60,
        "price": Decimal("95.00"),
        "category": ServiceCategory.GOLF_FITNESS,
    },
    {
        "name": "Dry Needling",
        "description": "Therapeutic dry needling treatment for muscle tension and pain relief.",
        "duration_minutes": 45,
        "price": Decimal("75.00"),
        "category": ServiceCategory.RECOVERY,
    },
    {
        "name": "IASTM",
        "description": "Instrument-Assisted Soft Tissue Mobilization for muscle recovery.",
        "duration_minutes": 30,
        "price": Decimal("65.00"),
        "category": ServiceCategory.RECOVERY,
    },
    {
        "name": "Cupping Therapy",
        "description": "Traditional cupping therapy for improved circulation and muscle relief.",
        "duration_minutes": 30,
        "price": Decimal("55.00"),
        "category": ServiceCategory.RECOVERY,
    },
    {
        "name": "Assisted Stretching",
        "description": "Professional assisted stretching session for improved flexibility.",
        "duration_minutes": 30,
        "price": Decimal("50.00"),
        "category": ServiceCategory.RECOVERY,
    },
]

PACKAGES: list[dict[str, Any]] = [
    {
        "name": "5 Session Pack",
        "description": "Package of 5 training sessions at a discounted rate.",
        "session_count": 5,
        "price": Decimal("375.00"),
        "validity_days": 90,
        "category": ServiceCategory.PERSONAL_TRAINING,
    },
    {
        "name": "10 Session Pack",
        "description": "Package of 10 training sessions with significant savings.",
        "session_count": 10,
        "price": Decimal("700.00"),
        "validity_days": 180,
        "category": ServiceCategory.PERSONAL_TRAINING,
    },
    {
        "name": "Monthly Unlimited",
        "description": "Unlimited sessions for one month - best value for committed clients.",
        "session_count": 30,
        "price": Decimal("599.00"),
        "validity_days": 30,
        "category": ServiceCategory.PERSONAL_TRAINING,
    },
]

# day_of_week: 0=Sunday ... 6=Saturday; Sunday closed (no window)
AVAILABILITY: list[tuple[int, time, time]] = [
    *[(day, time(8, 0), time(18, 0)) for day in range(1, 6)],
    (6, time(9, 0), time(14, 0)),
]


async def seed_catalogue(session: AsyncSession) -> dict[str, int]:
    """Insert missing catalogue rows. Returns the number created per table."""
    created = {"services": 0, "packages": 0, "availability_windows": 0}

    existing_services = set((await session.execute(select(Service.name))).scalars().all())
    for data in SERVICES:
        if data["name"] in existing_services:
            logger.info(f"Service '{data['name']}' already exists, skipping")
            continue
        session.add(Service(**data))
        created["services"] += 1

    existing_packages = set((await session.execute(select(Package.name))).scalars().all())
    for data in PACKAGES:
        if data["name"] in existing_packages:
            logger.info(f"Package '{data['name']}' already exists, skipping")
            continue
        session.add(Package(**data))
        created["packages"] += 1

    existing_windows = set(
        (
            await session.execute(
                select(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time, AvailabilityWindow.end_time)
            )
        ).tuples().all()
    )
    for day, start, end in AVAILABILITY:
        if (day, start, end) in existing_windows:
            continue
        session.add(AvailabilityWindow(day_of_week=day, start_time=start, end_time=end, is_active=True))
        created["availability_windows"] += 1

    await session.flush()
    logger.info(f"Catalogue seed completed: {created}")
    return created


async def main() -> None:
    async with get_async_session() as session:
        await seed_catalogue(session)
        await session.commit()


if __name__ == "__main__":
    asyncio.run(main())
