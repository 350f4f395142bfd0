"""
Seed data orchestration module.

Provides seed_all() to load the catalogue (services, packages, weekly
availability) and the business info record.
Can be run standalone: python -m database.seeds
"""

import asyncio

from database.connection import get_async_session
from database.seeds.catalogue import seed_catalogue
from shared.business_settings import get_business_settings_service


async def seed_all() -> None:
    """
    Execute all seed steps in dependency order.

    Order:
    1. catalogue - services, packages, availability windows
    2. business info - created with defaults on first read
    """
    async with get_async_session() as session:
        await seed_catalogue(session)
        await session.commit()

    await get_business_settings_service().get()


if __name__ == "__main__":
    asyncio.run(seed_all())
