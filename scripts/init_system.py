"""
System initialization for the scheduling service.

- Creates any missing tables (metadata.create_all)
- Loads the catalogue seed data and the business info record
- Verifies database and Redis connectivity

Designed to be idempotent and safe to run multiple times.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import func, select, text  # noqa: E402

from database.connection import engine, get_async_session  # noqa: E402
from database.models import AvailabilityWindow, Base, Package, Service  # noqa: E402
from database.seeds import seed_all  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    logger.info("Creating missing tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✓ Tables ready")


async def check_database_connection() -> bool:
    try:
        logger.info("Checking database connection...")
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
        logger.info("✓ Database connection successful")
        return True
    except Exception as e:
        logger.error(f"✗ Database connection failed: {e}")
        return False


async def check_seed_data() -> dict[str, int]:
    row_counts = {}
    async with get_async_session() as session:
        for model in (Service, Package, AvailabilityWindow):
            count = await session.scalar(select(func.count()).select_from(model))
            row_counts[model.__tablename__] = int(count or 0)
            status_icon = "✓" if count else "⚠"
            logger.info(f"  {status_icon} Table '{model.__tablename__}': {count} rows")
    return row_counts


async def verify_redis_connection() -> bool:
    try:
        logger.info("Checking Redis connection...")
        from shared.redis_client import get_redis_client

        await get_redis_client().ping()
        logger.info("✓ Redis connection successful")
        return True
    except Exception as e:
        logger.error(f"✗ Redis connection failed: {e}")
        return False


async def main() -> None:
    """Main entry point for system initialization."""
    if not await check_database_connection():
        sys.exit(1)

    await create_tables()
    await seed_all()
    row_counts = await check_seed_data()
    redis_ok = await verify_redis_connection()

    success = redis_ok and all(row_counts.values())
    logger.info("✓ SYSTEM INITIALIZED" if success else "✗ SYSTEM INITIALIZATION INCOMPLETE")
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    asyncio.run(main())
