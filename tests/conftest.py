"""
Test configuration and fixtures.

This module sets up test environment and provides shared fixtures for all tests.
"""

import os
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

# In-memory SQLite instead of PostgreSQL, and a known JWT secret.
# Must be set BEFORE any imports of database.connection or shared.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["JWT_SECRET"] = "test-secret-that-is-at-least-32-characters-long"
os.environ["TIMEZONE"] = "America/Chicago"
os.environ["SLOT_GRANULARITY_MINUTES"] = "30"
os.environ["MIN_LEAD_TIME_MINUTES"] = "0"

BUSINESS_TZ = ZoneInfo("America/Chicago")


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Wall-clock time in the business timezone."""
    return datetime.combine(day, time(hour, minute), tzinfo=BUSINESS_TZ)


@pytest.fixture
def booking_date() -> date:
    """A Monday at least one week ahead, so every slot on it is in the future."""
    today = date.today()
    return today + timedelta(days=(7 - today.weekday()) % 7 + 7)


@pytest.fixture(scope="function", autouse=True)
async def database():
    """
    Create all tables before each test and drop them afterwards.

    The engine is disposed after each test so the in-memory database and its
    single pooled connection never leak between tests.
    """
    from database.connection import engine
    from database.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function", autouse=True)
def reset_singletons():
    """Fresh coordinator and settings cache per test (their asyncio locks are per loop)."""
    import shared.business_settings as business_settings
    from scheduling.transactions.reservation import get_reservation_coordinator

    get_reservation_coordinator.cache_clear()
    business_settings._service = None
    yield
    get_reservation_coordinator.cache_clear()
    business_settings._service = None


@pytest.fixture(scope="function", autouse=True)
def notifications():
    """Capture notification dispatches instead of publishing to Redis."""
    with patch("scheduling.services.notification_service.dispatch", new=MagicMock()) as mock_dispatch:
        yield mock_dispatch


@pytest.fixture
async def session():
    from database.connection import get_async_session

    async with get_async_session() as session:
        yield session


# ============================================================================
# Catalogue & Users
# ============================================================================


async def _add(obj):
    from database.connection import get_async_session

    async with get_async_session() as session:
        session.add(obj)
        await session.commit()
    return obj


@pytest.fixture
async def client_user():
    from database.models import User, UserRole

    return await _add(User(email="alex@example.com", name="Alex Client", role=UserRole.CLIENT))


@pytest.fixture
async def other_client():
    from database.models import User, UserRole

    return await _add(User(email="sam@example.com", name="Sam Client", role=UserRole.CLIENT))


@pytest.fixture
async def admin_user():
    from database.models import User, UserRole

    return await _add(User(email="coach@example.com", name="Coach Admin", role=UserRole.ADMIN))


@pytest.fixture
async def training_service():
    """60-minute personal training session, 150.00."""
    from database.models import Service, ServiceCategory

    return await _add(
        Service(
            name="Personal Training Session",
            duration_minutes=60,
            price=Decimal("150.00"),
            category=ServiceCategory.PERSONAL_TRAINING,
        )
    )


@pytest.fixture
async def free_service():
    from database.models import Service

    return await _add(
        Service(name="Intro Consultation", duration_minutes=30, price=Decimal("0.00"), category=None)
    )


@pytest.fixture
async def training_package():
    """Five personal training sessions valid for 90 days."""
    from database.models import Package, ServiceCategory

    return await _add(
        Package(
            name="5 Session Pack",
            session_count=5,
            price=Decimal("650.00"),
            validity_days=90,
            category=ServiceCategory.PERSONAL_TRAINING,
        )
    )


@pytest.fixture
async def monday_window():
    """Monday 09:00-12:00."""
    from database.models import AvailabilityWindow

    return await _add(AvailabilityWindow(day_of_week=1, start_time=time(9), end_time=time(12)))


@pytest.fixture
def make_account(client_user, training_package):
    """Factory for session accounts owned by client_user."""
    from database.models import ClientPackage
    from database.types import utcnow

    async def _make(remaining: int = 5, expires_in_days: int | None = 90, purchased_days_ago: int = 1,
                    client_id=None, package_id=None):
        now = utcnow()
        return await _add(
            ClientPackage(
                client_id=client_id or client_user.id,
                package_id=package_id or training_package.id,
                remaining_sessions=remaining,
                purchased_at=now - timedelta(days=purchased_days_ago),
                expires_at=None if expires_in_days is None else now + timedelta(days=expires_in_days),
            )
        )

    return _make


# ============================================================================
# Actors & HTTP
# ============================================================================


@pytest.fixture
def client_actor(client_user):
    from scheduling.services.booking_ledger import Actor

    return Actor(id=client_user.id, role=client_user.role)


@pytest.fixture
def admin_actor(admin_user):
    from scheduling.services.booking_ledger import Actor

    return Actor(id=admin_user.id, role=admin_user.role)


def auth_headers(user) -> dict[str, str]:
    from api.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
async def api():
    """HTTPX AsyncClient bound to the FastAPI app (no network, same event loop)."""
    from httpx import ASGITransport, AsyncClient

    from api.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
