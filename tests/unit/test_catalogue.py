"""Unit tests for scheduling/services/catalogue.py."""

from decimal import Decimal
from uuid import uuid4

import pytest

from database.models import ServiceCategory
from scheduling.errors import NotFoundError, ValidationError
from scheduling.services import catalogue


class TestServices:
    async def test_list_hides_inactive_unless_asked(self, session, training_service, free_service):
        await catalogue.deactivate_service(session, free_service.id)
        await session.commit()

        active = await catalogue.list_services(session)
        everything = await catalogue.list_services(session, include_inactive=True)

        assert [s.id for s in active] == [training_service.id]
        assert {s.id for s in everything} == {training_service.id, free_service.id}

    async def test_create_normalizes_price(self, session):
        service = await catalogue.create_service(
            session,
            name="  Golf Mobility Assessment ",
            duration_minutes=90,
            price=Decimal("225"),
            category=ServiceCategory.GOLF_FITNESS,
        )

        assert service.name == "Golf Mobility Assessment"
        assert service.price == Decimal("225.00")
        assert service.is_active is True

    @pytest.mark.parametrize(
        "overrides",
        [{"name": "   "}, {"duration_minutes": 0}, {"price": Decimal("-1")}],
    )
    async def test_create_rejects_bad_values(self, session, overrides):
        fields = {"name": "Stretch", "duration_minutes": 30, "price": Decimal("40"), **overrides}
        with pytest.raises(ValidationError):
            await catalogue.create_service(session, **fields)

    async def test_partial_update(self, session, training_service):
        service = await catalogue.update_service(
            session, training_service.id, {"price": Decimal("165"), "description": "Strength block"}
        )

        assert service.price == Decimal("165.00")
        assert service.description == "Strength block"
        assert service.duration_minutes == 60

    async def test_update_can_reactivate(self, session, training_service):
        await catalogue.deactivate_service(session, training_service.id)

        service = await catalogue.update_service(session, training_service.id, {"is_active": True})

        assert service.is_active is True

    async def test_unknown_field_rejected(self, session, training_service):
        with pytest.raises(ValidationError):
            await catalogue.update_service(session, training_service.id, {"created_at": None})

    async def test_inactive_service_hidden_from_lookup(self, session, training_service):
        await catalogue.deactivate_service(session, training_service.id)

        with pytest.raises(NotFoundError):
            await catalogue.get_service(session, training_service.id)
        assert (await catalogue.get_service(session, training_service.id, include_inactive=True)).id == (
            training_service.id
        )

    async def test_unknown_service(self, session):
        with pytest.raises(NotFoundError):
            await catalogue.deactivate_service(session, uuid4())


class TestPackages:
    async def test_create_and_list(self, session, training_package):
        recovery = await catalogue.create_package(
            session,
            name="Recovery Trio",
            session_count=3,
            price=Decimal("210"),
            validity_days=60,
            category=ServiceCategory.RECOVERY,
        )
        await session.commit()

        packages = await catalogue.list_packages(session)

        # Cheapest first
        assert [p.id for p in packages] == [recovery.id, training_package.id]

    async def test_deactivated_package_not_listed(self, session, training_package):
        await catalogue.deactivate_package(session, training_package.id)
        await session.commit()

        assert await catalogue.list_packages(session) == []
        assert len(await catalogue.list_packages(session, include_inactive=True)) == 1

    async def test_category_cannot_be_cleared(self, session, training_package):
        with pytest.raises(ValidationError):
            await catalogue.update_package(session, training_package.id, {"category": None})

    async def test_non_positive_validity_rejected(self, session, training_package):
        with pytest.raises(ValidationError):
            await catalogue.update_package(session, training_package.id, {"validity_days": 0})

    async def test_unknown_package(self, session):
        with pytest.raises(NotFoundError):
            await catalogue.update_package(session, uuid4(), {"name": "Ghost"})
