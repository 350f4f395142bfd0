"""
Package catalogue and purchase endpoints.

- GET    /api/packages                - active packages (admins: includeInactive)
- POST   /api/packages                - create (admin)
- PATCH  /api/packages/{id}           - partial update (admin)
- DELETE /api/packages/{id}           - deactivate (admin)
- POST   /api/packages/{id}/checkout  - start a Stripe Checkout purchase
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.auth import CurrentAdmin, CurrentUser
from api.models.catalogue import PackageIn, PackageOut, PackageUpdate
from api.models.common import ERROR_RESPONSES
from api.models.invoices import CheckoutResponse
from database.connection import get_async_session
from database.models import User
from scheduling.errors import NotFoundError, ValidationError
from scheduling.services import catalogue
from scheduling.services.session_account import get_package
from shared.stripe_client import create_checkout_session, to_cents

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/packages", tags=["packages"], responses=ERROR_RESPONSES)


@router.get("", response_model=list[PackageOut])
async def list_packages(
    current_user: CurrentUser,
    include_inactive: bool = Query(default=False, alias="includeInactive"),
):
    async with get_async_session() as session:
        return await catalogue.list_packages(
            session, include_inactive=include_inactive and current_user.is_admin
        )


@router.post("", response_model=PackageOut, status_code=status.HTTP_201_CREATED)
async def create_package(request: PackageIn, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        package = await catalogue.create_package(session, **request.model_dump())
        await session.commit()
    return package


@router.patch("/{package_id}", response_model=PackageOut)
async def update_package(package_id: UUID, request: PackageUpdate, current_admin: CurrentAdmin):
    async with get_async_session() as session:
        package = await catalogue.update_package(session, package_id, request.model_dump(exclude_unset=True))
        await session.commit()
    return package


@router.delete("/{package_id}", response_model=PackageOut)
async def deactivate_package(package_id: UUID, current_admin: CurrentAdmin):
    """Deactivate (never delete); accounts already sold keep their sessions."""
    async with get_async_session() as session:
        package = await catalogue.deactivate_package(session, package_id)
        await session.commit()
    logger.info(f"Package {package_id} deactivated by {current_admin.id}")
    return package


@router.post("/{package_id}/checkout", response_model=CheckoutResponse)
async def checkout_package(package_id: UUID, current_user: CurrentUser):
    """
    Start a package purchase.

    The session account is created by the checkout.session.completed webhook,
    not here.
    """
    async with get_async_session() as session:
        package = await get_package(session, package_id)
        if not package.is_active:
            raise NotFoundError("Package not found or inactive", details={"package_id": str(package_id)})
        if package.price <= 0:
            raise ValidationError("Package has no price to pay")
        client = await session.get(User, current_user.id)
        if client is None:
            raise NotFoundError("Client not found")

    checkout = await create_checkout_session(
        amount_cents=to_cents(package.price),
        description=f"Package: {package.name}",
        client_id=str(client.id),
        client_email=client.email,
        metadata={"type": "package_purchase", "package_id": str(package.id)},
    )

    logger.info(
        f"Package checkout started: {package.name} ({checkout['session_id']})",
        extra={"client_id": client.id},
    )
    return CheckoutResponse(session_id=checkout["session_id"], url=checkout["url"])
