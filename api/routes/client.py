"""Client self-service endpoints."""

from fastapi import APIRouter

from api.auth import CurrentUser
from api.models.common import ERROR_RESPONSES
from api.models.packages import ClientPackagesResponse, PackageBalanceOut
from database.connection import get_async_session
from scheduling.services.session_account import summarize_client_packages

router = APIRouter(prefix="/api/client", tags=["client"], responses=ERROR_RESPONSES)


@router.get("/packages", response_model=ClientPackagesResponse)
async def get_client_packages(current_user: CurrentUser):
    """The caller's session accounts split into active and expired/depleted."""
    async with get_async_session() as session:
        summary = await summarize_client_packages(session, current_user.id)

    active = [PackageBalanceOut.model_validate(b) for b in summary.active]
    inactive = [PackageBalanceOut.model_validate(b) for b in summary.inactive]
    return ClientPackagesResponse(active=active, inactive=inactive, all=[*active, *inactive])
