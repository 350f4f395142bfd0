"""
Authentication dependencies.

Tokens are HS256 JWTs issued by the auth service after magic-link sign-in:

    {"sub": "<user uuid>", "role": "admin" | "client", "exp": ..., "iat": ...}

Accepted from the Authorization header (Bearer) or the session_token cookie.
"""

import logging
import time
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from database.models import UserRole
from scheduling.errors import AuthError
from scheduling.services.booking_ledger import Actor
from shared.config import get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)  # auto_error=False allows cookie fallback

JWT_EXPIRATION_HOURS = 24 * 7
SESSION_COOKIE_NAME = "session_token"


def create_access_token(user_id: UUID, role: UserRole, expires_in_hours: int = JWT_EXPIRATION_HOURS) -> str:
    """Issue a session token (used by the auth service and by tests)."""
    settings = get_settings()
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "iat": now,
        "exp": now + expires_in_hours * 3600,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Actor:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return Actor(id=UUID(payload["sub"]), role=UserRole(payload["role"]))
    except JWTError as e:
        logger.info(f"Rejected session token: {e}")
        raise AuthError("Invalid or expired session") from e
    except (KeyError, ValueError) as e:
        logger.warning(f"Malformed session token claims: {e}")
        raise AuthError("Invalid or expired session") from e


async def require_auth(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session_token: Annotated[str | None, Cookie()] = None,
) -> Actor:
    """Dependency: the authenticated caller, or 401."""
    token = credentials.credentials if credentials else session_token
    if not token:
        raise AuthError("Not authenticated")
    return verify_token(token)


async def require_admin(actor: Annotated[Actor, Depends(require_auth)]) -> Actor:
    """Dependency: an authenticated admin, else 403."""
    if not actor.is_admin:
        raise AuthError("Admin access required", status_code=403)
    return actor


CurrentUser = Annotated[Actor, Depends(require_auth)]
CurrentAdmin = Annotated[Actor, Depends(require_admin)]
