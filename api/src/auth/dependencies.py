"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current user extraction from JWT (Bearer header or session cookie)
- Admin-only access
- API Key authentication for the scheduler
"""

import secrets
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.auth.permissions import UserRole, is_admin
from src.auth.schemas import AuthenticatedUser
from src.auth.security import decode_access_token
from src.config.settings import Settings, get_settings
from src.core.context import set_user_id


def get_access_token(request: Request) -> str | None:
    """Extract the access token.

    Bearer Authorization header first, then the session cookie set by the
    web frontend.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header:
        expected_parts = 2
        parts = auth_header.split()
        if len(parts) == expected_parts and parts[0].lower() == "bearer":
            return parts[1]
        return None

    settings = get_settings()
    return request.cookies.get(settings.auth_cookie_name)


def _user_from_payload(payload: dict[str, Any]) -> AuthenticatedUser:
    """Build the identity from verified claims.

    Raises:
        ValueError: Subject is not a UUID
    """
    role = payload.get("role")
    known_roles = {r.value for r in UserRole}
    return AuthenticatedUser(
        id=UUID(str(payload["sub"])),
        email=payload.get("email"),
        role=UserRole(role) if role in known_roles else UserRole.USER,
    )


async def get_current_user_optional(
    token: Annotated[str | None, Depends(get_access_token)],
) -> AuthenticatedUser | None:
    """Get current user if authenticated, None otherwise.

    Invalid or expired tokens count as anonymous.
    """
    if not token:
        return None

    try:
        payload = decode_access_token(token)
        user = _user_from_payload(payload)
    except (JWTError, ValueError):
        return None

    # Set user_id in context for logging
    set_user_id(user.id)
    return user


async def get_current_user(
    user: Annotated[AuthenticatedUser | None, Depends(get_current_user_optional)],
) -> AuthenticatedUser:
    """Get current authenticated user.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found / not logged in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_admin(
    user: Annotated[AuthenticatedUser, Depends(get_current_user)],
) -> AuthenticatedUser:
    """Require ADMIN role."""
    if not is_admin(user.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permission",
        )
    return user


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]

# Optional user (for endpoints that report 401 themselves)
OptionalUser = Annotated[AuthenticatedUser | None, Depends(get_current_user_optional)]

AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]


# ==============================================================================
# API Key Authentication (for scheduler endpoints)
# ==============================================================================


async def verify_master_api_key(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str:
    """Verify X-API-Key header against master API key.

    Raises:
        HTTPException(401): If API key is missing
        HTTPException(403): If API key is invalid
        HTTPException(503): If API key is not configured
    """
    api_key = request.headers.get("X-API-Key")

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API Key required",
        )

    if not settings.master_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API Key authentication not configured",
        )

    # Timing-safe comparison to prevent timing attacks
    if not secrets.compare_digest(api_key, settings.master_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API Key",
        )

    return api_key


MasterApiKey = Annotated[str, Depends(verify_master_api_key)]
