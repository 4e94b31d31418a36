"""
FastAPI dependencies for authentication.

A missing, invalid or expired credential, an unknown subject and an inactive
account all resolve to ``None``; the authorization layer reports that as
``unauthenticated``.
"""
from typing import Annotated, Optional
from datetime import datetime, timezone
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.engine import Principal
from app.features.users.models import User
from app.features.users.auth import (
    INVALID_CREDENTIAL,
    PRINCIPAL_INACTIVE,
    CredentialError,
    verify_jwt_token,
)
from app.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Optional[User]:
    """
    Get the current authenticated user from the bearer token.

    This dependency:
    1. Extracts the JWT from the Authorization header
    2. Verifies signature and expiry
    3. Looks up the user in the local database
    4. Updates last_login_at timestamp
    """
    if credentials is None:
        return None

    try:
        payload = verify_jwt_token(credentials.credentials)
        user_id = payload["sub"]

        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise CredentialError(INVALID_CREDENTIAL, f"Unknown subject {user_id}")
        if not user.is_active:
            raise CredentialError(PRINCIPAL_INACTIVE, f"User {user_id} is deactivated")
    except CredentialError as e:
        log.warning("Credential rejected (%s): %s", e.reason, e)
        return None

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    return user


async def get_current_principal(
    user: Annotated[Optional[User], Depends(get_current_user)]
) -> Optional[Principal]:
    """Snapshot the user for this request's authorization decisions."""
    if user is None:
        return None
    return Principal(
        user_id=user.id,
        role=user.role,
        is_active=user.is_active,
        permissions=frozenset(user.permissions or ()),
    )


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
