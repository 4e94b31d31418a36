"""
Bearer credential verification.

Tokens are HS256 JWTs whose ``sub`` claim is the local user id. Failures are
reported as ``CredentialError`` with one of the reasons below; the dependency
layer turns every one of them into an unauthenticated principal.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from app.core import config


INVALID_CREDENTIAL = "invalid_credential"
EXPIRED_CREDENTIAL = "expired_credential"
PRINCIPAL_INACTIVE = "principal_inactive"


class CredentialError(Exception):
    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a bearer token and return its payload.

    Raises:
        CredentialError: If the token is malformed, badly signed, expired or
            has no subject.
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise CredentialError(EXPIRED_CREDENTIAL, "Token has expired")
    except jwt.InvalidTokenError as e:
        raise CredentialError(INVALID_CREDENTIAL, f"Invalid token: {str(e)}")

    if not payload.get("sub"):
        raise CredentialError(INVALID_CREDENTIAL, "Invalid token payload")

    return payload


def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    """Issue a token for ``user_id``. Used by the seed script and the tests."""
    now = datetime.now(timezone.utc)
    minutes = config.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
