"""Bearer token validation.

Access tokens are minted by the identity service and signed with the shared
``auth_secret_key``; this service only reads them. ``issue_access_token``
mints the same shape for operational scripts and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from internhub.config.settings import get_settings

from .permissions import UserRole


ACCESS_TOKEN_TYPE = "access"


def issue_access_token(
    subject: UUID | str,
    role: UserRole | str = UserRole.STUDENT,
    *,
    email: str | None = None,
    name: str | None = None,
    ttl: timedelta | None = None,
) -> str:
    settings = get_settings()
    now = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": str(subject),
        "role": UserRole(role).value,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + (ttl or timedelta(minutes=settings.auth_access_token_expire_minutes)),
    }
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def read_access_token(token: str) -> dict[str, Any]:
    """Check signature and expiry, then the claims this service relies on.

    Raises:
        JWTError: Bad signature, expired, not an access token, or no subject
    """
    settings = get_settings()
    claims = jwt.decode(token, settings.auth_secret_key, algorithms=[settings.auth_algorithm])

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)
    if not claims.get("sub"):
        msg = "Access token missing sub claim"
        raise JWTError(msg)
    return claims
