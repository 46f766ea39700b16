"""FastAPI dependencies for bearer authentication and role checks."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from pydantic import ValidationError

from internhub.core.context import set_user_id

from .permissions import UserRole, has_permission
from .schemas import CurrentUserInfo
from .security import read_access_token


bearer_scheme = HTTPBearer(auto_error=False)

_CHALLENGE = {"WWW-Authenticate": "Bearer"}


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> CurrentUserInfo:
    """Resolve the caller from the bearer token.

    Raises:
        HTTPException(401): Missing, malformed, expired or foreign token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers=_CHALLENGE,
        )

    try:
        claims = read_access_token(credentials.credentials)
        user = CurrentUserInfo(
            id=claims["sub"],
            email=claims.get("email"),
            role=claims.get("role", UserRole.STUDENT.value),
            name=claims.get("name", ""),
        )
    except (JWTError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers=_CHALLENGE,
        ) from e

    set_user_id(user.id)
    return user


def require_role(minimum: UserRole):
    """Dependency factory: the caller's role must rank at least ``minimum``."""

    async def check(
        user: Annotated[CurrentUserInfo, Depends(get_current_user)],
    ) -> CurrentUserInfo:
        if not has_permission(user.role, minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return check


CurrentUser = Annotated[CurrentUserInfo, Depends(get_current_user)]
ReviewerUser = Annotated[CurrentUserInfo, Depends(require_role(UserRole.REVIEWER))]
AdminUser = Annotated[CurrentUserInfo, Depends(require_role(UserRole.ADMIN))]
