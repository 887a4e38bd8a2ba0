"""
dependencies.py
---------------
FastAPI dependency injection functions for authentication, authorisation
and service construction.

Flow:
  1. OAuth2PasswordBearer extracts the Bearer token from the Authorization header.
  2. decode_access_token validates the JWT signature, issuer and typ="access".
  3. get_current_user reloads the User so deactivated or deleted accounts
     are rejected even while their session token is still unexpired.
  4. require_roles(...) layers a role check on top of get_current_user.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.logging import get_logger
from letrents.core.security import decode_access_token
from letrents.db.session import get_db
from letrents.models.user import User, UserRole, UserStatus
from letrents.services.auth_service import AuthService
from letrents.services.email_service import email_service
from letrents.services.mpesa_client import AccessTokenCache, MpesaClient

logger = get_logger(__name__)

# tokenUrl must match the login endpoint path
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

# One bearer-token cache per process, shared by every MpesaClient it builds.
mpesa_token_cache = AccessTokenCache()

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)

SESSION_STATUSES = {UserStatus.active.value, UserStatus.pending_setup.value}


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Decode the JWT, then load and return the full User from the database.
    Raises 401 if the token is invalid or the user no longer exists, and
    403 if the account is no longer allowed to hold a session.
    """
    try:
        payload = decode_access_token(token)
        user_id: str = payload.get("sub")
        if not user_id:
            raise _CREDENTIALS_EXCEPTION
    except JWTError as exc:
        logger.warning("JWT decode failed", error=str(exc))
        raise _CREDENTIALS_EXCEPTION

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        logger.warning("User from valid JWT not found in DB", user_id=user_id)
        raise _CREDENTIALS_EXCEPTION

    if user.status not in SESSION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="user account is inactive",
        )

    return user


def require_roles(*roles: UserRole):
    """
    Build a dependency that admits only the given roles.

        admin: Annotated[User, Depends(require_roles(UserRole.landlord))]
    """
    allowed = {role.value for role in roles}

    async def _check_role(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="insufficient permissions",
            )
        return current_user

    return _check_role


async def get_auth_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthService:
    return AuthService(db, email_service)


def get_mpesa_client() -> MpesaClient:
    return MpesaClient(mpesa_token_cache)
