"""
FastAPI dependencies for authentication and authorization.

Dependencies are reusable functions that FastAPI injects into route handlers.
They form a dependency chain that enforces both authentication and
role-based access control:

  get_current_user (JWT -> User)
      ├── get_current_rider (User -> User)    [RIDER / EMPLOYEE]
      └── require_admin (User -> User)        [ADMIN]

Role-based access control:
  - RIDER: Can only see and move their own wallet, rides and incidents.
    Rider endpoints scope every query to the authenticated user's id.
  - ADMIN: Manages the pricing catalog and the fleet, levies and edits
    deposit charges, validates cash deposits and resolves incidents. Admins
    never ride or pay from a wallet of their own through rider endpoints.
  - EMPLOYEE: Field staff; rides like a rider (e.g. rebalancing trips).
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.models.user import User, UserType
from bikeshare.security import read_access_token


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Extract and validate the JWT token, then return the corresponding User.

    Raises:
        HTTPException 401: If the token is invalid, expired, or the user
            doesn't exist or was deactivated.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        user_id = read_access_token(token)
    except (JWTError, ValueError):
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


async def get_current_rider(
    user: User = Depends(get_current_user),
) -> User:
    """
    The authenticated user, for rider endpoints (wallet, rides, incidents).

    Admin users are explicitly blocked: admin operations on other people's
    money go through /admin/* where they are audited under the admin's id.

    Raises:
        HTTPException 403: If the user is an admin.
    """
    if user.user_type == UserType.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin accounts cannot access rider endpoints. "
                   "Use /admin/* endpoints instead.",
        )
    return user


async def require_admin(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require the authenticated user to have the ADMIN role.

    Raises:
        HTTPException 403: If the user is not an admin.
    """
    if user.user_type != UserType.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
