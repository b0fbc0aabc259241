"""
Password hashing and access tokens for riders and staff.

Passwords are hashed with Argon2id through passlib and only the hash is
stored on the users table.

Access tokens are HS256 JWTs that carry the user id ("sub") and nothing
else. The role is deliberately left out: get_current_user re-reads the
user on every request, so promoting or deactivating someone takes effect
on their next call instead of when their token expires.
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from bikeshare.config import settings


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of a login attempt against the stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def access_token_lifetime() -> timedelta:
    return timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def issue_access_token(user_id: uuid.UUID, lifetime: timedelta | None = None) -> str:
    """
    Sign a bearer token for ``user_id``.

    Args:
        user_id: The rider or staff member the token is issued to.
        lifetime: Overrides ACCESS_TOKEN_EXPIRE_MINUTES (tests use a
            negative lifetime to get an already-expired token).
    """
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + (lifetime or access_token_lifetime()),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def read_access_token(token: str) -> uuid.UUID:
    """
    Verify a bearer token and return the user id it was issued to.

    Raises:
        JWTError: If the token is expired, tampered with, or signed with
            another key.
        ValueError: If the subject is missing or isn't a user id.
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return uuid.UUID(payload.get("sub") or "")
