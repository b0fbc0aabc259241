"""
Request and response bodies for /auth.

Signup always creates a RIDER with an empty wallet; staff accounts are
promoted out of band (demo/promote_admin.py). Signup and login both answer
with a session body so clients store the token the same way.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field

from bikeshare.models.user import UserType
from bikeshare.schemas.user import PHONE_PATTERN


class RiderSignupRequest(BaseModel):
    """Request body for POST /auth/signup."""
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30, pattern=PHONE_PATTERN)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthSession(BaseModel):
    """A signed-in user: who they are and the bearer token to send."""
    user_id: uuid.UUID
    email: EmailStr
    user_type: UserType
    token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Seconds until the token expires")


class SignupSession(AuthSession):
    """A new rider's session, with the wallet created alongside the account."""
    wallet_id: uuid.UUID
    currency: str
