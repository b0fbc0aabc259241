"""
Pydantic schemas for User-related requests and responses.

hashed_password is NEVER included in any response schema.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from bikeshare.models.user import UserType

# Mobile-money payer ids: digits with an optional leading + and spaces
PHONE_PATTERN = r"^\+?[0-9][0-9 ]{5,19}$"


class UserResponse(BaseModel):
    """Public representation of a User (never includes password hash)."""
    id: uuid.UUID
    email: EmailStr
    first_name: str
    last_name: str
    phone: str | None
    user_type: UserType
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class UserUpdateRequest(BaseModel):
    """
    Profile fields a user may change.

    email and user_type are deliberately absent: unknown fields in the body
    are ignored, so they can't be changed through this schema.
    """
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30, pattern=PHONE_PATTERN)
