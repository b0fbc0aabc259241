"""
User model — the authentication identity and rider profile.

Each User is a login credential (email + Argon2id password hash) with a role
and the rider's contact details. Every user owns exactly one Wallet, created
in the same transaction as the user at signup.

User types:
  - ADMIN: Operator staff. Manages pricing, validates cash deposits, levies
    and reverses charges, resolves incidents.
  - EMPLOYEE: Field staff. Same read access as admins, no money operations.
  - RIDER: A customer who rents bikes. The default role for signup.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bikeshare.database import Base


class UserType(str, enum.Enum):
    """
    Role a user holds within the service.

    Inherits from str so the enum value serializes naturally to JSON.
    """
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    RIDER = "RIDER"


class User(Base):
    __tablename__ = "users"

    # UUIDs avoid guessable sequential IDs
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Login identifier, unique and indexed for fast lookups
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    user_type: Mapped[UserType] = mapped_column(
        Enum(UserType),
        default=UserType.RIDER,
        nullable=False,
    )

    # Deactivated users can't log in but their ledger history is preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    wallet: Mapped["Wallet"] = relationship(
        back_populates="user",
        uselist=False,
    )
