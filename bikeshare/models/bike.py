"""
Bike model — the rentable vehicle.

Status changes that matter for billing (AVAILABLE <-> IN_USE) are done with
guarded UPDATEs in services/ride_service.py so two riders can never unlock
the same bike.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Float, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from bikeshare.database import Base


class BikeStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    IN_USE = "IN_USE"
    MAINTENANCE = "MAINTENANCE"
    UNAVAILABLE = "UNAVAILABLE"


class Bike(Base):
    __tablename__ = "bikes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Code printed on the frame / QR sticker
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[BikeStatus] = mapped_column(
        Enum(BikeStatus),
        default=BikeStatus.AVAILABLE,
        nullable=False,
        index=True,
    )

    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Plan billed when a ride on this bike doesn't name one
    pricing_plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("pricing_plans.id"),
        nullable=True,
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
