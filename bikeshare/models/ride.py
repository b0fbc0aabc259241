"""
Ride model — one rental session, from unlock to return.

State machine:

    IN_PROGRESS ──end──▶ COMPLETED
         │
         └──cancel──▶ CANCELLED

Both terminal states are final. ``cost`` is written once, at the COMPLETED
transition, and never recomputed.

Payment status is tracked separately from the ride status: a ride whose
debit failed is still COMPLETED (the bike is back, the service was used),
with payment_status FAILED until the rider settles it.

Two partial unique indexes make "one IN_PROGRESS ride per user" and "one
IN_PROGRESS ride per bike" properties of the store, not of application
code: a racing second start fails on INSERT.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, String, Integer, Float, DateTime, Enum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from bikeshare.database import Base


class RideStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


_IN_PROGRESS = text("status = 'IN_PROGRESS'")


class Ride(Base):
    __tablename__ = "rides"

    __table_args__ = (
        Index(
            "uq_rides_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=_IN_PROGRESS,
            postgresql_where=_IN_PROGRESS,
        ),
        Index(
            "uq_rides_one_active_per_bike",
            "bike_id",
            unique=True,
            sqlite_where=_IN_PROGRESS,
            postgresql_where=_IN_PROGRESS,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    bike_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("bikes.id"), nullable=False, index=True)

    # Plan chosen at unlock; falls back to the bike's plan
    plan_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("pricing_plans.id"),
        nullable=True,
    )

    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # {"lat": ..., "lng": ..., "address": ...} as reported by the app
    start_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    end_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Supplied by the GPS collaborator at end time
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    cost: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[RideStatus] = mapped_column(
        Enum(RideStatus),
        default=RideStatus.IN_PROGRESS,
        nullable=False,
        index=True,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Latest payment attempt (completed or failed) for this ride
    payment_transaction_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    # Rule, promotions, tier and cost breakdown used to price the ride
    pricing_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

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
