"""
Incident model — damage reports and staff-issued charges.

Two kinds share the table:

  - ADMIN_CHARGE: staff levy a charge against the rider's deposit. The
    incident points at the DamageCharge currently in force via
    ``charge_transaction_id``; the DamageCharge points back via its own
    ``incident_id`` foreign key. Editing the charge reverses that
    transaction and issues a new one; deleting it reverses and soft-deletes
    the incident so the ledger references stay valid.
  - DAMAGE_REPORT / OTHER: a rider reports a problem. Resolving it may
    credit ``refund_amount`` to the rider's balance.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bikeshare.database import Base


class IncidentKind(str, enum.Enum):
    ADMIN_CHARGE = "ADMIN_CHARGE"
    DAMAGE_REPORT = "DAMAGE_REPORT"
    OTHER = "OTHER"


class IncidentStatus(str, enum.Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class Incident(Base):
    __tablename__ = "incidents"

    __table_args__ = (
        CheckConstraint(
            "charge_amount IS NULL OR charge_amount > 0",
            name="ck_incidents_positive_charge",
        ),
        CheckConstraint(
            "refund_amount IS NULL OR refund_amount >= 0",
            name="ck_incidents_non_negative_refund",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    bike_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("bikes.id"), nullable=True)
    ride_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("rides.id"), nullable=True)

    kind: Mapped[IncidentKind] = mapped_column(Enum(IncidentKind), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    status: Mapped[IncidentStatus] = mapped_column(
        Enum(IncidentStatus),
        default=IncidentStatus.OPEN,
        nullable=False,
        index=True,
    )

    # Amount of the charge in force (admin charges only)
    charge_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # DamageCharge transaction currently in force
    charge_transaction_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    admin_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Soft delete: the DamageCharge/Refund rows keep pointing here
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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
