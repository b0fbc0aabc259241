"""
AuditLog model — append-only trail of financial state changes.

One row per money movement or refused attempt, written in the same store
transaction as the change it describes, with before/after snapshots of the
wallet (or entity) so reconciliation never has to re-derive history.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from bikeshare.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # e.g. "wallet.debit_for_ride", "incident.delete_charge"
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    entity: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)

    # NULL for system-initiated actions (gateway callbacks)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    # "success" or "failure"
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="success")

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    detail: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
