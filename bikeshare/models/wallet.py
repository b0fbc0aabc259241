"""
Wallet model — a rider's two-part account.

  - balance: spendable funds. Ride payments and withdrawals debit it;
    top-ups, validated cash deposits and incident refunds credit it.
  - deposit: the refundable security hold. Damage charges debit it; their
    reversals and deposit top-ups credit it.

Both fields are caches of the ledger: at any committed point,

    balance == sum(amount of COMPLETED transactions with ledger BALANCE)
    deposit == sum(amount of COMPLETED transactions with ledger DEPOSIT)

and both are non-negative (enforced by CHECK constraints and by the guarded
UPDATE in services/ledger_store.py). Nothing outside ledger_store writes
these columns.

Amounts are integers in the currency's minor unit (settings.CURRENCY).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bikeshare.config import settings
from bikeshare.database import Base


class Wallet(Base):
    __tablename__ = "wallets"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_non_negative_balance"),
        CheckConstraint("deposit >= 0", name="ck_wallets_non_negative_deposit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # One wallet per user
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        unique=True,
        nullable=False,
    )

    balance: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    deposit: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default=lambda: settings.CURRENCY,
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
    user: Mapped["User"] = relationship(back_populates="wallet")
