"""
Transaction model — the immutable wallet ledger.

Every movement of money on a wallet is one Transaction row. Rows share a
common envelope (wallet, ledger, signed amount, status, timestamps) and
each kind is its own mapped class, stored in the single ``transactions``
table (single-table inheritance on ``type``). A kind carries only the
reference it needs:

    RidePayment       ride_id                  balance, negative
    DamageCharge      incident_id              deposit, negative
    Refund            reverses_transaction_id  deposit/balance, positive
    Deposit           external_id, provider    balance/deposit, positive
    CashDeposit       (admin validation)       balance, positive
    Withdrawal                                 balance, negative
    DepositTransfer   transfer_pair_id         one leg per ledger

Sign convention:
  ``amount`` is the signed effect on the ``ledger`` field of the wallet.
  A ride payment of 300 is stored as -300 against BALANCE.

Status:
  PENDING -> COMPLETED | FAILED | REJECTED | CANCELLED, exactly once, via a
  guarded UPDATE (see services/ledger_store.py). Rows that are created
  COMPLETED or FAILED never change again. A correction is a new Refund row.

Uniqueness guards enforced by the store:
  - at most one COMPLETED RidePayment per ride
  - at most one Refund per reversed transaction
  - idempotency_key is unique across the table
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from bikeshare.database import Base


class TransactionType(str, enum.Enum):
    RIDE_PAYMENT = "RIDE_PAYMENT"
    DAMAGE_CHARGE = "DAMAGE_CHARGE"
    REFUND = "REFUND"
    DEPOSIT = "DEPOSIT"
    CASH_DEPOSIT = "CASH_DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DEPOSIT_TRANSFER = "DEPOSIT_TRANSFER"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class Ledger(str, enum.Enum):
    """Which wallet field a transaction moves."""
    BALANCE = "BALANCE"
    DEPOSIT = "DEPOSIT"


class PaymentMethod(str, enum.Enum):
    WALLET = "WALLET"
    MOBILE_MONEY = "MOBILE_MONEY"
    CARD = "CARD"
    CASH = "CASH"
    ADMIN = "ADMIN"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_transactions_non_zero_amount"),
        CheckConstraint("fees >= 0", name="ck_transactions_non_negative_fees"),
    )

    # Subclass columns load with the base row; no lazy loads under asyncio
    __mapper_args__ = {
        "polymorphic_on": "type",
        "with_polymorphic": "*",
    }

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    wallet_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("wallets.id"),
        nullable=False,
        index=True,
    )

    # Discriminator: selects the mapped subclass
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
        index=True,
    )

    ledger: Mapped[Ledger] = mapped_column(
        Enum(Ledger),
        nullable=False,
    )

    # Signed effect on the wallet field named by `ledger`
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Gateway/operator fees, informational; not part of the wallet sums
    fees: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # What the customer was charged or paid in total (amount plus fees)
    total_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        default=TransactionStatus.PENDING,
        nullable=False,
        index=True,
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod),
        default=PaymentMethod.WALLET,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Caller-supplied key; a replayed request returns the stored row
    idempotency_key: Mapped[str | None] = mapped_column(
        String(100),
        unique=True,
        nullable=True,
    )

    # Receipt data (pricing snapshot, gateway payload, failure reason)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Staff member who validated/rejected/issued the transaction
    processed_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class RidePayment(Transaction):
    """Debit of the balance for a completed ride."""

    __mapper_args__ = {"polymorphic_identity": TransactionType.RIDE_PAYMENT}

    ride_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("rides.id"),
        nullable=True,
        index=True,
    )


class DamageCharge(Transaction):
    """Debit of the deposit levied by staff, always tied to an incident."""

    __mapper_args__ = {"polymorphic_identity": TransactionType.DAMAGE_CHARGE}

    incident_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("incidents.id"),
        nullable=True,
        index=True,
    )


class Refund(Transaction):
    """
    Credit that offsets an earlier transaction, or an incident refund.

    ``reverses_transaction_id`` is unique: a charge is reversed at most once.
    Incident refunds (goodwill credits to the balance) leave it NULL.
    """

    __mapper_args__ = {"polymorphic_identity": TransactionType.REFUND}

    reverses_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("transactions.id"),
        unique=True,
        nullable=True,
    )
    refund_incident_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("incidents.id"),
        nullable=True,
    )


class Deposit(Transaction):
    """Top-up confirmed by the payment gateway (mobile money, card)."""

    __mapper_args__ = {"polymorphic_identity": TransactionType.DEPOSIT}

    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)


class CashDeposit(Transaction):
    """Cash handed to staff; credited only once an admin validates it."""

    __mapper_args__ = {"polymorphic_identity": TransactionType.CASH_DEPOSIT}


class Withdrawal(Transaction):
    __mapper_args__ = {"polymorphic_identity": TransactionType.WITHDRAWAL}


class DepositTransfer(Transaction):
    """One leg of a balance -> deposit move; both legs share transfer_pair_id."""

    __mapper_args__ = {"polymorphic_identity": TransactionType.DEPOSIT_TRANSFER}

    transfer_pair_id: Mapped[uuid.UUID | None] = mapped_column(
        nullable=True,
        index=True,
    )


# A ride is paid at most once
Index(
    "uq_transactions_completed_ride_payment",
    Transaction.__table__.c.ride_id,
    unique=True,
    sqlite_where=text("type = 'RIDE_PAYMENT' AND status = 'COMPLETED'"),
    postgresql_where=text("type = 'RIDE_PAYMENT' AND status = 'COMPLETED'"),
)
