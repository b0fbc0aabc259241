"""
Ledger store — the only code that writes wallet amounts and transaction statuses.

Every money movement goes through three steps inside the caller's store
transaction:

  1. lock_wallet()        SELECT ... FOR UPDATE on PostgreSQL, bounded by
                          SET LOCAL lock_timeout; re-reads the row.
  2. apply_delta()        UPDATE wallets SET <field> = <field> + :delta
                          WHERE id = :id AND <field> + :delta >= 0
  3. add the Transaction row (and its audit entry)

Step 2 is guarded by the invariant itself: when the update matches no row
the field would have gone negative, nothing is written, and the caller
raises its typed error. Two concurrent debits can therefore never both
succeed against a balance that covers only one of them, whatever isolation
level the store runs at.

Status moves (PENDING -> COMPLETED, ...) use the same idea in
transition_status(): UPDATE ... WHERE status = 'PENDING'. The first caller
wins; replays and racing callers update zero rows.

SQLite note:
  SQLite has no row locks; writers serialize on the database file lock and
  wait for it up to the connection's busy timeout (WALLET_LOCK_TIMEOUT_MS).
  A timeout surfaces as OperationalError("database is locked"), translated
  here to ConcurrencyConflictError.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.config import settings
from bikeshare.exceptions import ConcurrencyConflictError, WalletNotFoundError
from bikeshare.logging_config import get_logger
from bikeshare.models.transaction import Ledger, Transaction, TransactionStatus
from bikeshare.models.wallet import Wallet

logger = get_logger(__name__)


@asynccontextmanager
async def lock_errors_as_conflicts(operation: str):
    """Translate lock timeouts / busy errors raised inside the block."""
    try:
        yield
    except OperationalError as e:
        logger.warning(
            f"Lock not acquired during {operation}",
            extra_data={"operation": operation, "error": str(e.orig), "retryable": True},
        )
        raise ConcurrencyConflictError() from e


async def _set_lock_timeout(db: AsyncSession) -> None:
    if db.bind is not None and db.bind.dialect.name == "postgresql":
        await db.execute(
            text(f"SET LOCAL lock_timeout = '{int(settings.WALLET_LOCK_TIMEOUT_MS)}ms'")
        )


async def lock_wallet(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    wallet_id: uuid.UUID | None = None,
) -> Wallet:
    """
    Lock and re-read a wallet row for the rest of the store transaction.

    Exactly one of user_id / wallet_id must be given.

    Raises:
        WalletNotFoundError: If the wallet doesn't exist.
        ConcurrencyConflictError: If the lock isn't granted in time.
    """
    query = select(Wallet).with_for_update().execution_options(populate_existing=True)
    if wallet_id is not None:
        query = query.where(Wallet.id == wallet_id)
    else:
        query = query.where(Wallet.user_id == user_id)

    async with lock_errors_as_conflicts("lock_wallet"):
        await _set_lock_timeout(db)
        result = await db.execute(query)
    wallet = result.scalar_one_or_none()

    if wallet is None:
        raise WalletNotFoundError(user_id or wallet_id)
    return wallet


async def apply_delta(db: AsyncSession, wallet: Wallet, ledger: Ledger, delta: int) -> bool:
    """
    Add ``delta`` to the wallet field named by ``ledger`` if it stays >= 0.

    Returns:
        True when applied (``wallet`` is refreshed), False when the guard
        refused it (nothing written).
    """
    column = Wallet.balance if ledger == Ledger.BALANCE else Wallet.deposit

    async with lock_errors_as_conflicts("apply_delta"):
        result = await db.execute(
            update(Wallet)
            .where(Wallet.id == wallet.id, column + delta >= 0)
            .values({column.key: column + delta, "updated_at": datetime.now(timezone.utc)})
            .execution_options(synchronize_session=False)
        )
        await db.refresh(wallet)

    return result.rowcount == 1


async def transition_status(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    from_status: TransactionStatus,
    to_status: TransactionStatus,
    **values,
) -> bool:
    """
    Move a transaction from ``from_status`` to ``to_status`` exactly once.

    Extra keyword arguments are written in the same UPDATE (processed_by,
    note, ...). Returns False if the transaction wasn't in ``from_status``.
    """
    async with lock_errors_as_conflicts("transition_status"):
        result = await db.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == from_status)
            .values(status=to_status, updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount == 1


async def add_transaction(db: AsyncSession, txn: Transaction) -> Transaction:
    """Insert a transaction row, filling total_amount when not set."""
    if txn.fees is None:
        txn.fees = 0
    if txn.total_amount is None:
        txn.total_amount = txn.amount + (txn.fees if txn.amount > 0 else -txn.fees)
    db.add(txn)
    async with lock_errors_as_conflicts("add_transaction"):
        await db.flush()
    return txn


async def find_by_idempotency_key(db: AsyncSession, key: str | None) -> Transaction | None:
    if key is None:
        return None
    result = await db.execute(select(Transaction).where(Transaction.idempotency_key == key))
    return result.scalar_one_or_none()


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction | None:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def ledger_sums(db: AsyncSession, wallet_id: uuid.UUID) -> dict[Ledger, int]:
    """Sum of COMPLETED transaction amounts per wallet field."""
    result = await db.execute(
        select(Transaction.ledger, func.coalesce(func.sum(Transaction.amount), 0))
        .where(
            Transaction.wallet_id == wallet_id,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        .group_by(Transaction.ledger)
    )
    sums = {Ledger.BALANCE: 0, Ledger.DEPOSIT: 0}
    for ledger, total in result.all():
        sums[ledger] = int(total)
    return sums


def snapshot(wallet: Wallet) -> dict:
    """Audit-friendly view of a wallet's amounts."""
    return {"balance": wallet.balance, "deposit": wallet.deposit}
