"""
Wallet operations service — every money movement on a rider's wallet.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. Each public function is one
atomic unit inside the caller's store transaction: wallet lock, guarded
amount update, transaction row and audit entry are all flushed together,
and the request session commits or rolls them back as one.

Operations and the wallet field they move:

    debit_for_session           balance  -  RidePayment
    credit_deposit              deposit  +  Deposit (or balance, on request)
    initiate_top_up             (none)      PENDING Deposit
    apply_gateway_callback      target   +  PENDING -> COMPLETED | FAILED
    charge_damage               deposit  -  DamageCharge (incident-linked)
    reverse_charge              original +  Refund
    create/update/cancel cash   (none)      PENDING CashDeposit
    validate_cash_deposit       balance  +  PENDING -> COMPLETED
    reject_cash_deposit         (none)      PENDING -> REJECTED
    transfer_to_deposit         balance -> deposit, two DepositTransfer legs
    withdraw                    balance  -  Withdrawal

Retry safety:
  - Ride payments are keyed by ride: a second debit for a ride that already
    has a COMPLETED payment returns that payment.
  - Reversals are keyed by the reversed transaction (unique column).
  - Gateway callbacks and cash validation are one-shot status transitions.
  - Any mutating call may pass an idempotency_key; a replay returns the
    stored transaction.

Refusals:
  - Insufficient balance on a ride payment records a FAILED RidePayment
    and raises InsufficientFundsError (the request session commits domain
    errors, so the failed attempt stays on record).
  - A damage charge larger than the deposit raises InsufficientDepositError
    and records no transaction (only a failure audit entry).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.config import settings
from bikeshare.exceptions import (
    ConcurrencyConflictError,
    InsufficientDepositError,
    InsufficientFundsError,
    InvalidAmountError,
    TransactionNotFoundError,
    UnauthorizedAccessError,
    WalletNotFoundError,
    WrongStateError,
)
from bikeshare.logging_config import get_logger
from bikeshare.models.transaction import (
    CashDeposit,
    DamageCharge,
    Deposit,
    DepositTransfer,
    Ledger,
    PaymentMethod,
    Refund,
    RidePayment,
    Transaction,
    TransactionStatus,
    TransactionType,
    Withdrawal,
)
from bikeshare.models.wallet import Wallet
from bikeshare.services import audit_service, ledger_store

logger = get_logger(__name__)


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")


async def _replayed(
    db: AsyncSession,
    idempotency_key: str | None,
    wallet_id: uuid.UUID,
) -> Transaction | None:
    existing = await ledger_store.find_by_idempotency_key(db, idempotency_key)
    if existing is None:
        return None
    if existing.wallet_id != wallet_id:
        raise WrongStateError("Idempotency key already used for another wallet")
    logger.info(
        "Replayed request returned stored transaction",
        extra_data={"transaction_id": str(existing.id), "idempotency_key": idempotency_key},
    )
    return existing


async def _flush_or_conflict(db: AsyncSession, txn: Transaction) -> Transaction:
    """Insert a transaction; a uniqueness race means another request won."""
    try:
        return await ledger_store.add_transaction(db, txn)
    except IntegrityError as e:
        await db.rollback()
        raise ConcurrencyConflictError(
            "A concurrent request already recorded this operation"
        ) from e


# ---------------------------------------------------------------------------
# Wallet lifecycle and queries
# ---------------------------------------------------------------------------

async def create_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    """Create the (empty) wallet of a new user."""
    wallet = Wallet(user_id=user_id, balance=0, deposit=0, currency=settings.CURRENCY)
    db.add(wallet)
    await db.flush()
    return wallet


async def get_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    result = await db.execute(
        select(Wallet)
        .where(Wallet.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    wallet = result.scalar_one_or_none()
    if wallet is None:
        raise WalletNotFoundError(user_id)
    return wallet


async def get_or_create_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    """The user's wallet, created empty for accounts made before wallets existed."""
    try:
        return await get_wallet(db, user_id)
    except WalletNotFoundError:
        logger.info("Creating missing wallet", extra_data={"user_id": str(user_id)})
        return await create_wallet(db, user_id)


async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """
    Cached balance and deposit next to their ledger-derived values.

    ``match`` is False only if the wallet row drifted from the sum of its
    COMPLETED transactions, which the write path is built to prevent.
    """
    wallet = await get_wallet(db, user_id)
    sums = await ledger_store.ledger_sums(db, wallet.id)
    return {
        "wallet_id": wallet.id,
        "user_id": wallet.user_id,
        "currency": wallet.currency,
        "balance": wallet.balance,
        "deposit": wallet.deposit,
        "ledger_balance": sums[Ledger.BALANCE],
        "ledger_deposit": sums[Ledger.DEPOSIT],
        "match": (
            wallet.balance == sums[Ledger.BALANCE]
            and wallet.deposit == sums[Ledger.DEPOSIT]
        ),
    }


async def get_transaction_history(
    db: AsyncSession,
    user_id: uuid.UUID,
    type_filter: TransactionType | None = None,
    status_filter: TransactionStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """A user's transactions, newest first."""
    wallet = await get_wallet(db, user_id)
    query = select(Transaction).where(Transaction.wallet_id == wallet.id)
    if type_filter is not None:
        query = query.where(Transaction.type == type_filter)
    if status_filter is not None:
        query = query.where(Transaction.status == status_filter)
    query = query.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_transaction(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> Transaction:
    """
    A single transaction; scoped to ``user_id``'s wallet when given.

    Raises:
        TransactionNotFoundError: Unknown id.
        UnauthorizedAccessError: The transaction belongs to someone else.
    """
    txn = await ledger_store.get_transaction(db, transaction_id)
    if txn is None:
        raise TransactionNotFoundError(transaction_id)
    if user_id is not None:
        wallet = await get_wallet(db, user_id)
        if txn.wallet_id != wallet.id:
            raise UnauthorizedAccessError("You do not have access to this transaction")
    return txn


async def admin_list_transactions(
    db: AsyncSession,
    type_filter: TransactionType | None = None,
    status_filter: TransactionStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """All transactions across all wallets, newest first."""
    query = select(Transaction)
    if type_filter is not None:
        query = query.where(Transaction.type == type_filter)
    if status_filter is not None:
        query = query.where(Transaction.status == status_filter)
    query = query.order_by(Transaction.created_at.desc()).limit(limit).offset(offset)

    result = await db.execute(query)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Ride payments
# ---------------------------------------------------------------------------

async def debit_for_session(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    ride_id: uuid.UUID,
    details: dict | None = None,
) -> RidePayment:
    """
    Pay for a completed ride from the spendable balance.

    Args:
        db: Database session.
        user_id: Rider whose wallet is debited.
        amount: Ride cost, a positive integer.
        ride_id: The ride being paid; at most one COMPLETED payment per ride.
        details: Pricing receipt stored on the transaction.

    Returns:
        The COMPLETED RidePayment (a previously completed one on replay).

    Raises:
        InvalidAmountError: amount is not a positive integer.
        InsufficientFundsError: balance < amount. A FAILED RidePayment is
            recorded and its id carried on the error.
        ConcurrencyConflictError: wallet lock not granted in time, or a
            concurrent request paid the same ride first.
    """
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)

    existing = await db.execute(
        select(RidePayment).where(
            RidePayment.ride_id == ride_id,
            RidePayment.status == TransactionStatus.COMPLETED,
        )
    )
    paid = existing.scalar_one_or_none()
    if paid is not None:
        return paid

    before = ledger_store.snapshot(wallet)
    applied = await ledger_store.apply_delta(db, wallet, Ledger.BALANCE, -amount)

    if not applied:
        failed = await ledger_store.add_transaction(
            db,
            RidePayment(
                wallet_id=wallet.id,
                ledger=Ledger.BALANCE,
                amount=-amount,
                status=TransactionStatus.FAILED,
                payment_method=PaymentMethod.WALLET,
                ride_id=ride_id,
                description="Ride payment",
                details={**(details or {}), "failure_reason": "insufficient_funds"},
            ),
        )
        await audit_service.record(
            db,
            action="wallet.debit_for_ride",
            entity="wallet",
            entity_id=wallet.id,
            actor_id=user_id,
            before=before,
            after=ledger_store.snapshot(wallet),
            status="failure",
            detail=f"insufficient funds for ride {ride_id}: requested {amount}",
        )
        logger.warning(
            "Ride payment declined",
            extra_data={
                "wallet_id": str(wallet.id),
                "ride_id": str(ride_id),
                "amount": amount,
                "balance": wallet.balance,
            },
        )
        raise InsufficientFundsError(
            wallet_id=wallet.id,
            requested=amount,
            available=wallet.balance,
            transaction_id=failed.id,
        )

    payment = await _flush_or_conflict(
        db,
        RidePayment(
            wallet_id=wallet.id,
            ledger=Ledger.BALANCE,
            amount=-amount,
            status=TransactionStatus.COMPLETED,
            payment_method=PaymentMethod.WALLET,
            ride_id=ride_id,
            description="Ride payment",
            details=details,
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.debit_for_ride",
        entity="wallet",
        entity_id=wallet.id,
        actor_id=user_id,
        before=before,
        after=ledger_store.snapshot(wallet),
        detail=f"ride {ride_id}",
    )
    logger.info(
        "Ride payment completed",
        extra_data={
            "wallet_id": str(wallet.id),
            "ride_id": str(ride_id),
            "transaction_id": str(payment.id),
            "amount": amount,
            "balance": wallet.balance,
        },
    )
    return payment


# ---------------------------------------------------------------------------
# Deposits and top-ups
# ---------------------------------------------------------------------------

async def credit_deposit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    payment_method: PaymentMethod,
    ledger: Ledger = Ledger.DEPOSIT,
    provider: str | None = None,
    external_id: str | None = None,
    idempotency_key: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> Deposit:
    """
    Credit confirmed funds to the wallet (the security deposit by default).

    Used for payments the gateway has already confirmed synchronously and
    for staff-recorded deposits. Asynchronous gateway flows use
    initiate_top_up + apply_gateway_callback instead.
    """
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)
    replay = await _replayed(db, idempotency_key, wallet.id)
    if replay is not None:
        return replay

    before = ledger_store.snapshot(wallet)
    await ledger_store.apply_delta(db, wallet, ledger, amount)

    deposit = await _flush_or_conflict(
        db,
        Deposit(
            wallet_id=wallet.id,
            ledger=ledger,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            payment_method=payment_method,
            provider=provider,
            external_id=external_id,
            idempotency_key=idempotency_key,
            description="Deposit" if ledger == Ledger.DEPOSIT else "Top-up",
            processed_by=actor_id,
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.credit_deposit",
        entity="wallet",
        entity_id=wallet.id,
        actor_id=actor_id or user_id,
        before=before,
        after=ledger_store.snapshot(wallet),
    )
    logger.info(
        "Deposit credited",
        extra_data={
            "wallet_id": str(wallet.id),
            "transaction_id": str(deposit.id),
            "ledger": ledger.value,
            "amount": amount,
        },
    )
    return deposit


async def initiate_top_up(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY,
    provider: str | None = None,
    ledger: Ledger = Ledger.BALANCE,
    idempotency_key: str | None = None,
) -> Deposit:
    """
    Record a PENDING top-up awaiting the payment gateway's callback.

    No wallet amount changes here; the gateway request itself is made by
    the caller outside the store transaction.
    """
    _require_positive(amount)

    wallet = await get_wallet(db, user_id)
    replay = await _replayed(db, idempotency_key, wallet.id)
    if replay is not None:
        return replay

    top_up = await _flush_or_conflict(
        db,
        Deposit(
            wallet_id=wallet.id,
            ledger=ledger,
            amount=amount,
            status=TransactionStatus.PENDING,
            payment_method=payment_method,
            provider=provider,
            idempotency_key=idempotency_key,
            description="Top-up" if ledger == Ledger.BALANCE else "Deposit",
        ),
    )
    logger.info(
        "Top-up initiated",
        extra_data={"wallet_id": str(wallet.id), "transaction_id": str(top_up.id), "amount": amount},
    )
    return top_up


async def apply_gateway_callback(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    succeeded: bool,
    amount: int,
    external_id: str | None = None,
) -> Deposit:
    """
    Apply a payment-gateway result to a PENDING top-up, exactly once.

    A redelivered callback (or one racing with the first delivery) finds
    the transaction no longer PENDING and returns it unchanged, so the
    wallet is credited once no matter how often the gateway calls.

    Raises:
        TransactionNotFoundError: Unknown id or not a gateway top-up.
        InvalidAmountError: The confirmed amount differs from the request.
    """
    txn = await ledger_store.get_transaction(db, transaction_id)
    if txn is None or txn.type != TransactionType.DEPOSIT:
        raise TransactionNotFoundError(transaction_id)
    if amount != txn.amount:
        raise InvalidAmountError(
            f"Callback amount {amount} does not match requested amount {txn.amount}"
        )
    if txn.status != TransactionStatus.PENDING:
        logger.info(
            "Duplicate gateway callback ignored",
            extra_data={"transaction_id": str(txn.id), "status": txn.status.value},
        )
        return txn

    wallet = await ledger_store.lock_wallet(db, wallet_id=txn.wallet_id)
    before = ledger_store.snapshot(wallet)
    new_status = TransactionStatus.COMPLETED if succeeded else TransactionStatus.FAILED

    moved = await ledger_store.transition_status(
        db,
        txn.id,
        TransactionStatus.PENDING,
        new_status,
        external_id=external_id,
        processed_at=datetime.now(timezone.utc),
    )
    if not moved:
        return await ledger_store.get_transaction(db, txn.id)

    if succeeded:
        await ledger_store.apply_delta(db, wallet, txn.ledger, txn.amount)

    await audit_service.record(
        db,
        action="wallet.gateway_callback",
        entity="transaction",
        entity_id=txn.id,
        before=before,
        after=ledger_store.snapshot(wallet),
        status="success" if succeeded else "failure",
        detail=f"gateway reported {'success' if succeeded else 'failure'}",
    )
    logger.info(
        "Gateway callback applied",
        extra_data={
            "transaction_id": str(txn.id),
            "status": new_status.value,
            "amount": amount,
            "wallet_id": str(wallet.id),
        },
    )
    return await ledger_store.get_transaction(db, txn.id)


# ---------------------------------------------------------------------------
# Damage charges and reversals
# ---------------------------------------------------------------------------

async def charge_damage(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reason: str,
    admin_id: uuid.UUID,
    incident_id: uuid.UUID | None = None,
) -> DamageCharge:
    """
    Take a staff-issued charge out of the rider's security deposit.

    The deposit may reach exactly zero. A charge larger than the deposit is
    refused, never clamped.

    Raises:
        InvalidAmountError: amount is not a positive integer.
        InsufficientDepositError: amount > deposit. Nothing is recorded
            except a failure audit entry.
    """
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)
    before = ledger_store.snapshot(wallet)
    applied = await ledger_store.apply_delta(db, wallet, Ledger.DEPOSIT, -amount)

    if not applied:
        await audit_service.record(
            db,
            action="wallet.charge_damage",
            entity="wallet",
            entity_id=wallet.id,
            actor_id=admin_id,
            before=before,
            after=before,
            status="failure",
            detail=f"insufficient deposit: requested {amount}",
        )
        logger.warning(
            "Damage charge refused",
            extra_data={"wallet_id": str(wallet.id), "amount": amount, "deposit": wallet.deposit},
        )
        raise InsufficientDepositError(
            wallet_id=wallet.id,
            requested=amount,
            available=wallet.deposit,
        )

    charge = await ledger_store.add_transaction(
        db,
        DamageCharge(
            wallet_id=wallet.id,
            ledger=Ledger.DEPOSIT,
            amount=-amount,
            status=TransactionStatus.COMPLETED,
            payment_method=PaymentMethod.ADMIN,
            incident_id=incident_id,
            description=reason[:255],
            processed_by=admin_id,
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.charge_damage",
        entity="wallet",
        entity_id=wallet.id,
        actor_id=admin_id,
        before=before,
        after=ledger_store.snapshot(wallet),
        detail=reason[:500],
    )
    logger.info(
        "Damage charge applied",
        extra_data={
            "wallet_id": str(wallet.id),
            "transaction_id": str(charge.id),
            "incident_id": str(incident_id) if incident_id else None,
            "amount": amount,
            "deposit": wallet.deposit,
        },
    )
    return charge


async def reverse_charge(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    admin_id: uuid.UUID | None = None,
    note: str | None = None,
) -> Refund:
    """
    Offset a completed charge with a Refund of the same size.

    The original row is never modified. Reversing the same charge twice
    returns the first Refund.

    Raises:
        TransactionNotFoundError: Unknown id.
        WrongStateError: The transaction isn't a completed debit.
    """
    original = await ledger_store.get_transaction(db, transaction_id)
    if original is None:
        raise TransactionNotFoundError(transaction_id)
    if original.status != TransactionStatus.COMPLETED or original.amount >= 0:
        raise WrongStateError("Only completed charges can be reversed")

    wallet = await ledger_store.lock_wallet(db, wallet_id=original.wallet_id)

    existing = await db.execute(
        select(Refund).where(Refund.reverses_transaction_id == original.id)
    )
    prior = existing.scalar_one_or_none()
    if prior is not None:
        return prior

    before = ledger_store.snapshot(wallet)
    await ledger_store.apply_delta(db, wallet, original.ledger, -original.amount)

    refund = await _flush_or_conflict(
        db,
        Refund(
            wallet_id=wallet.id,
            ledger=original.ledger,
            amount=-original.amount,
            status=TransactionStatus.COMPLETED,
            payment_method=PaymentMethod.ADMIN,
            reverses_transaction_id=original.id,
            description=f"Reversal of {original.type.value.lower()}",
            note=note,
            processed_by=admin_id,
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.reverse_charge",
        entity="transaction",
        entity_id=original.id,
        actor_id=admin_id,
        before=before,
        after=ledger_store.snapshot(wallet),
        detail=note,
    )
    logger.info(
        "Charge reversed",
        extra_data={
            "wallet_id": str(wallet.id),
            "reversed_transaction_id": str(original.id),
            "refund_id": str(refund.id),
            "amount": refund.amount,
        },
    )
    return refund


async def credit_refund(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    admin_id: uuid.UUID,
    incident_id: uuid.UUID,
    note: str | None = None,
) -> Refund:
    """Goodwill credit to the balance for a resolved incident."""
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)
    before = ledger_store.snapshot(wallet)
    await ledger_store.apply_delta(db, wallet, Ledger.BALANCE, amount)

    refund = await ledger_store.add_transaction(
        db,
        Refund(
            wallet_id=wallet.id,
            ledger=Ledger.BALANCE,
            amount=amount,
            status=TransactionStatus.COMPLETED,
            payment_method=PaymentMethod.ADMIN,
            refund_incident_id=incident_id,
            description="Incident refund",
            note=note,
            processed_by=admin_id,
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.incident_refund",
        entity="incident",
        entity_id=incident_id,
        actor_id=admin_id,
        before=before,
        after=ledger_store.snapshot(wallet),
        detail=note,
    )
    return refund


# ---------------------------------------------------------------------------
# Cash deposit requests
# ---------------------------------------------------------------------------

async def create_cash_deposit_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    note: str | None = None,
    idempotency_key: str | None = None,
) -> CashDeposit:
    """
    Declare cash handed to staff. Nothing is credited until validation.

    Raises:
        InvalidAmountError: amount below settings.CASH_DEPOSIT_MINIMUM.
    """
    _require_positive(amount)
    if amount < settings.CASH_DEPOSIT_MINIMUM:
        raise InvalidAmountError(
            f"Cash deposits start at {settings.CASH_DEPOSIT_MINIMUM} {settings.CURRENCY}"
        )

    wallet = await get_wallet(db, user_id)
    replay = await _replayed(db, idempotency_key, wallet.id)
    if replay is not None:
        return replay

    request = await _flush_or_conflict(
        db,
        CashDeposit(
            wallet_id=wallet.id,
            ledger=Ledger.BALANCE,
            amount=amount,
            status=TransactionStatus.PENDING,
            payment_method=PaymentMethod.CASH,
            description="Cash deposit request",
            note=note,
            idempotency_key=idempotency_key,
        ),
    )
    logger.info(
        "Cash deposit requested",
        extra_data={"wallet_id": str(wallet.id), "transaction_id": str(request.id), "amount": amount},
    )
    return request


async def _own_pending_cash_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_id: uuid.UUID,
) -> CashDeposit:
    txn = await get_transaction(db, transaction_id, user_id=user_id)
    if txn.type != TransactionType.CASH_DEPOSIT:
        raise TransactionNotFoundError(transaction_id)
    if txn.status != TransactionStatus.PENDING:
        raise WrongStateError(f"Cash deposit request is already {txn.status.value}")
    return txn


async def update_cash_deposit_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_id: uuid.UUID,
    amount: int | None = None,
    note: str | None = None,
) -> CashDeposit:
    """Change the amount or note of one's own request while it is PENDING."""
    txn = await _own_pending_cash_request(db, user_id, transaction_id)

    values = {}
    if amount is not None:
        _require_positive(amount)
        if amount < settings.CASH_DEPOSIT_MINIMUM:
            raise InvalidAmountError(
                f"Cash deposits start at {settings.CASH_DEPOSIT_MINIMUM} {settings.CURRENCY}"
            )
        values.update(amount=amount, total_amount=amount)
    if note is not None:
        values["note"] = note

    if values:
        moved = await ledger_store.transition_status(
            db, txn.id, TransactionStatus.PENDING, TransactionStatus.PENDING, **values
        )
        if not moved:
            raise WrongStateError("Cash deposit request was processed meanwhile")
    return await ledger_store.get_transaction(db, txn.id)


async def cancel_cash_deposit_request(
    db: AsyncSession,
    user_id: uuid.UUID,
    transaction_id: uuid.UUID,
) -> CashDeposit:
    txn = await _own_pending_cash_request(db, user_id, transaction_id)
    moved = await ledger_store.transition_status(
        db, txn.id, TransactionStatus.PENDING, TransactionStatus.CANCELLED
    )
    if not moved:
        raise WrongStateError("Cash deposit request was processed meanwhile")
    logger.info("Cash deposit request cancelled", extra_data={"transaction_id": str(txn.id)})
    return await ledger_store.get_transaction(db, txn.id)


async def validate_cash_deposit(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    admin_id: uuid.UUID,
    note: str | None = None,
) -> CashDeposit:
    """
    Confirm a cash deposit and credit the balance, exactly once.

    Raises:
        TransactionNotFoundError: Unknown id or not a cash deposit.
        WrongStateError: Already validated, rejected or cancelled.
    """
    txn = await ledger_store.get_transaction(db, transaction_id)
    if txn is None or txn.type != TransactionType.CASH_DEPOSIT:
        raise TransactionNotFoundError(transaction_id)

    wallet = await ledger_store.lock_wallet(db, wallet_id=txn.wallet_id)
    before = ledger_store.snapshot(wallet)

    moved = await ledger_store.transition_status(
        db,
        txn.id,
        TransactionStatus.PENDING,
        TransactionStatus.COMPLETED,
        processed_by=admin_id,
        processed_at=datetime.now(timezone.utc),
        note=note if note is not None else txn.note,
    )
    if not moved:
        raise WrongStateError(f"Cash deposit request is already {txn.status.value}")

    txn = await ledger_store.get_transaction(db, txn.id)
    await ledger_store.apply_delta(db, wallet, txn.ledger, txn.amount)

    await audit_service.record(
        db,
        action="wallet.validate_cash_deposit",
        entity="transaction",
        entity_id=txn.id,
        actor_id=admin_id,
        before=before,
        after=ledger_store.snapshot(wallet),
        detail=note,
    )
    logger.info(
        "Cash deposit validated",
        extra_data={
            "transaction_id": str(txn.id),
            "wallet_id": str(wallet.id),
            "amount": txn.amount,
            "balance": wallet.balance,
        },
    )
    return txn


async def reject_cash_deposit(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    admin_id: uuid.UUID,
    note: str | None = None,
) -> CashDeposit:
    """Refuse a cash deposit request. The wallet is left untouched."""
    txn = await ledger_store.get_transaction(db, transaction_id)
    if txn is None or txn.type != TransactionType.CASH_DEPOSIT:
        raise TransactionNotFoundError(transaction_id)

    moved = await ledger_store.transition_status(
        db,
        txn.id,
        TransactionStatus.PENDING,
        TransactionStatus.REJECTED,
        processed_by=admin_id,
        processed_at=datetime.now(timezone.utc),
        note=note,
    )
    if not moved:
        raise WrongStateError(f"Cash deposit request is already {txn.status.value}")

    await audit_service.record(
        db,
        action="wallet.reject_cash_deposit",
        entity="transaction",
        entity_id=txn.id,
        actor_id=admin_id,
        status="failure",
        detail=note,
    )
    logger.info("Cash deposit rejected", extra_data={"transaction_id": str(txn.id)})
    return await ledger_store.get_transaction(db, txn.id)


# ---------------------------------------------------------------------------
# Balance <-> deposit, withdrawals
# ---------------------------------------------------------------------------

async def transfer_to_deposit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    idempotency_key: str | None = None,
) -> tuple[DepositTransfer, DepositTransfer]:
    """
    Move spendable funds into the security deposit.

    Two legs sharing a transfer_pair_id: -amount on BALANCE, +amount on
    DEPOSIT. The idempotency key, when given, is stored on the debit leg.

    Raises:
        InsufficientFundsError: balance < amount.
    """
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)
    replay = await _replayed(db, idempotency_key, wallet.id)
    if replay is not None:
        result = await db.execute(
            select(DepositTransfer)
            .where(DepositTransfer.transfer_pair_id == replay.transfer_pair_id)
            .order_by(DepositTransfer.amount)
        )
        debit_leg, credit_leg = result.scalars().all()
        return debit_leg, credit_leg

    before = ledger_store.snapshot(wallet)
    if not await ledger_store.apply_delta(db, wallet, Ledger.BALANCE, -amount):
        raise InsufficientFundsError(
            wallet_id=wallet.id,
            requested=amount,
            available=wallet.balance,
        )
    await ledger_store.apply_delta(db, wallet, Ledger.DEPOSIT, amount)

    pair_id = uuid.uuid4()
    now = datetime.now(timezone.utc)
    debit_leg = DepositTransfer(
        wallet_id=wallet.id,
        ledger=Ledger.BALANCE,
        amount=-amount,
        status=TransactionStatus.COMPLETED,
        payment_method=PaymentMethod.WALLET,
        transfer_pair_id=pair_id,
        idempotency_key=idempotency_key,
        description="Transfer to deposit",
        processed_at=now,
    )
    credit_leg = DepositTransfer(
        wallet_id=wallet.id,
        ledger=Ledger.DEPOSIT,
        amount=amount,
        status=TransactionStatus.COMPLETED,
        payment_method=PaymentMethod.WALLET,
        transfer_pair_id=pair_id,
        description="Transfer from balance",
        processed_at=now,
    )
    await _flush_or_conflict(db, debit_leg)
    await _flush_or_conflict(db, credit_leg)

    await audit_service.record(
        db,
        action="wallet.transfer_to_deposit",
        entity="wallet",
        entity_id=wallet.id,
        actor_id=user_id,
        before=before,
        after=ledger_store.snapshot(wallet),
    )
    logger.info(
        "Balance moved to deposit",
        extra_data={"wallet_id": str(wallet.id), "amount": amount, "transfer_pair_id": str(pair_id)},
    )
    return debit_leg, credit_leg


async def withdraw(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY,
    idempotency_key: str | None = None,
) -> Withdrawal:
    """
    Pay out spendable funds.

    The payout itself is made by the gateway adapter after commit.

    Raises:
        InsufficientFundsError: balance < amount.
    """
    _require_positive(amount)

    wallet = await ledger_store.lock_wallet(db, user_id=user_id)
    replay = await _replayed(db, idempotency_key, wallet.id)
    if replay is not None:
        return replay

    before = ledger_store.snapshot(wallet)
    if not await ledger_store.apply_delta(db, wallet, Ledger.BALANCE, -amount):
        raise InsufficientFundsError(
            wallet_id=wallet.id,
            requested=amount,
            available=wallet.balance,
        )

    withdrawal = await _flush_or_conflict(
        db,
        Withdrawal(
            wallet_id=wallet.id,
            ledger=Ledger.BALANCE,
            amount=-amount,
            status=TransactionStatus.COMPLETED,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
            description="Withdrawal",
            processed_at=datetime.now(timezone.utc),
        ),
    )
    await audit_service.record(
        db,
        action="wallet.withdraw",
        entity="wallet",
        entity_id=wallet.id,
        actor_id=user_id,
        before=before,
        after=ledger_store.snapshot(wallet),
    )
    logger.info(
        "Withdrawal completed",
        extra_data={"wallet_id": str(wallet.id), "amount": amount, "balance": wallet.balance},
    )
    return withdrawal
