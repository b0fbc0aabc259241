"""
Wallet router — the rider's balance, history and self-service money moves.

Rider endpoints (scoped to the authenticated user's wallet):
  GET    /wallet                              — Balance, deposit and reconciliation
  GET    /wallet/transactions                 — History (filters + pagination)
  GET    /wallet/transactions/{id}            — A single transaction
  POST   /wallet/top-ups                      — Start a gateway top-up (PENDING)
  POST   /wallet/cash-deposits                — Declare cash handed to staff
  PATCH  /wallet/cash-deposits/{id}           — Edit a PENDING cash request
  DELETE /wallet/cash-deposits/{id}           — Cancel a PENDING cash request
  POST   /wallet/deposit-transfers            — Move balance into the deposit
  POST   /wallet/withdrawals                  — Pay out spendable funds

Every mutating endpoint accepts an optional idempotency key; replaying a
request with the same key returns the stored transaction.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import get_current_rider
from bikeshare.models.transaction import TransactionStatus, TransactionType
from bikeshare.models.user import User
from bikeshare.schemas.transaction import (
    AmountRequest,
    BalanceResponse,
    CashDepositRequest,
    CashDepositUpdateRequest,
    DepositTransferResponse,
    TopUpRequest,
    TransactionResponse,
)
from bikeshare.services import wallet_service

router = APIRouter()


@router.get(
    "",
    response_model=BalanceResponse,
    summary="Get wallet balance and deposit",
)
async def get_balance(
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """
    Spendable balance and security deposit, both as stored on the wallet
    and as summed from COMPLETED transactions.

    All amounts are integers in the wallet's currency (XAF).
    """
    await wallet_service.get_or_create_wallet(db, user.id)
    return await wallet_service.get_balance(db, user.id)


@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="List wallet transactions",
)
async def list_transactions(
    type: TransactionType | None = Query(None, description="Filter by kind"),
    status: TransactionStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """Transactions of the rider's wallet, newest first."""
    return await wallet_service.get_transaction_history(
        db,
        user_id=user.id,
        type_filter=type,
        status_filter=status,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="Get a single transaction",
)
async def get_transaction(
    transaction_id: uuid.UUID,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.get_transaction(db, transaction_id, user_id=user.id)


@router.post(
    "/top-ups",
    response_model=TransactionResponse,
    status_code=201,
    summary="Start a gateway top-up",
)
async def create_top_up(
    request: TopUpRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a PENDING deposit awaiting the payment gateway.

    The wallet is credited only when the gateway confirms through
    POST /payments/callback with this transaction's id.
    """
    return await wallet_service.initiate_top_up(
        db,
        user_id=user.id,
        amount=request.amount,
        payment_method=request.payment_method,
        provider=request.provider,
        ledger=request.ledger,
        idempotency_key=request.idempotency_key,
    )


@router.post(
    "/cash-deposits",
    response_model=TransactionResponse,
    status_code=201,
    summary="Declare a cash deposit",
)
async def create_cash_deposit(
    request: CashDepositRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """Nothing is credited until a staff member validates the request."""
    return await wallet_service.create_cash_deposit_request(
        db,
        user_id=user.id,
        amount=request.amount,
        note=request.note,
        idempotency_key=request.idempotency_key,
    )


@router.patch(
    "/cash-deposits/{transaction_id}",
    response_model=TransactionResponse,
    summary="Edit a pending cash deposit",
)
async def update_cash_deposit(
    transaction_id: uuid.UUID,
    request: CashDepositUpdateRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.update_cash_deposit_request(
        db,
        user_id=user.id,
        transaction_id=transaction_id,
        amount=request.amount,
        note=request.note,
    )


@router.delete(
    "/cash-deposits/{transaction_id}",
    response_model=TransactionResponse,
    summary="Cancel a pending cash deposit",
)
async def cancel_cash_deposit(
    transaction_id: uuid.UUID,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.cancel_cash_deposit_request(
        db, user_id=user.id, transaction_id=transaction_id
    )


@router.post(
    "/deposit-transfers",
    response_model=DepositTransferResponse,
    status_code=201,
    summary="Move balance into the security deposit",
)
async def transfer_to_deposit(
    request: AmountRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """
    Two linked transactions are written: a debit of the balance and a
    credit of the deposit, sharing one transfer_pair_id.
    """
    debit_leg, credit_leg = await wallet_service.transfer_to_deposit(
        db,
        user_id=user.id,
        amount=request.amount,
        idempotency_key=request.idempotency_key,
    )
    return DepositTransferResponse(
        transfer_pair_id=debit_leg.transfer_pair_id,
        amount=credit_leg.amount,
        debit_transaction=TransactionResponse.model_validate(debit_leg),
        credit_transaction=TransactionResponse.model_validate(credit_leg),
    )


@router.post(
    "/withdrawals",
    response_model=TransactionResponse,
    status_code=201,
    summary="Withdraw spendable funds",
)
async def withdraw(
    request: AmountRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.withdraw(
        db,
        user_id=user.id,
        amount=request.amount,
        payment_method=request.payment_method,
        idempotency_key=request.idempotency_key,
    )
