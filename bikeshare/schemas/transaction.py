"""
Pydantic schemas for wallet and transaction endpoints.

All monetary amounts are integers in the currency's minor unit.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from bikeshare.models.transaction import Ledger, PaymentMethod, TransactionStatus, TransactionType


class TransactionResponse(BaseModel):
    """
    Public representation of a ledger entry.

    Kind-specific references are null on kinds that don't carry them.
    """
    id: uuid.UUID
    wallet_id: uuid.UUID
    type: TransactionType
    ledger: Ledger
    amount: int
    fees: int
    total_amount: int
    status: TransactionStatus
    payment_method: PaymentMethod
    description: str | None
    note: str | None
    ride_id: uuid.UUID | None = None
    incident_id: uuid.UUID | None = None
    reverses_transaction_id: uuid.UUID | None = None
    transfer_pair_id: uuid.UUID | None = None
    external_id: str | None = None
    provider: str | None = None
    processed_by: uuid.UUID | None
    processed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    """
    Wallet amounts with their ledger-derived counterparts.

    ``match`` is false only if a cached amount disagrees with the sum of
    COMPLETED transactions, which would indicate a data integrity issue.
    """
    wallet_id: uuid.UUID
    user_id: uuid.UUID
    currency: str
    balance: int
    deposit: int
    ledger_balance: int
    ledger_deposit: int
    match: bool


class TopUpRequest(BaseModel):
    """Request body for POST /wallet/top-ups."""
    amount: int = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY
    provider: str | None = Field(None, max_length=50)
    ledger: Ledger = Field(Ledger.BALANCE, description="Wallet field credited on success")
    idempotency_key: str | None = Field(None, max_length=100)

    @model_validator(mode="after")
    def gateway_methods_only(self):
        """Cash goes through cash deposit requests, not the gateway."""
        if self.payment_method in (PaymentMethod.CASH, PaymentMethod.ADMIN, PaymentMethod.WALLET):
            raise ValueError("Top-ups must use a gateway payment method")
        return self


class CashDepositRequest(BaseModel):
    """Request body for POST /wallet/cash-deposits."""
    amount: int = Field(gt=0)
    note: str | None = Field(None, max_length=500)
    idempotency_key: str | None = Field(None, max_length=100)


class CashDepositUpdateRequest(BaseModel):
    amount: int | None = Field(None, gt=0)
    note: str | None = Field(None, max_length=500)


class AmountRequest(BaseModel):
    """Request body for deposit transfers and withdrawals."""
    amount: int = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.MOBILE_MONEY
    idempotency_key: str | None = Field(None, max_length=100)


class DepositTransferResponse(BaseModel):
    transfer_pair_id: uuid.UUID
    amount: int
    debit_transaction: TransactionResponse
    credit_transaction: TransactionResponse


class GatewayCallbackRequest(BaseModel):
    """
    Payment gateway notification for a pending top-up.

    Delivered at least once; applying it twice has no further effect.
    """
    transaction_id: uuid.UUID
    status: str = Field(pattern="^(SUCCESS|FAILED)$")
    amount: int = Field(gt=0)
    external_id: str | None = Field(None, max_length=100)


class AdminNoteRequest(BaseModel):
    """Request body for validating/rejecting a cash deposit."""
    note: str | None = Field(None, max_length=500)


class AdminDepositRequest(BaseModel):
    """Staff-recorded deposit credited immediately."""
    amount: int = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    ledger: Ledger = Ledger.DEPOSIT
    idempotency_key: str | None = Field(None, max_length=100)
