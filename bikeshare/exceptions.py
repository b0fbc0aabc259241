"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain errors (InsufficientFundsError,
SessionAlreadyActiveError, ...) without importing HTTP concepts. The handler
registered here translates every one of them into the same JSON shape:

    {"detail": "...", "error_type": "insufficient_funds", "retryable": false, ...}

Each error class declares its own HTTP status, a stable ``error_type`` code
and whether the caller may simply retry (only ConcurrencyConflictError).
Subclasses that carry extra context (amounts, ids) expose it through
``extra()`` so the client sees it in the body.

Exception hierarchy:
    BikeShareError (base)
    ├── NotConfiguredError          — no active pricing configuration / plan
    ├── PlanNotFoundError
    ├── InsufficientFundsError      — debit larger than the spendable balance
    ├── InsufficientDepositError    — damage charge larger than the deposit
    ├── InvalidAmountError          — zero/negative amount, amount mismatch
    ├── SessionAlreadyActiveError   — second concurrent ride for a user
    ├── BikeUnavailableError / BikeNotFoundError
    ├── SessionNotFoundError
    ├── WrongStateError             — ride/transaction/incident in the wrong status
    ├── UnpaidBalanceError          — rider owes a failed ride payment
    ├── ConcurrencyConflictError    — lock timeout / lost race, retryable
    ├── WalletNotFoundError / TransactionNotFoundError / IncidentNotFoundError
    ├── UnauthorizedAccessError
    ├── DuplicateEmailError
    └── InvalidCredentialsError
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BikeShareError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 400
    error_type: str = "bike_share_error"
    retryable: bool = False

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)

    def extra(self) -> dict:
        """Additional fields rendered in the error response body."""
        return {}


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

class NotConfiguredError(BikeShareError):
    """Raised when no active pricing configuration (or usable plan) exists."""

    status_code = 503
    error_type = "not_configured"

    def __init__(self, detail: str = "No active pricing configuration"):
        super().__init__(detail)


class PlanNotFoundError(BikeShareError):
    status_code = 404
    error_type = "plan_not_found"

    def __init__(self, plan_id: uuid.UUID):
        self.plan_id = plan_id
        super().__init__(f"Pricing plan {plan_id} not found")


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

class InsufficientFundsError(BikeShareError):
    """
    Raised when a debit would make the spendable balance negative.

    Attributes:
        wallet_id: The wallet that lacks funds.
        requested: The amount the operation tried to debit.
        available: The balance at the time of the attempt.
    """

    status_code = 422
    error_type = "insufficient_funds"

    def __init__(
        self,
        wallet_id: uuid.UUID,
        requested: int,
        available: int,
        transaction_id: uuid.UUID | None = None,
    ):
        self.wallet_id = wallet_id
        self.requested = requested
        self.available = available
        # The FAILED transaction recorded for the attempt, if any
        self.transaction_id = transaction_id
        super().__init__(
            f"Insufficient funds: requested {requested}, available {available}"
        )

    def extra(self) -> dict:
        return {"requested": self.requested, "available": self.available}


class InsufficientDepositError(BikeShareError):
    """
    Raised when a damage charge exceeds the security deposit.

    The charge is refused outright; it is never clamped to what the deposit
    holds.
    """

    status_code = 422
    error_type = "insufficient_deposit"

    def __init__(self, wallet_id: uuid.UUID, requested: int, available: int):
        self.wallet_id = wallet_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient deposit: requested {requested}, available {available}"
        )

    def extra(self) -> dict:
        return {"requested": self.requested, "available": self.available}


class InvalidAmountError(BikeShareError):
    status_code = 422
    error_type = "invalid_amount"

    def __init__(self, detail: str = "Amount must be a positive integer"):
        super().__init__(detail)


class WalletNotFoundError(BikeShareError):
    status_code = 404
    error_type = "wallet_not_found"

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        super().__init__(f"No wallet for user {user_id}")


class TransactionNotFoundError(BikeShareError):
    status_code = 404
    error_type = "transaction_not_found"

    def __init__(self, transaction_id: uuid.UUID):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class ConcurrencyConflictError(BikeShareError):
    """
    Raised when a write lost a race or could not get its lock in time.

    Nothing was written; the whole operation can be retried as is.
    """

    status_code = 409
    error_type = "concurrency_conflict"
    retryable = True

    def __init__(self, detail: str = "Concurrent update, please retry"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Rides and bikes
# ---------------------------------------------------------------------------

class SessionAlreadyActiveError(BikeShareError):
    status_code = 409
    error_type = "session_already_active"

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        super().__init__("A ride is already in progress for this user")


class SessionNotFoundError(BikeShareError):
    status_code = 404
    error_type = "session_not_found"

    def __init__(self, ride_id: uuid.UUID | None = None):
        self.ride_id = ride_id
        super().__init__(
            f"Ride {ride_id} not found" if ride_id else "No ride in progress"
        )


class BikeNotFoundError(BikeShareError):
    status_code = 404
    error_type = "bike_not_found"

    def __init__(self, bike_id: uuid.UUID):
        self.bike_id = bike_id
        super().__init__(f"Bike {bike_id} not found")


class BikeUnavailableError(BikeShareError):
    status_code = 409
    error_type = "bike_unavailable"

    def __init__(self, bike_id: uuid.UUID):
        self.bike_id = bike_id
        super().__init__(f"Bike {bike_id} is not available")


class WrongStateError(BikeShareError):
    """Raised when an entity is not in the status an operation requires."""

    status_code = 409
    error_type = "wrong_state"

    def __init__(self, detail: str):
        super().__init__(detail)


class UnpaidBalanceError(BikeShareError):
    """Raised when a rider with an unsettled ride payment tries to ride again."""

    status_code = 402
    error_type = "unpaid_balance"

    def __init__(self, ride_ids: list[uuid.UUID], amount_due: int):
        self.ride_ids = ride_ids
        self.amount_due = amount_due
        super().__init__(
            f"Outstanding ride payments of {amount_due} must be settled first"
        )

    def extra(self) -> dict:
        return {
            "amount_due": self.amount_due,
            "ride_ids": [str(ride_id) for ride_id in self.ride_ids],
        }


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

class IncidentNotFoundError(BikeShareError):
    status_code = 404
    error_type = "incident_not_found"

    def __init__(self, incident_id: uuid.UUID):
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UnauthorizedAccessError(BikeShareError):
    """Raised when a user attempts to access a resource they don't own."""

    status_code = 403
    error_type = "unauthorized_access"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class DuplicateEmailError(BikeShareError):
    """Raised when attempting to register with an email that's already in use."""

    status_code = 409
    error_type = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidCredentialsError(BikeShareError):
    """Raised when login credentials are incorrect."""

    status_code = 401
    error_type = "invalid_credentials"

    def __init__(self):
        super().__init__("Invalid email or password")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain error handler with the FastAPI application.

    This is called once during app startup in main.py.
    """

    @app.exception_handler(BikeShareError)
    async def bike_share_error_handler(
        request: Request, exc: BikeShareError
    ) -> JSONResponse:
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error_type": exc.error_type,
                "retryable": exc.retryable,
                **exc.extra(),
            },
            headers=headers,
        )
