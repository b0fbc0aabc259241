"""
Payments router — inbound payment-gateway notifications.

Endpoint:
  POST /payments/callback  — Apply a gateway result to a pending top-up

The gateway authenticates with the shared X-Callback-Token header
(settings.PAYMENT_CALLBACK_TOKEN). While no token is configured every
callback is refused with 503. Callbacks are delivered at least once;
the wallet is credited exactly once however often the same result arrives.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.config import settings
from bikeshare.database import get_db
from bikeshare.logging_config import get_logger
from bikeshare.schemas.transaction import GatewayCallbackRequest, TransactionResponse
from bikeshare.services import wallet_service

logger = get_logger(__name__)

router = APIRouter()


def verify_callback_token(x_callback_token: str | None = Header(None)) -> None:
    expected = settings.PAYMENT_CALLBACK_TOKEN
    if not expected:
        logger.warning("Refused gateway callback: no callback token configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment callbacks are not configured",
        )
    if x_callback_token is None or not hmac.compare_digest(x_callback_token, expected):
        logger.warning("Rejected gateway callback with a bad token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid callback token",
        )


@router.post(
    "/callback",
    response_model=TransactionResponse,
    summary="Payment gateway callback",
    dependencies=[Depends(verify_callback_token)],
)
async def gateway_callback(
    request: GatewayCallbackRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Move a PENDING top-up to COMPLETED (crediting the wallet) or FAILED.

    A redelivered callback returns the transaction as already recorded.
    """
    return await wallet_service.apply_gateway_callback(
        db,
        transaction_id=request.transaction_id,
        succeeded=request.status == "SUCCESS",
        amount=request.amount,
        external_id=request.external_id,
    )
