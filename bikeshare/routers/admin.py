"""
Admin router — staff operations on riders' money, incidents and the fleet.

All endpoints require ADMIN role, and every write is audited under the
admin's id. The pricing catalog has its own router (/admin/pricing).

Endpoints:
  GET    /admin/wallets/{user_id}                       — Any rider's balance + reconciliation
  GET    /admin/wallets/{user_id}/transactions          — Any rider's history
  POST   /admin/wallets/{user_id}/deposits              — Record a confirmed deposit
  POST   /admin/cash-deposits/{transaction_id}/validate — Credit a cash deposit
  POST   /admin/cash-deposits/{transaction_id}/reject   — Refuse a cash deposit
  POST   /admin/charges                                 — Charge a rider's deposit
  PATCH  /admin/charges/{incident_id}                   — Change a charge
  DELETE /admin/charges/{incident_id}                   — Withdraw a charge
  GET    /admin/incidents                               — All incidents
  GET    /admin/incidents/{incident_id}                 — Any incident
  POST   /admin/incidents/{incident_id}/resolve         — Resolve, optionally refunding
  GET    /admin/transactions                            — All transactions
  GET    /admin/transactions/{transaction_id}           — Any transaction
  GET    /admin/audit-logs                              — Audit trail
  GET    /admin/rides                                   — All rides
  GET    /admin/bikes                                   — Whole fleet
  POST   /admin/bikes                                   — Register a bike
  PATCH  /admin/bikes/{bike_id}                         — Status / plan changes

By consolidating admin routes in one router, we avoid route-ordering
conflicts that arise when multiple routers share a prefix and have
overlapping parameterized paths.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import require_admin
from bikeshare.models.bike import BikeStatus
from bikeshare.models.incident import IncidentKind, IncidentStatus
from bikeshare.models.ride import PaymentStatus, RideStatus
from bikeshare.models.transaction import TransactionStatus, TransactionType
from bikeshare.models.user import User
from bikeshare.schemas.audit import AuditLogResponse
from bikeshare.schemas.bike import BikeCreate, BikeResponse, BikeUpdate
from bikeshare.schemas.incident import (
    AdminChargeCreate,
    AdminChargeUpdate,
    IncidentResolve,
    IncidentResponse,
)
from bikeshare.schemas.ride import RideResponse
from bikeshare.schemas.transaction import (
    AdminDepositRequest,
    AdminNoteRequest,
    BalanceResponse,
    TransactionResponse,
)
from bikeshare.services import (
    audit_service,
    bike_service,
    incident_service,
    ride_service,
    wallet_service,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

@router.get(
    "/wallets/{user_id}",
    response_model=BalanceResponse,
    summary="[Admin] Get any rider's wallet",
)
async def admin_get_wallet(
    user_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Cached and ledger-derived balance and deposit for integrity checks.

    ``match: false`` means the wallet drifted from its transactions.
    """
    return await wallet_service.get_balance(db, user_id)


@router.get(
    "/wallets/{user_id}/transactions",
    response_model=list[TransactionResponse],
    summary="[Admin] List any rider's transactions",
)
async def admin_list_wallet_transactions(
    user_id: uuid.UUID,
    type: TransactionType | None = Query(None),
    status: TransactionStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.get_transaction_history(
        db, user_id, type_filter=type, status_filter=status, limit=limit, offset=offset
    )


@router.post(
    "/wallets/{user_id}/deposits",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Record a confirmed deposit",
)
async def admin_credit_deposit(
    user_id: uuid.UUID,
    request: AdminDepositRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Credit funds received at a station, to the deposit by default."""
    return await wallet_service.credit_deposit(
        db,
        user_id=user_id,
        amount=request.amount,
        payment_method=request.payment_method,
        ledger=request.ledger,
        idempotency_key=request.idempotency_key,
        actor_id=admin.id,
    )


# ---------------------------------------------------------------------------
# Cash deposits
# ---------------------------------------------------------------------------

@router.post(
    "/cash-deposits/{transaction_id}/validate",
    response_model=TransactionResponse,
    summary="[Admin] Validate a cash deposit",
)
async def admin_validate_cash_deposit(
    transaction_id: uuid.UUID,
    request: AdminNoteRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Credits the rider's balance. A second validation is refused."""
    return await wallet_service.validate_cash_deposit(
        db, transaction_id, admin_id=admin.id, note=request.note
    )


@router.post(
    "/cash-deposits/{transaction_id}/reject",
    response_model=TransactionResponse,
    summary="[Admin] Reject a cash deposit",
)
async def admin_reject_cash_deposit(
    transaction_id: uuid.UUID,
    request: AdminNoteRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.reject_cash_deposit(
        db, transaction_id, admin_id=admin.id, note=request.note
    )


# ---------------------------------------------------------------------------
# Admin charges
# ---------------------------------------------------------------------------

@router.post(
    "/charges",
    response_model=IncidentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Charge a rider's deposit",
)
async def admin_create_charge(
    request: AdminChargeCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Creates an ADMIN_CHARGE incident and debits the deposit.

    Refused with insufficient_deposit when the charge exceeds the deposit;
    no incident or transaction is kept in that case.
    """
    return await incident_service.create_admin_charge(
        db,
        admin_id=admin.id,
        user_id=request.user_id,
        amount=request.amount,
        reason=request.reason,
        bike_id=request.bike_id,
        ride_id=request.ride_id,
    )


@router.patch(
    "/charges/{incident_id}",
    response_model=IncidentResponse,
    summary="[Admin] Change a charge",
)
async def admin_update_charge(
    incident_id: uuid.UUID,
    request: AdminChargeUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """The charge in force is reversed and the new amount charged."""
    return await incident_service.update_admin_charge(
        db, admin.id, incident_id, amount=request.amount, reason=request.reason
    )


@router.delete(
    "/charges/{incident_id}",
    response_model=IncidentResponse,
    summary="[Admin] Withdraw a charge",
)
async def admin_delete_charge(
    incident_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Refunds the charge to the deposit and soft-deletes the incident."""
    return await incident_service.delete_admin_charge(db, admin.id, incident_id)


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

@router.get(
    "/incidents",
    response_model=list[IncidentResponse],
    summary="[Admin] List incidents",
)
async def admin_list_incidents(
    user_id: uuid.UUID | None = Query(None),
    kind: IncidentKind | None = Query(None),
    status: IncidentStatus | None = Query(None),
    include_deleted: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await incident_service.list_incidents(
        db,
        user_id=user_id,
        kind=kind,
        status_filter=status,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/incidents/{incident_id}",
    response_model=IncidentResponse,
    summary="[Admin] Get any incident",
)
async def admin_get_incident(
    incident_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await incident_service.get_incident(db, incident_id, include_deleted=True)


@router.post(
    "/incidents/{incident_id}/resolve",
    response_model=IncidentResponse,
    summary="[Admin] Resolve a reported incident",
)
async def admin_resolve_incident(
    incident_id: uuid.UUID,
    request: IncidentResolve,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """A refund, when given, is credited to the rider's balance once."""
    return await incident_service.resolve_incident(
        db,
        admin_id=admin.id,
        incident_id=incident_id,
        status=request.status,
        refund_amount=request.refund_amount,
        admin_note=request.admin_note,
    )


# ---------------------------------------------------------------------------
# Transactions and audit
# ---------------------------------------------------------------------------

@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="[Admin] List all transactions",
)
async def admin_list_all_transactions(
    type: TransactionType | None = Query(None, description="Filter by kind"),
    status: TransactionStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.admin_list_transactions(
        db, type_filter=type, status_filter=status, limit=limit, offset=offset
    )


@router.get(
    "/transactions/{transaction_id}",
    response_model=TransactionResponse,
    summary="[Admin] Get any transaction",
)
async def admin_get_transaction(
    transaction_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await wallet_service.get_transaction(db, transaction_id)


@router.get(
    "/audit-logs",
    response_model=list[AuditLogResponse],
    summary="[Admin] Audit trail",
)
async def admin_list_audit_logs(
    entity_id: uuid.UUID | None = Query(None),
    action: str | None = Query(None, description="e.g. wallet.validate_cash_deposit"),
    status: str | None = Query(None, pattern="^(success|failure)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.list_entries(
        db, entity_id=entity_id, action=action, status=status, limit=limit, offset=offset
    )


# ---------------------------------------------------------------------------
# Rides and fleet
# ---------------------------------------------------------------------------

@router.get(
    "/rides",
    response_model=list[RideResponse],
    summary="[Admin] List all rides",
)
async def admin_list_rides(
    status: RideStatus | None = Query(None),
    payment_status: PaymentStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.admin_list_rides(
        db, status_filter=status, payment_status=payment_status, limit=limit, offset=offset
    )


@router.get(
    "/bikes",
    response_model=list[BikeResponse],
    summary="[Admin] List the fleet",
)
async def admin_list_bikes(
    status: BikeStatus | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await bike_service.list_bikes(db, status_filter=status, limit=limit, offset=offset)


@router.post(
    "/bikes",
    response_model=BikeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Register a bike",
)
async def admin_create_bike(
    request: BikeCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await bike_service.create_bike(db, **request.model_dump())


@router.patch(
    "/bikes/{bike_id}",
    response_model=BikeResponse,
    summary="[Admin] Update a bike",
)
async def admin_update_bike(
    bike_id: uuid.UUID,
    request: BikeUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """IN_USE is set and cleared by rides only."""
    return await bike_service.update_bike(
        db, bike_id, status=request.status, pricing_plan_id=request.pricing_plan_id, model=request.model
    )
