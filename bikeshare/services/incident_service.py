"""
Incident service — admin charges against the deposit and incident resolution.

An admin charge is an Incident of kind ADMIN_CHARGE plus the DamageCharge
transaction currently in force. The two reference each other explicitly:
DamageCharge.incident_id (foreign key) and Incident.charge_transaction_id.

    create   incident row, then charge_damage(incident_id=...)
    update   reverse the charge in force, charge the new amount
    delete   reverse the charge in force, soft-delete the incident

Reversal never touches the original DamageCharge row; it adds a Refund of
the same size to the deposit. The sum of an incident's charges and
refunds is therefore always the amount currently in force (0 once deleted).

Rider-reported incidents (DAMAGE_REPORT, OTHER) are resolved by staff,
optionally with a goodwill refund to the spendable balance.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.exceptions import (
    ConcurrencyConflictError,
    IncidentNotFoundError,
    InsufficientDepositError,
    InvalidAmountError,
    WrongStateError,
)
from bikeshare.logging_config import get_logger
from bikeshare.models.incident import Incident, IncidentKind, IncidentStatus
from bikeshare.models.transaction import DamageCharge, Ledger, Refund, TransactionStatus
from bikeshare.services import audit_service, ledger_store, wallet_service

logger = get_logger(__name__)


async def get_incident(
    db: AsyncSession,
    incident_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    include_deleted: bool = False,
) -> Incident:
    """An incident, optionally scoped to its rider."""
    result = await db.execute(
        select(Incident)
        .where(Incident.id == incident_id)
        .execution_options(populate_existing=True)
    )
    incident = result.scalar_one_or_none()
    if (
        incident is None
        or (user_id is not None and incident.user_id != user_id)
        or (incident.deleted_at is not None and not include_deleted)
    ):
        raise IncidentNotFoundError(incident_id)
    return incident


async def list_incidents(
    db: AsyncSession,
    user_id: uuid.UUID | None = None,
    kind: IncidentKind | None = None,
    status_filter: IncidentStatus | None = None,
    include_deleted: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[Incident]:
    query = select(Incident)
    if user_id is not None:
        query = query.where(Incident.user_id == user_id)
    if kind is not None:
        query = query.where(Incident.kind == kind)
    if status_filter is not None:
        query = query.where(Incident.status == status_filter)
    if not include_deleted:
        query = query.where(Incident.deleted_at.is_(None))
    query = query.order_by(Incident.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Admin charges
# ---------------------------------------------------------------------------

async def create_admin_charge(
    db: AsyncSession,
    admin_id: uuid.UUID,
    user_id: uuid.UUID,
    amount: int,
    reason: str,
    bike_id: uuid.UUID | None = None,
    ride_id: uuid.UUID | None = None,
) -> Incident:
    """
    Levy a charge against a rider's deposit.

    Raises:
        InsufficientDepositError: amount > deposit. No incident is kept.
    """
    if amount <= 0:
        raise InvalidAmountError("Charge amount must be positive")

    incident = Incident(
        user_id=user_id,
        bike_id=bike_id,
        ride_id=ride_id,
        kind=IncidentKind.ADMIN_CHARGE,
        description=reason,
        status=IncidentStatus.OPEN,
        charge_amount=amount,
        created_by=admin_id,
    )
    db.add(incident)
    await db.flush()

    try:
        charge = await wallet_service.charge_damage(
            db,
            user_id=user_id,
            amount=amount,
            reason=reason,
            admin_id=admin_id,
            incident_id=incident.id,
        )
    except InsufficientDepositError:
        await db.delete(incident)
        await db.flush()
        raise

    incident.charge_transaction_id = charge.id
    await db.flush()
    logger.info(
        "Admin charge created",
        extra_data={"incident_id": str(incident.id), "transaction_id": str(charge.id), "amount": amount},
    )
    return incident


async def update_admin_charge(
    db: AsyncSession,
    admin_id: uuid.UUID,
    incident_id: uuid.UUID,
    amount: int | None = None,
    reason: str | None = None,
) -> Incident:
    """
    Change the amount (and/or reason) of an admin charge.

    The charge in force is reversed and the new amount charged, in one
    store transaction. The new amount is checked against the deposit as it
    will stand after the reversal, before anything is written.

    Raises:
        IncidentNotFoundError: Unknown or deleted incident.
        WrongStateError: The incident isn't an admin charge.
        InsufficientDepositError: New amount > deposit + current charge.
    """
    incident = await get_incident(db, incident_id)
    if incident.kind != IncidentKind.ADMIN_CHARGE:
        raise WrongStateError("Only admin charges can be edited")

    if reason is not None:
        incident.description = reason

    if amount is None or amount == incident.charge_amount:
        await db.flush()
        return incident
    if amount <= 0:
        raise InvalidAmountError("Charge amount must be positive")

    wallet = await ledger_store.lock_wallet(db, user_id=incident.user_id)
    available = wallet.deposit + (incident.charge_amount or 0)
    if amount > available:
        raise InsufficientDepositError(wallet_id=wallet.id, requested=amount, available=available)

    before = {"charge_amount": incident.charge_amount}
    if incident.charge_transaction_id is not None:
        await wallet_service.reverse_charge(
            db, incident.charge_transaction_id, admin_id=admin_id, note="Admin charge edited"
        )
    try:
        charge = await wallet_service.charge_damage(
            db,
            user_id=incident.user_id,
            amount=amount,
            reason=incident.description,
            admin_id=admin_id,
            incident_id=incident.id,
        )
    except InsufficientDepositError as e:
        # Deposit moved between the check and the charge; retry the edit
        raise ConcurrencyConflictError() from e

    incident.charge_amount = amount
    incident.charge_transaction_id = charge.id
    await db.flush()

    await audit_service.record(
        db,
        action="incident.update_charge",
        entity="incident",
        entity_id=incident.id,
        actor_id=admin_id,
        before=before,
        after={"charge_amount": amount},
    )
    return incident


async def delete_admin_charge(
    db: AsyncSession,
    admin_id: uuid.UUID,
    incident_id: uuid.UUID,
) -> Incident:
    """
    Withdraw an admin charge: refund it to the deposit and soft-delete.

    The original DamageCharge row is left untouched.
    """
    incident = await get_incident(db, incident_id)
    if incident.kind != IncidentKind.ADMIN_CHARGE:
        raise WrongStateError("Only admin charges can be deleted")

    refund = None
    if incident.charge_transaction_id is not None:
        refund = await wallet_service.reverse_charge(
            db, incident.charge_transaction_id, admin_id=admin_id, note="Admin charge deleted"
        )

    incident.deleted_at = datetime.now(timezone.utc)
    incident.status = IncidentStatus.CLOSED
    incident.resolved_by = admin_id
    incident.resolved_at = incident.deleted_at
    await db.flush()

    await audit_service.record(
        db,
        action="incident.delete_charge",
        entity="incident",
        entity_id=incident.id,
        actor_id=admin_id,
        before={"charge_amount": incident.charge_amount},
        after={"refund_transaction_id": str(refund.id) if refund else None},
    )
    logger.info(
        "Admin charge deleted",
        extra_data={"incident_id": str(incident.id), "refund_id": str(refund.id) if refund else None},
    )
    return incident


# ---------------------------------------------------------------------------
# Rider-reported incidents
# ---------------------------------------------------------------------------

async def report_incident(
    db: AsyncSession,
    user_id: uuid.UUID,
    kind: IncidentKind,
    description: str,
    bike_id: uuid.UUID | None = None,
    ride_id: uuid.UUID | None = None,
) -> Incident:
    if kind == IncidentKind.ADMIN_CHARGE:
        raise WrongStateError("Riders cannot create admin charges")
    incident = Incident(
        user_id=user_id,
        bike_id=bike_id,
        ride_id=ride_id,
        kind=kind,
        description=description,
        status=IncidentStatus.OPEN,
    )
    db.add(incident)
    await db.flush()
    logger.info("Incident reported", extra_data={"incident_id": str(incident.id), "kind": kind.value})
    return incident


async def resolve_incident(
    db: AsyncSession,
    admin_id: uuid.UUID,
    incident_id: uuid.UUID,
    status: IncidentStatus,
    refund_amount: int | None = None,
    admin_note: str | None = None,
) -> Incident:
    """
    Move a reported incident forward, refunding the rider when resolved.

    A refund is credited at most once per incident, only on the transition
    to RESOLVED. It is credited before the incident changes, so a refused
    refund leaves the incident exactly as it was.

    Raises:
        WrongStateError: Admin charge, already closed/resolved, or a refund
            requested for a status other than RESOLVED.
        InvalidAmountError: refund_amount is not a positive integer.
    """
    if refund_amount is not None and (
        isinstance(refund_amount, bool) or not isinstance(refund_amount, int) or refund_amount <= 0
    ):
        raise InvalidAmountError(f"Refund must be a positive integer, got {refund_amount!r}")

    incident = await get_incident(db, incident_id)
    if incident.kind == IncidentKind.ADMIN_CHARGE:
        raise WrongStateError("Admin charges are changed by editing or deleting them")
    if incident.status in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED):
        raise WrongStateError(f"Incident is already {incident.status.value}")
    if refund_amount is not None and status != IncidentStatus.RESOLVED:
        raise WrongStateError("Refunds are only issued when resolving an incident")

    if refund_amount is not None:
        await wallet_service.credit_refund(
            db,
            user_id=incident.user_id,
            amount=refund_amount,
            admin_id=admin_id,
            incident_id=incident.id,
            note=admin_note,
        )

    before = {"status": incident.status.value}
    incident.status = status
    incident.refund_amount = refund_amount
    if admin_note is not None:
        incident.admin_note = admin_note
    if status in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED):
        incident.resolved_by = admin_id
        incident.resolved_at = datetime.now(timezone.utc)
    await db.flush()

    await audit_service.record(
        db,
        action="incident.resolve",
        entity="incident",
        entity_id=incident.id,
        actor_id=admin_id,
        before=before,
        after={"status": status.value, "refund_amount": refund_amount},
    )
    return incident


async def charge_ledger_total(db: AsyncSession, incident_id: uuid.UUID) -> int:
    """Net effect of an incident's charges and reversals on the deposit."""
    charges = await db.execute(
        select(DamageCharge).where(
            DamageCharge.incident_id == incident_id,
            DamageCharge.status == TransactionStatus.COMPLETED,
        )
    )
    charge_rows = list(charges.scalars().all())
    total = sum(charge.amount for charge in charge_rows)
    if charge_rows:
        refunds = await db.execute(
            select(Refund).where(
                Refund.reverses_transaction_id.in_([charge.id for charge in charge_rows]),
                Refund.ledger == Ledger.DEPOSIT,
            )
        )
        total += sum(refund.amount for refund in refunds.scalars().all())
    return total
