"""
Ride service — the session lifecycle coordinator.

    start_ride   NONE -> IN_PROGRESS        no money moves
    end_ride     IN_PROGRESS -> COMPLETED   price at end instant, then debit
    cancel_ride  IN_PROGRESS -> CANCELLED   no charge, bike released

Start:
  The bike flips AVAILABLE -> IN_USE with a guarded UPDATE, and the ride
  insert is guarded by the partial unique index "one IN_PROGRESS ride per
  user/bike". Both happen in the same store transaction, so of two racing
  starts only one can commit.

End:
  Pricing is resolved and the cost computed before anything is written. A
  pricing error (NotConfiguredError) aborts with the ride still in
  progress. The ride is then closed with a guarded UPDATE (a second end
  request loses and gets WrongStateError), the bike is released, and the
  wallet is debited. When the balance doesn't cover the cost the ride
  still completes: payment_status is FAILED, the failed RidePayment is on
  record, and the rider must settle before riding again (see
  settings.BLOCK_RIDES_WITH_UNPAID_BALANCE). A ConcurrencyConflictError
  from the wallet rolls the whole end request back; it can be retried.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.config import settings
from bikeshare.exceptions import (
    BikeNotFoundError,
    BikeUnavailableError,
    InsufficientDepositError,
    InsufficientFundsError,
    PlanNotFoundError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
    UnpaidBalanceError,
    WrongStateError,
)
from bikeshare.logging_config import get_logger
from bikeshare.models.bike import Bike, BikeStatus
from bikeshare.models.pricing import PricingPlan
from bikeshare.models.ride import PaymentStatus, Ride, RideStatus
from bikeshare.services import audit_service, pricing_service, wallet_service
from bikeshare.services.cost_calculator import compute_cost
from bikeshare.services.pricing_resolver import as_utc

logger = get_logger(__name__)


async def _get_ride(db: AsyncSession, ride_id: uuid.UUID) -> Ride | None:
    result = await db.execute(
        select(Ride).where(Ride.id == ride_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_ride(db: AsyncSession, user_id: uuid.UUID, ride_id: uuid.UUID) -> Ride:
    """A ride owned by ``user_id``; someone else's ride reads as not found."""
    ride = await _get_ride(db, ride_id)
    if ride is None or ride.user_id != user_id:
        raise SessionNotFoundError(ride_id)
    return ride


async def get_active_ride(db: AsyncSession, user_id: uuid.UUID) -> Ride | None:
    result = await db.execute(
        select(Ride)
        .where(Ride.user_id == user_id, Ride.status == RideStatus.IN_PROGRESS)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_unpaid_rides(db: AsyncSession, user_id: uuid.UUID) -> list[Ride]:
    """Completed rides whose payment failed and hasn't been settled."""
    result = await db.execute(
        select(Ride)
        .where(Ride.user_id == user_id, Ride.payment_status == PaymentStatus.FAILED)
        .order_by(Ride.end_time)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

async def start_ride(
    db: AsyncSession,
    user_id: uuid.UUID,
    bike_id: uuid.UUID,
    plan_id: uuid.UUID | None = None,
    start_location: dict | None = None,
) -> Ride:
    """
    Unlock a bike and open a ride.

    Args:
        db: Database session.
        user_id: The rider.
        bike_id: Bike to unlock; must be AVAILABLE.
        plan_id: Pricing plan chosen by the rider; defaults to the bike's plan.
        start_location: {"lat", "lng", "address"} reported by the app.

    Returns:
        The IN_PROGRESS Ride.

    Raises:
        UnpaidBalanceError: The rider has failed ride payments outstanding.
        InsufficientDepositError: Deposit below settings.REQUIRED_DEPOSIT.
        SessionAlreadyActiveError: The rider already has a ride in progress.
        BikeNotFoundError / BikeUnavailableError: Bike missing or not AVAILABLE.
        PlanNotFoundError: plan_id doesn't exist.
    """
    if settings.BLOCK_RIDES_WITH_UNPAID_BALANCE:
        unpaid = await get_unpaid_rides(db, user_id)
        if unpaid:
            raise UnpaidBalanceError(
                ride_ids=[ride.id for ride in unpaid],
                amount_due=sum(ride.cost or 0 for ride in unpaid),
            )

    if settings.REQUIRED_DEPOSIT > 0:
        wallet = await wallet_service.get_wallet(db, user_id)
        if wallet.deposit < settings.REQUIRED_DEPOSIT:
            raise InsufficientDepositError(
                wallet_id=wallet.id,
                requested=settings.REQUIRED_DEPOSIT,
                available=wallet.deposit,
            )

    if await get_active_ride(db, user_id) is not None:
        raise SessionAlreadyActiveError(user_id)

    bike = await db.get(Bike, bike_id)
    if bike is None:
        raise BikeNotFoundError(bike_id)

    if plan_id is not None and await db.get(PricingPlan, plan_id) is None:
        raise PlanNotFoundError(plan_id)

    claimed = await db.execute(
        update(Bike)
        .where(Bike.id == bike_id, Bike.status == BikeStatus.AVAILABLE)
        .values(status=BikeStatus.IN_USE, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise BikeUnavailableError(bike_id)

    ride = Ride(
        user_id=user_id,
        bike_id=bike_id,
        plan_id=plan_id or bike.pricing_plan_id,
        start_time=datetime.now(timezone.utc),
        start_location=start_location,
        status=RideStatus.IN_PROGRESS,
        payment_status=PaymentStatus.PENDING,
    )
    db.add(ride)
    try:
        await db.flush()
    except IntegrityError as e:
        # Lost the race against a concurrent start for this user or bike
        await db.rollback()
        raise SessionAlreadyActiveError(user_id) from e

    await audit_service.record(
        db,
        action="ride.start",
        entity="ride",
        entity_id=ride.id,
        actor_id=user_id,
        after={"bike_id": str(bike_id), "start_location": start_location},
    )
    logger.info(
        "Ride started",
        extra_data={"ride_id": str(ride.id), "user_id": str(user_id), "bike_id": str(bike_id)},
    )
    return ride


# ---------------------------------------------------------------------------
# End
# ---------------------------------------------------------------------------

async def _release_bike(db: AsyncSession, bike_id: uuid.UUID, location: dict | None) -> None:
    values = {"status": BikeStatus.AVAILABLE, "updated_at": datetime.now(timezone.utc)}
    if location and location.get("lat") is not None and location.get("lng") is not None:
        values.update(latitude=location["lat"], longitude=location["lng"])
    await db.execute(
        update(Bike)
        .where(Bike.id == bike_id, Bike.status == BikeStatus.IN_USE)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def end_ride(
    db: AsyncSession,
    user_id: uuid.UUID,
    ride_id: uuid.UUID | None = None,
    end_location: dict | None = None,
    distance_km: float | None = None,
    end_time: datetime | None = None,
) -> Ride:
    """
    Return the bike, price the ride at its end instant and collect payment.

    Args:
        db: Database session.
        user_id: The rider; must own the ride.
        ride_id: Ride to end; defaults to the rider's ride in progress.
        end_location: {"lat", "lng", "address"} reported by the app.
        distance_km: Distance measured by the GPS tracker.
        end_time: Return instant; defaults to now.

    Returns:
        The COMPLETED Ride, with payment_status PAID, FAILED or NOT_REQUIRED.

    Raises:
        SessionNotFoundError: No such ride (or none in progress).
        WrongStateError: The ride already ended or was cancelled.
        NotConfiguredError: No active pricing for the ride's plan.
        ConcurrencyConflictError: Wallet lock not granted in time.
    """
    if ride_id is None:
        ride = await get_active_ride(db, user_id)
        if ride is None:
            raise SessionNotFoundError()
    else:
        ride = await get_ride(db, user_id, ride_id)
    if ride.status != RideStatus.IN_PROGRESS:
        raise WrongStateError(f"Ride is already {ride.status.value}")

    ended_at = as_utc(end_time or datetime.now(timezone.utc))

    # Pricing first: any failure here leaves the ride untouched
    plan = await pricing_service.resolve_plan_for_ride(db, ride.plan_id, ended_at)
    breakdown = compute_cost(plan, ride.start_time, ended_at)
    snapshot = {**plan.receipt(), "breakdown": breakdown.as_dict()}

    closed = await db.execute(
        update(Ride)
        .where(Ride.id == ride.id, Ride.status == RideStatus.IN_PROGRESS)
        .values(
            status=RideStatus.COMPLETED,
            end_time=ended_at,
            end_location=end_location,
            distance_km=distance_km,
            duration_minutes=breakdown.actual_minutes,
            cost=breakdown.cost,
            pricing_snapshot=snapshot,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount != 1:
        raise WrongStateError("Ride was ended by a concurrent request")

    await _release_bike(db, ride.bike_id, end_location)

    payment_status = PaymentStatus.NOT_REQUIRED
    payment_id = None
    if breakdown.cost > 0:
        try:
            payment = await wallet_service.debit_for_session(
                db,
                user_id=user_id,
                amount=breakdown.cost,
                ride_id=ride.id,
                details=snapshot,
            )
            payment_status = PaymentStatus.PAID
            payment_id = payment.id
        except InsufficientFundsError as e:
            payment_status = PaymentStatus.FAILED
            payment_id = e.transaction_id

    await db.execute(
        update(Ride)
        .where(Ride.id == ride.id)
        .values(payment_status=payment_status, payment_transaction_id=payment_id)
        .execution_options(synchronize_session=False)
    )

    await pricing_service.increment_promotion_usage(
        db, [promo.id for promo in plan.applied_promotions]
    )

    await audit_service.record(
        db,
        action="ride.end",
        entity="ride",
        entity_id=ride.id,
        actor_id=user_id,
        after={
            "cost": breakdown.cost,
            "duration_minutes": breakdown.actual_minutes,
            "payment_status": payment_status.value,
        },
        status="success" if payment_status != PaymentStatus.FAILED else "failure",
    )
    logger.info(
        "Ride ended",
        extra_data={
            "ride_id": str(ride.id),
            "cost": breakdown.cost,
            "tier": breakdown.tier,
            "applied_rule": plan.applied_rule,
            "payment_status": payment_status.value,
        },
    )
    return await _get_ride(db, ride.id)


# ---------------------------------------------------------------------------
# Cancel and settle
# ---------------------------------------------------------------------------

async def cancel_ride(
    db: AsyncSession,
    user_id: uuid.UUID,
    ride_id: uuid.UUID,
    reason: str | None = None,
) -> Ride:
    """Cancel a ride in progress. No charge; the bike becomes AVAILABLE."""
    ride = await get_ride(db, user_id, ride_id)
    if ride.status != RideStatus.IN_PROGRESS:
        raise WrongStateError(f"Ride is already {ride.status.value}")

    cancelled = await db.execute(
        update(Ride)
        .where(Ride.id == ride.id, Ride.status == RideStatus.IN_PROGRESS)
        .values(
            status=RideStatus.CANCELLED,
            end_time=datetime.now(timezone.utc),
            payment_status=PaymentStatus.NOT_REQUIRED,
            cancel_reason=reason,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if cancelled.rowcount != 1:
        raise WrongStateError("Ride was ended by a concurrent request")

    await _release_bike(db, ride.bike_id, None)
    await audit_service.record(
        db, action="ride.cancel", entity="ride", entity_id=ride.id, actor_id=user_id, detail=reason
    )
    logger.info("Ride cancelled", extra_data={"ride_id": str(ride.id)})
    return await _get_ride(db, ride.id)


async def settle_failed_ride_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    ride_id: uuid.UUID,
) -> Ride:
    """
    Collect the cost of a completed ride whose payment failed.

    A new RidePayment is written; the failed one stays as it was.

    Raises:
        WrongStateError: The ride isn't awaiting payment.
        InsufficientFundsError: The balance still doesn't cover the cost.
    """
    ride = await get_ride(db, user_id, ride_id)
    if ride.status != RideStatus.COMPLETED or ride.payment_status != PaymentStatus.FAILED:
        raise WrongStateError("Ride has no outstanding payment")

    payment = await wallet_service.debit_for_session(
        db,
        user_id=user_id,
        amount=ride.cost,
        ride_id=ride.id,
        details=ride.pricing_snapshot,
    )
    await db.execute(
        update(Ride)
        .where(Ride.id == ride.id, Ride.payment_status == PaymentStatus.FAILED)
        .values(payment_status=PaymentStatus.PAID, payment_transaction_id=payment.id)
        .execution_options(synchronize_session=False)
    )
    logger.info("Outstanding ride payment settled", extra_data={"ride_id": str(ride.id)})
    return await _get_ride(db, ride.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def list_rides(
    db: AsyncSession,
    user_id: uuid.UUID,
    status_filter: RideStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Ride]:
    """A rider's rides, newest first."""
    query = select(Ride).where(Ride.user_id == user_id)
    if status_filter is not None:
        query = query.where(Ride.status == status_filter)
    query = query.order_by(Ride.start_time.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_ride_stats(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """Totals and averages over a rider's completed rides."""
    result = await db.execute(
        select(
            func.count(Ride.id),
            func.coalesce(func.sum(Ride.distance_km), 0.0),
            func.coalesce(func.sum(Ride.duration_minutes), 0),
            func.coalesce(func.sum(Ride.cost), 0),
        ).where(Ride.user_id == user_id, Ride.status == RideStatus.COMPLETED)
    )
    count, distance, duration, cost = result.one()
    return {
        "total_rides": count,
        "total_distance_km": round(float(distance), 2),
        "total_duration_minutes": int(duration),
        "total_cost": int(cost),
        "average_duration_minutes": round(int(duration) / count, 1) if count else 0.0,
        "average_cost": round(int(cost) / count) if count else 0,
    }


async def admin_list_rides(
    db: AsyncSession,
    status_filter: RideStatus | None = None,
    payment_status: PaymentStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Ride]:
    query = select(Ride)
    if status_filter is not None:
        query = query.where(Ride.status == status_filter)
    if payment_status is not None:
        query = query.where(Ride.payment_status == payment_status)
    query = query.order_by(Ride.start_time.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())
