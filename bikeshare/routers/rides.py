"""
Rides router — the rider's session lifecycle.

Endpoints:
  POST /rides                  — Unlock a bike and start a ride
  GET  /rides                  — List own rides (newest first)
  GET  /rides/active           — The ride in progress, if any
  GET  /rides/stats            — Totals over completed rides
  GET  /rides/{ride_id}        — A single ride
  POST /rides/{ride_id}/end    — Return the bike; priced and paid from the wallet
  POST /rides/{ride_id}/cancel — Cancel without charge
  POST /rides/{ride_id}/settle — Pay a ride whose payment failed

The fixed paths (/active, /stats) are declared before /{ride_id} so they
are not captured by the parameterized route.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import get_current_rider
from bikeshare.models.ride import RideStatus
from bikeshare.models.user import User
from bikeshare.schemas.ride import (
    CancelRideRequest,
    EndRideRequest,
    RideResponse,
    RideStatsResponse,
    StartRideRequest,
)
from bikeshare.services import ride_service

router = APIRouter()


@router.post(
    "",
    response_model=RideResponse,
    status_code=201,
    summary="Start a ride",
)
async def start_ride(
    request: StartRideRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """
    Unlock an AVAILABLE bike. No money moves at start.

    Refused while the rider has another ride in progress or, by default,
    an unpaid ride outstanding.
    """
    return await ride_service.start_ride(
        db,
        user_id=user.id,
        bike_id=request.bike_id,
        plan_id=request.plan_id,
        start_location=request.start_location.model_dump() if request.start_location else None,
    )


@router.get(
    "",
    response_model=list[RideResponse],
    summary="List own rides",
)
async def list_rides(
    status: RideStatus | None = Query(None, description="Filter by ride status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.list_rides(
        db, user_id=user.id, status_filter=status, limit=limit, offset=offset
    )


@router.get(
    "/active",
    response_model=RideResponse | None,
    summary="Get the ride in progress",
)
async def get_active_ride(
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """Returns null when no ride is in progress."""
    return await ride_service.get_active_ride(db, user.id)


@router.get(
    "/stats",
    response_model=RideStatsResponse,
    summary="Ride statistics",
)
async def get_ride_stats(
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.get_ride_stats(db, user.id)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get a ride",
)
async def get_ride(
    ride_id: uuid.UUID,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.get_ride(db, user.id, ride_id)


@router.post(
    "/{ride_id}/end",
    response_model=RideResponse,
    summary="End a ride",
)
async def end_ride(
    ride_id: uuid.UUID,
    request: EndRideRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the bike. The ride is priced at this instant and the cost
    debited from the balance.

    When the balance doesn't cover the cost the ride still completes with
    payment_status FAILED; settle it with POST /rides/{ride_id}/settle.
    """
    return await ride_service.end_ride(
        db,
        user_id=user.id,
        ride_id=ride_id,
        end_location=request.end_location.model_dump() if request.end_location else None,
        distance_km=request.distance_km,
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
)
async def cancel_ride(
    ride_id: uuid.UUID,
    request: CancelRideRequest,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.cancel_ride(db, user.id, ride_id, reason=request.reason)


@router.post(
    "/{ride_id}/settle",
    response_model=RideResponse,
    summary="Pay a ride whose payment failed",
)
async def settle_ride(
    ride_id: uuid.UUID,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await ride_service.settle_failed_ride_payment(db, user.id, ride_id)
