"""
Bike service — the fleet registry the ride lifecycle depends on.

Riders list available bikes; staff register bikes, assign their default
pricing plan and take them in and out of service. A bike that is IN_USE
can only be released by ending or cancelling its ride.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.exceptions import BikeNotFoundError, PlanNotFoundError, WrongStateError
from bikeshare.logging_config import get_logger
from bikeshare.models.bike import Bike, BikeStatus
from bikeshare.models.pricing import PricingPlan

logger = get_logger(__name__)


async def list_bikes(
    db: AsyncSession,
    status_filter: BikeStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Bike]:
    query = select(Bike)
    if status_filter is not None:
        query = query.where(Bike.status == status_filter)
    query = query.order_by(Bike.code).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_bike(db: AsyncSession, bike_id: uuid.UUID) -> Bike:
    result = await db.execute(
        select(Bike).where(Bike.id == bike_id).execution_options(populate_existing=True)
    )
    bike = result.scalar_one_or_none()
    if bike is None:
        raise BikeNotFoundError(bike_id)
    return bike


async def create_bike(
    db: AsyncSession,
    code: str,
    model: str,
    pricing_plan_id: uuid.UUID | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
) -> Bike:
    if pricing_plan_id is not None and await db.get(PricingPlan, pricing_plan_id) is None:
        raise PlanNotFoundError(pricing_plan_id)
    bike = Bike(
        code=code,
        model=model,
        pricing_plan_id=pricing_plan_id,
        latitude=latitude,
        longitude=longitude,
        status=BikeStatus.AVAILABLE,
    )
    db.add(bike)
    await db.flush()
    logger.info("Bike registered", extra_data={"bike_id": str(bike.id), "code": code})
    return bike


async def update_bike(
    db: AsyncSession,
    bike_id: uuid.UUID,
    status: BikeStatus | None = None,
    pricing_plan_id: uuid.UUID | None = None,
    model: str | None = None,
) -> Bike:
    """
    Staff changes to a bike.

    Raises:
        WrongStateError: Moving a bike into or out of IN_USE by hand.
    """
    bike = await get_bike(db, bike_id)
    if status is not None and status != bike.status:
        if BikeStatus.IN_USE in (status, bike.status):
            raise WrongStateError("IN_USE is managed by rides")
        bike.status = status
    if pricing_plan_id is not None:
        if await db.get(PricingPlan, pricing_plan_id) is None:
            raise PlanNotFoundError(pricing_plan_id)
        bike.pricing_plan_id = pricing_plan_id
    if model is not None:
        bike.model = model
    await db.flush()
    return bike
