"""
Bikes router — fleet lookup for riders.

Endpoints:
  GET /bikes            — List bikes (defaults to AVAILABLE ones)
  GET /bikes/{bike_id}  — A single bike

Registering bikes and taking them out of service lives under /admin/bikes.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import get_current_user
from bikeshare.models.bike import BikeStatus
from bikeshare.models.user import User
from bikeshare.schemas.bike import BikeResponse
from bikeshare.services import bike_service

router = APIRouter()


@router.get(
    "",
    response_model=list[BikeResponse],
    summary="List bikes",
)
async def list_bikes(
    status: BikeStatus = Query(BikeStatus.AVAILABLE, description="Filter by bike status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await bike_service.list_bikes(db, status_filter=status, limit=limit, offset=offset)


@router.get(
    "/{bike_id}",
    response_model=BikeResponse,
    summary="Get a bike",
)
async def get_bike(
    bike_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await bike_service.get_bike(db, bike_id)
