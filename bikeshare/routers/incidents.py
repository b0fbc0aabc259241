"""
Incidents router — riders report problems and see charges against them.

Endpoints:
  POST /incidents                — Report damage or another problem
  GET  /incidents                — Own incidents, admin charges included
  GET  /incidents/{incident_id}  — A single own incident
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.dependencies import get_current_rider
from bikeshare.models.user import User
from bikeshare.schemas.incident import IncidentReport, IncidentResponse
from bikeshare.services import incident_service

router = APIRouter()


@router.post(
    "",
    response_model=IncidentResponse,
    status_code=201,
    summary="Report an incident",
)
async def report_incident(
    request: IncidentReport,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await incident_service.report_incident(
        db,
        user_id=user.id,
        kind=request.kind,
        description=request.description,
        bike_id=request.bike_id,
        ride_id=request.ride_id,
    )


@router.get(
    "",
    response_model=list[IncidentResponse],
    summary="List own incidents",
)
async def list_incidents(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await incident_service.list_incidents(db, user_id=user.id, limit=limit, offset=offset)


@router.get(
    "/{incident_id}",
    response_model=IncidentResponse,
    summary="Get an incident",
)
async def get_incident(
    incident_id: uuid.UUID,
    user: User = Depends(get_current_rider),
    db: AsyncSession = Depends(get_db),
):
    return await incident_service.get_incident(db, incident_id, user_id=user.id)
