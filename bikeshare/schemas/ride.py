"""
Pydantic schemas for ride endpoints.

Locations are free-form {"lat", "lng", "address"} objects reported by the
app; the ledger only stores them alongside the ride.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bikeshare.models.ride import PaymentStatus, RideStatus


class Location(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str | None = Field(None, max_length=255)


class StartRideRequest(BaseModel):
    """Request body for POST /rides. Without plan_id the bike's plan is used."""
    bike_id: uuid.UUID
    plan_id: uuid.UUID | None = None
    start_location: Location | None = None


class EndRideRequest(BaseModel):
    end_location: Location | None = None
    distance_km: float | None = Field(None, ge=0)


class CancelRideRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)


class RideResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    bike_id: uuid.UUID
    plan_id: uuid.UUID | None
    start_time: datetime
    end_time: datetime | None
    start_location: dict | None
    end_location: dict | None
    distance_km: float | None
    duration_minutes: int | None
    cost: int | None
    status: RideStatus
    payment_status: PaymentStatus
    payment_transaction_id: uuid.UUID | None
    pricing_snapshot: dict | None
    cancel_reason: str | None

    model_config = {"from_attributes": True}


class RideStatsResponse(BaseModel):
    """Totals over the rider's completed rides."""
    total_rides: int
    total_distance_km: float
    total_duration_minutes: int
    total_cost: int
    average_duration_minutes: float
    average_cost: int
