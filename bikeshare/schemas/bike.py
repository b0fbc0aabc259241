"""Pydantic schemas for the bike fleet."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bikeshare.models.bike import BikeStatus


class BikeCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    model: str = Field(min_length=1, max_length=100)
    pricing_plan_id: uuid.UUID | None = None
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class BikeUpdate(BaseModel):
    status: BikeStatus | None = None
    pricing_plan_id: uuid.UUID | None = None
    model: str | None = Field(None, min_length=1, max_length=100)


class BikeResponse(BaseModel):
    id: uuid.UUID
    code: str
    model: str
    status: BikeStatus
    latitude: float | None
    longitude: float | None
    pricing_plan_id: uuid.UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}
