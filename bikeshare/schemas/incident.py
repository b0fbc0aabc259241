"""
Pydantic schemas for incidents and admin charges.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bikeshare.models.incident import IncidentKind, IncidentStatus


class AdminChargeCreate(BaseModel):
    """Charge levied by staff against a rider's deposit."""
    user_id: uuid.UUID
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=1000)
    bike_id: uuid.UUID | None = None
    ride_id: uuid.UUID | None = None


class AdminChargeUpdate(BaseModel):
    amount: int | None = Field(None, gt=0)
    reason: str | None = Field(None, min_length=1, max_length=1000)


class IncidentReport(BaseModel):
    """Rider-reported problem with a bike or a ride."""
    kind: IncidentKind = IncidentKind.DAMAGE_REPORT
    description: str = Field(min_length=1, max_length=1000)
    bike_id: uuid.UUID | None = None
    ride_id: uuid.UUID | None = None


class IncidentResolve(BaseModel):
    status: IncidentStatus
    refund_amount: int | None = Field(None, gt=0)
    admin_note: str | None = Field(None, max_length=1000)


class IncidentResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    bike_id: uuid.UUID | None
    ride_id: uuid.UUID | None
    kind: IncidentKind
    description: str
    status: IncidentStatus
    charge_amount: int | None
    charge_transaction_id: uuid.UUID | None
    refund_amount: int | None
    admin_note: str | None
    created_by: uuid.UUID | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    deleted_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
