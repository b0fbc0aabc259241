"""Pydantic schema for audit log entries (read-only)."""

import uuid
from datetime import datetime

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    action: str
    entity: str
    entity_id: uuid.UUID | None
    actor_id: uuid.UUID | None
    status: str
    before: dict | None
    after: dict | None
    detail: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
