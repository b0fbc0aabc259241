"""
Audit service — append-only record of financial state changes.

Entries are added to the caller's session, so they commit or roll back
with the change they describe. Refused operations (insufficient funds,
insufficient deposit) write a "failure" entry; the request session commits
domain errors, so those entries survive the error response.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.models.audit_log import AuditLog


async def record(
    db: AsyncSession,
    action: str,
    entity: str,
    entity_id: uuid.UUID | None = None,
    actor_id: uuid.UUID | None = None,
    before: dict | None = None,
    after: dict | None = None,
    status: str = "success",
    detail: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        entity=entity,
        entity_id=entity_id,
        actor_id=actor_id,
        before=before,
        after=after,
        status=status,
        detail=detail,
    )
    db.add(entry)
    return entry


async def list_entries(
    db: AsyncSession,
    entity_id: uuid.UUID | None = None,
    action: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditLog]:
    """Audit entries, newest first, optionally filtered."""
    query = select(AuditLog)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)
    if action is not None:
        query = query.where(AuditLog.action == action)
    if status is not None:
        query = query.where(AuditLog.status == status)
    query = query.order_by(AuditLog.created_at.desc()).limit(limit).offset(offset)

    result = await db.execute(query)
    return list(result.scalars().all())
