"""
Public router — unauthenticated price estimates.

Endpoint:
  GET /public/pricing?minutes=90[&plan_id=...]  — Quote a ride starting now

When no pricing configuration is active the quote uses display-only rates
and says so with ``configured: false``.
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.database import get_db
from bikeshare.schemas.pricing import QuoteResponse
from bikeshare.services import pricing_service

router = APIRouter()


@router.get(
    "/pricing",
    response_model=QuoteResponse,
    summary="Estimate the price of a ride",
)
async def quote(
    minutes: int = Query(60, ge=0, le=60 * 24 * 90),
    plan_id: uuid.UUID | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.quote(db, minutes=minutes, plan_id=plan_id)
