"""
Pricing admin router — the pricing catalog.

All endpoints require ADMIN role. Every write is audited under the admin's
id. Plans, rules and promotions always belong to the active configuration.

Endpoints:
  GET    /admin/pricing/current?date=&hour=        — Effective pricing at a local date/hour
  GET    /admin/pricing/configs                    — List configurations
  POST   /admin/pricing/configs                    — Create (and by default activate)
  PATCH  /admin/pricing/configs/{config_id}        — Edit / activate
  GET    /admin/pricing/plans                      — Plans of the active configuration
  POST   /admin/pricing/plans                      — Add a plan
  GET    /admin/pricing/plans/{plan_id}            — A single plan
  PATCH  /admin/pricing/plans/{plan_id}            — Edit a plan
  PUT    /admin/pricing/plans/{plan_id}/override   — Set the overtime policy
  DELETE /admin/pricing/plans/{plan_id}/override   — Remove the overtime policy
  GET    /admin/pricing/rules                      — Time-based multipliers
  POST   /admin/pricing/rules
  PATCH  /admin/pricing/rules/{rule_id}
  DELETE /admin/pricing/rules/{rule_id}
  GET    /admin/pricing/promotions
  POST   /admin/pricing/promotions
  PATCH  /admin/pricing/promotions/{promotion_id}
"""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from bikeshare.config import settings
from bikeshare.database import get_db
from bikeshare.dependencies import require_admin
from bikeshare.models.user import User
from bikeshare.schemas.pricing import (
    CurrentPricingResponse,
    EffectivePlanResponse,
    PlanOverrideRequest,
    PlanOverrideResponse,
    PricingConfigCreate,
    PricingConfigResponse,
    PricingConfigUpdate,
    PricingPlanCreate,
    PricingPlanResponse,
    PricingPlanUpdate,
    PricingRuleCreate,
    PricingRuleResponse,
    PricingRuleUpdate,
    PromotionCreate,
    PromotionResponse,
    PromotionUpdate,
)
from bikeshare.services import pricing_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Effective pricing
# ---------------------------------------------------------------------------

@router.get(
    "/current",
    response_model=CurrentPricingResponse,
    summary="[Admin] Effective pricing at a local date and hour",
)
async def get_current_pricing(
    on_date: date | None = Query(None, alias="date", description="Local date; defaults to today"),
    hour: int = Query(ge=0, le=23),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Rates of every active plan after the winning rule and active
    promotions, evaluated in the pricing timezone.
    """
    config, plans, target = await pricing_service.get_current_effective_pricing(
        db, on_date or date.today(), hour
    )
    return CurrentPricingResponse(
        config_id=config.id,
        unlock_fee=config.unlock_fee,
        currency=settings.CURRENCY,
        target=target,
        plans=[EffectivePlanResponse.model_validate(plan) for plan in plans],
    )


# ---------------------------------------------------------------------------
# Configurations
# ---------------------------------------------------------------------------

@router.get("/configs", response_model=list[PricingConfigResponse], summary="[Admin] List configurations")
async def list_configs(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.list_configs(db)


@router.post(
    "/configs",
    response_model=PricingConfigResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a configuration",
)
async def create_config(
    request: PricingConfigCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Activating the new configuration deactivates the previous one."""
    return await pricing_service.create_config(
        db,
        admin_id=admin.id,
        name=request.name,
        unlock_fee=request.unlock_fee,
        base_hourly_rate=request.base_hourly_rate,
        activate=request.activate,
    )


@router.patch(
    "/configs/{config_id}",
    response_model=PricingConfigResponse,
    summary="[Admin] Edit or activate a configuration",
)
async def update_config(
    config_id: uuid.UUID,
    request: PricingConfigUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.update_config(
        db, admin.id, config_id, **request.model_dump(exclude_unset=True)
    )


# ---------------------------------------------------------------------------
# Plans and overrides
# ---------------------------------------------------------------------------

@router.get("/plans", response_model=list[PricingPlanResponse], summary="[Admin] List plans")
async def list_plans(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.list_plans(db)


@router.post(
    "/plans",
    response_model=PricingPlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Add a plan",
)
async def create_plan(
    request: PricingPlanCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    plan = await pricing_service.create_plan(db, admin.id, **request.model_dump())
    return await pricing_service.get_plan(db, plan.id)


@router.get("/plans/{plan_id}", response_model=PricingPlanResponse, summary="[Admin] Get a plan")
async def get_plan(
    plan_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.get_plan(db, plan_id)


@router.patch("/plans/{plan_id}", response_model=PricingPlanResponse, summary="[Admin] Edit a plan")
async def update_plan(
    plan_id: uuid.UUID,
    request: PricingPlanUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.update_plan(
        db, admin.id, plan_id, **request.model_dump(exclude_unset=True)
    )


@router.put(
    "/plans/{plan_id}/override",
    response_model=PlanOverrideResponse,
    summary="[Admin] Set a plan's overtime policy",
)
async def set_override(
    plan_id: uuid.UUID,
    request: PlanOverrideRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.set_plan_override(db, admin.id, plan_id, **request.model_dump())


@router.delete(
    "/plans/{plan_id}/override",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Remove a plan's overtime policy",
)
async def delete_override(
    plan_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await pricing_service.delete_plan_override(db, admin.id, plan_id)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@router.get("/rules", response_model=list[PricingRuleResponse], summary="[Admin] List rules")
async def list_rules(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Rules in evaluation order (highest priority first)."""
    return await pricing_service.list_rules(db)


@router.post(
    "/rules",
    response_model=PricingRuleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Add a rule",
)
async def create_rule(
    request: PricingRuleCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.create_rule(db, admin.id, **request.model_dump())


@router.patch("/rules/{rule_id}", response_model=PricingRuleResponse, summary="[Admin] Edit a rule")
async def update_rule(
    rule_id: uuid.UUID,
    request: PricingRuleUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await pricing_service.update_rule(
        db, admin.id, rule_id, **request.model_dump(exclude_unset=True)
    )


@router.delete(
    "/rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a rule",
)
async def delete_rule(
    rule_id: uuid.UUID,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await pricing_service.delete_rule(db, admin.id, rule_id)


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------

@router.get("/promotions", response_model=list[PromotionResponse], summary="[Admin] List promotions")
async def list_promotions(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    promotions = await pricing_service.list_promotions(db)
    return [PromotionResponse.from_promotion(promotion) for promotion in promotions]


@router.post(
    "/promotions",
    response_model=PromotionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a promotion",
)
async def create_promotion(
    request: PromotionCreate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    fields = request.model_dump(exclude={"plan_ids", "start_date", "end_date"})
    promotion = await pricing_service.create_promotion(
        db,
        admin.id,
        plan_ids=request.plan_ids,
        start_date=request.start_date,
        end_date=request.end_date,
        **fields,
    )
    return PromotionResponse.from_promotion(promotion)


@router.patch(
    "/promotions/{promotion_id}",
    response_model=PromotionResponse,
    summary="[Admin] Edit a promotion",
)
async def update_promotion(
    promotion_id: uuid.UUID,
    request: PromotionUpdate,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    promotion = await pricing_service.update_promotion(
        db, admin.id, promotion_id, **request.model_dump(exclude_unset=True)
    )
    return PromotionResponse.from_promotion(promotion)
