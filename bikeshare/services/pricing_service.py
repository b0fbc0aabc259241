"""
Pricing service — catalog administration and store-backed rate lookups.

Reads load the single active PricingConfig with every child collection
eagerly (selectinload), then delegate to the pure resolver. Writes are the
admin catalog operations (config, plans, overrides, rules, promotions).

Read paths:
  - get_effective_pricing(at)                  all plans, for an instant
  - get_current_effective_pricing(date, hour)  same, for a local date/hour
  - resolve_plan_for_ride(plan_id, at)         one plan, for settlement
  - quote(plan_id, minutes)                    public estimate; may fall
                                               back to display rates
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bikeshare.config import settings
from bikeshare.exceptions import (
    InvalidAmountError,
    NotConfiguredError,
    PlanNotFoundError,
    WrongStateError,
)
from bikeshare.logging_config import get_logger
from bikeshare.models.pricing import (
    PlanOverride,
    PricingConfig,
    PricingPlan,
    PricingRule,
    Promotion,
)
from bikeshare.services import audit_service
from bikeshare.services.cost_calculator import compute_cost
from bikeshare.services.pricing_resolver import (
    EffectivePlan,
    Rates,
    as_utc,
    resolve_rates,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

async def get_active_config(db: AsyncSession) -> PricingConfig | None:
    """The active configuration with plans, rules and promotions loaded."""
    result = await db.execute(
        select(PricingConfig)
        .where(PricingConfig.is_active.is_(True))
        .options(
            selectinload(PricingConfig.plans).selectinload(PricingPlan.override),
            selectinload(PricingConfig.rules),
            selectinload(PricingConfig.promotions).selectinload(Promotion.plans),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _require_active_config(db: AsyncSession) -> PricingConfig:
    config = await get_active_config(db)
    if config is None:
        raise NotConfiguredError()
    return config


# ---------------------------------------------------------------------------
# Effective pricing
# ---------------------------------------------------------------------------

async def get_effective_pricing(
    db: AsyncSession,
    at: datetime | None = None,
) -> tuple[PricingConfig, list[EffectivePlan]]:
    """
    Effective plans of the active configuration at ``at`` (default: now).

    Raises:
        NotConfiguredError: No active configuration.
    """
    config = await get_active_config(db)
    plans = resolve_rates(config, at or datetime.now(timezone.utc))
    return config, plans


async def get_current_effective_pricing(
    db: AsyncSession,
    on_date: date,
    hour: int,
) -> tuple[PricingConfig, list[EffectivePlan], datetime]:
    """
    Effective plans for a local date and hour in settings.PRICING_TIMEZONE.

    Returns:
        (config, plans, target instant in UTC)
    """
    if not 0 <= hour <= 23:
        raise InvalidAmountError("hour must be between 0 and 23")
    local = datetime.combine(on_date, time(hour=hour), tzinfo=ZoneInfo(settings.PRICING_TIMEZONE))
    target = as_utc(local)
    config, plans = await get_effective_pricing(db, target)
    return config, plans, target


async def resolve_plan_for_ride(
    db: AsyncSession,
    plan_id: uuid.UUID | None,
    at: datetime,
) -> EffectivePlan:
    """
    The effective plan used to settle a ride ending at ``at``.

    Raises:
        NotConfiguredError: No active configuration, no plan for the ride,
            or the plan isn't an active plan of the active configuration.
    """
    if plan_id is None:
        raise NotConfiguredError("No pricing plan for this ride")
    config = await _require_active_config(db)
    for plan in resolve_rates(config, at):
        if plan.plan_id == plan_id:
            return plan
    raise NotConfiguredError(f"Pricing plan {plan_id} is not active")


async def quote(
    db: AsyncSession,
    minutes: int,
    plan_id: uuid.UUID | None = None,
) -> dict:
    """
    Public price estimate for a ride of ``minutes`` starting now.

    Without an active configuration, returns display-only rates built from
    settings.DISPLAY_HOURLY_RATE, flagged ``configured=False``. Those
    rates never settle a ride.
    """
    if minutes < 0:
        raise InvalidAmountError("minutes must not be negative")
    now = datetime.now(timezone.utc)

    config = await get_active_config(db)
    if config is None:
        hourly = settings.DISPLAY_HOURLY_RATE
        rates = Rates(hourly=hourly, daily=hourly * 24, weekly=hourly * 24 * 7, monthly=hourly * 24 * 30)
        plans = [
            EffectivePlan(plan_id=None, name="Standard", rates=rates, original_rates=rates, minimum_hours=1)
        ]
        unlock_fee = 0
        configured = False
    else:
        plans = resolve_rates(config, now)
        unlock_fee = config.unlock_fee
        configured = True
        if plan_id is not None:
            plans = [plan for plan in plans if plan.plan_id == plan_id]
            if not plans:
                raise PlanNotFoundError(plan_id)

    quotes = []
    for plan in plans:
        breakdown = compute_cost(plan, now, now + timedelta(minutes=minutes))
        quotes.append({
            "plan": plan,
            "cost": breakdown.cost,
            "tier": breakdown.tier,
            "billable_minutes": breakdown.billable_minutes,
        })
    return {
        "configured": configured,
        "currency": settings.CURRENCY,
        "unlock_fee": unlock_fee,
        "minutes": minutes,
        "quotes": quotes,
    }


async def increment_promotion_usage(db: AsyncSession, promotion_ids: list) -> None:
    """Count one use of each applied promotion, never past its limit."""
    for promotion_id in promotion_ids:
        await db.execute(
            update(Promotion)
            .where(
                Promotion.id == promotion_id,
                or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
            )
            .values(usage_count=Promotion.usage_count + 1)
            .execution_options(synchronize_session=False)
        )


# ---------------------------------------------------------------------------
# Catalog administration
# ---------------------------------------------------------------------------

async def create_config(
    db: AsyncSession,
    admin_id: uuid.UUID,
    name: str,
    unlock_fee: int,
    base_hourly_rate: int,
    activate: bool = True,
) -> PricingConfig:
    """Create a configuration; activating it deactivates the previous one."""
    if activate:
        await db.execute(
            update(PricingConfig)
            .where(PricingConfig.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
    config = PricingConfig(
        name=name,
        unlock_fee=unlock_fee,
        base_hourly_rate=base_hourly_rate,
        is_active=activate,
    )
    db.add(config)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.create_config",
        entity="pricing_config",
        entity_id=config.id,
        actor_id=admin_id,
        after={"unlock_fee": unlock_fee, "base_hourly_rate": base_hourly_rate, "is_active": activate},
    )
    logger.info("Pricing config created", extra_data={"config_id": str(config.id), "active": activate})
    return config


async def list_configs(db: AsyncSession) -> list[PricingConfig]:
    result = await db.execute(select(PricingConfig).order_by(PricingConfig.created_at.desc()))
    return list(result.scalars().all())


async def update_config(
    db: AsyncSession,
    admin_id: uuid.UUID,
    config_id: uuid.UUID,
    **changes,
) -> PricingConfig:
    config = await db.get(PricingConfig, config_id)
    if config is None:
        raise NotConfiguredError(f"Pricing config {config_id} not found")
    before = {"unlock_fee": config.unlock_fee, "base_hourly_rate": config.base_hourly_rate}

    if changes.pop("is_active", None):
        await db.execute(
            update(PricingConfig)
            .where(PricingConfig.is_active.is_(True), PricingConfig.id != config_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        config.is_active = True
    for field, value in changes.items():
        if value is not None:
            setattr(config, field, value)
    await db.flush()

    await audit_service.record(
        db,
        action="pricing.update_config",
        entity="pricing_config",
        entity_id=config.id,
        actor_id=admin_id,
        before=before,
        after={"unlock_fee": config.unlock_fee, "base_hourly_rate": config.base_hourly_rate},
    )
    return config


async def create_plan(db: AsyncSession, admin_id: uuid.UUID, **fields) -> PricingPlan:
    """Add a plan to the active configuration."""
    config = await _require_active_config(db)
    plan = PricingPlan(config_id=config.id, **fields)
    db.add(plan)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.create_plan",
        entity="pricing_plan",
        entity_id=plan.id,
        actor_id=admin_id,
        after={"name": plan.name, "hourly_rate": plan.hourly_rate},
    )
    return plan


async def get_plan(db: AsyncSession, plan_id: uuid.UUID) -> PricingPlan:
    result = await db.execute(
        select(PricingPlan)
        .where(PricingPlan.id == plan_id)
        .options(selectinload(PricingPlan.override))
        .execution_options(populate_existing=True)
    )
    plan = result.scalar_one_or_none()
    if plan is None:
        raise PlanNotFoundError(plan_id)
    return plan


async def list_plans(db: AsyncSession) -> list[PricingPlan]:
    config = await _require_active_config(db)
    return list(config.plans)


async def update_plan(
    db: AsyncSession,
    admin_id: uuid.UUID,
    plan_id: uuid.UUID,
    **changes,
) -> PricingPlan:
    plan = await get_plan(db, plan_id)
    before = {"hourly_rate": plan.hourly_rate, "daily_rate": plan.daily_rate, "is_active": plan.is_active}
    for field, value in changes.items():
        if value is not None:
            setattr(plan, field, value)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.update_plan",
        entity="pricing_plan",
        entity_id=plan.id,
        actor_id=admin_id,
        before=before,
        after={"hourly_rate": plan.hourly_rate, "daily_rate": plan.daily_rate, "is_active": plan.is_active},
    )
    return plan


async def set_plan_override(
    db: AsyncSession,
    admin_id: uuid.UUID,
    plan_id: uuid.UUID,
    **fields,
) -> PlanOverride:
    """Create or replace the overtime policy of a plan."""
    plan = await get_plan(db, plan_id)
    override = plan.override
    if override is None:
        override = PlanOverride(plan_id=plan.id, **fields)
        db.add(override)
    else:
        for field, value in fields.items():
            setattr(override, field, value)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.set_override",
        entity="pricing_plan",
        entity_id=plan.id,
        actor_id=admin_id,
        after={"overtime_type": override.overtime_type.value, "overtime_value": str(override.overtime_value)},
    )
    return override


async def delete_plan_override(db: AsyncSession, admin_id: uuid.UUID, plan_id: uuid.UUID) -> None:
    plan = await get_plan(db, plan_id)
    if plan.override is None:
        raise WrongStateError("Plan has no override")
    await db.delete(plan.override)
    await db.flush()
    await audit_service.record(
        db, action="pricing.delete_override", entity="pricing_plan", entity_id=plan.id, actor_id=admin_id
    )


async def create_rule(db: AsyncSession, admin_id: uuid.UUID, **fields) -> PricingRule:
    config = await _require_active_config(db)
    rule = PricingRule(config_id=config.id, **fields)
    db.add(rule)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.create_rule",
        entity="pricing_rule",
        entity_id=rule.id,
        actor_id=admin_id,
        after={"name": rule.name, "multiplier": str(rule.multiplier), "priority": rule.priority},
    )
    return rule


async def list_rules(db: AsyncSession) -> list[PricingRule]:
    config = await _require_active_config(db)
    return sorted(config.rules, key=lambda rule: (-rule.priority, rule.name))


async def update_rule(
    db: AsyncSession,
    admin_id: uuid.UUID,
    rule_id: uuid.UUID,
    **changes,
) -> PricingRule:
    rule = await db.get(PricingRule, rule_id)
    if rule is None:
        raise NotConfiguredError(f"Pricing rule {rule_id} not found")
    for field, value in changes.items():
        setattr(rule, field, value)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.update_rule",
        entity="pricing_rule",
        entity_id=rule.id,
        actor_id=admin_id,
        after={"multiplier": str(rule.multiplier), "priority": rule.priority, "is_active": rule.is_active},
    )
    return rule


async def delete_rule(db: AsyncSession, admin_id: uuid.UUID, rule_id: uuid.UUID) -> None:
    rule = await db.get(PricingRule, rule_id)
    if rule is None:
        raise NotConfiguredError(f"Pricing rule {rule_id} not found")
    await db.delete(rule)
    await db.flush()
    await audit_service.record(
        db, action="pricing.delete_rule", entity="pricing_rule", entity_id=rule_id, actor_id=admin_id
    )


async def create_promotion(
    db: AsyncSession,
    admin_id: uuid.UUID,
    plan_ids: list[uuid.UUID],
    start_date: datetime,
    end_date: datetime,
    **fields,
) -> Promotion:
    """
    Create a promotion attached to plans of the active configuration.

    Dates are stored in UTC.
    """
    config = await _require_active_config(db)
    if as_utc(end_date) < as_utc(start_date):
        raise InvalidAmountError("Promotion end date precedes its start date")

    plans_by_id = {plan.id: plan for plan in config.plans}
    missing = [plan_id for plan_id in plan_ids if plan_id not in plans_by_id]
    if missing:
        raise PlanNotFoundError(missing[0])

    if fields.get("discount_value") is not None:
        fields["discount_value"] = Decimal(str(fields["discount_value"]))
    promotion = Promotion(
        config_id=config.id,
        start_date=as_utc(start_date),
        end_date=as_utc(end_date),
        plans=[plans_by_id[plan_id] for plan_id in plan_ids],
        **fields,
    )
    db.add(promotion)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.create_promotion",
        entity="promotion",
        entity_id=promotion.id,
        actor_id=admin_id,
        after={
            "name": promotion.name,
            "discount_type": promotion.discount_type.value,
            "discount_value": str(promotion.discount_value),
        },
    )
    return promotion


async def list_promotions(db: AsyncSession) -> list[Promotion]:
    config = await _require_active_config(db)
    return sorted(config.promotions, key=lambda promo: (as_utc(promo.created_at), str(promo.id)))


async def update_promotion(
    db: AsyncSession,
    admin_id: uuid.UUID,
    promotion_id: uuid.UUID,
    **changes,
) -> Promotion:
    result = await db.execute(
        select(Promotion).where(Promotion.id == promotion_id).options(selectinload(Promotion.plans))
    )
    promotion = result.scalar_one_or_none()
    if promotion is None:
        raise NotConfiguredError(f"Promotion {promotion_id} not found")
    for field, value in changes.items():
        if value is None:
            continue
        if field in ("start_date", "end_date"):
            value = as_utc(value)
        setattr(promotion, field, value)
    await db.flush()
    await audit_service.record(
        db,
        action="pricing.update_promotion",
        entity="promotion",
        entity_id=promotion.id,
        actor_id=admin_id,
        after={"is_active": promotion.is_active, "usage_limit": promotion.usage_limit},
    )
    return promotion
