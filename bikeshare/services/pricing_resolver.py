"""
Pricing resolver — effective rates for every active plan at an instant.

This module is pure: it never touches the database session. Callers load
the active PricingConfig (with plans, overrides, rules and promotions) and
pass it in together with the instant to price; the result is a list of
EffectivePlan values that the cost calculator consumes.

Resolution steps, for a target instant:

  1. Convert the instant to settings.PRICING_TIMEZONE and take its day of
     week (0 = Sunday ... 6 = Saturday) and hour.
  2. Select at most one PricingRule. Candidates are the active rules whose
     day is NULL or equal to the day, and whose [start_hour, end_hour)
     window contains the hour (a window with start > end wraps past
     midnight; a rule missing either bound applies all day). The winner is
     the first candidate by (highest priority, day-specific before
     every-day, name, id), so input ordering never changes the result.
  3. For each active plan, multiply the four rates by the rule's multiplier
     and round half-up to a whole currency unit.
  4. Apply the promotions attached to the plan that are active at the
     instant, in ascending (created_at, id) order:
       PERCENTAGE    rate = round_half_up(rate * (1 - value / 100))
       FIXED_AMOUNT  rate = max(0, rate - value * {1, 24, 168, 720})
                     for hourly / daily / weekly / monthly

No active configuration raises NotConfiguredError. Default rates are never
invented here; the display-only fallback lives in the public quote path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
from zoneinfo import ZoneInfo

from bikeshare.config import settings
from bikeshare.exceptions import NotConfiguredError
from bikeshare.models.pricing import DiscountType, OverTimeType


HOURS_PER_TIER = {
    "hourly": 1,
    "daily": 24,
    "weekly": 24 * 7,
    "monthly": 24 * 30,
}


@dataclass(frozen=True)
class Rates:
    hourly: int
    daily: int
    weekly: int
    monthly: int

    def for_tier(self, tier: str) -> int:
        return getattr(self, tier)

    def as_dict(self) -> dict:
        return {
            "hourly": self.hourly,
            "daily": self.daily,
            "weekly": self.weekly,
            "monthly": self.monthly,
        }


@dataclass(frozen=True)
class OverrideTerms:
    """Overtime policy of a plan, detached from the ORM."""
    overtime_type: OverTimeType
    overtime_value: Decimal
    # tier name -> (start_hour, end_hour)
    bands: dict = field(default_factory=dict)

    def band(self, tier: str) -> tuple[int | None, int | None]:
        return self.bands.get(tier, (None, None))


@dataclass(frozen=True)
class AppliedPromotion:
    id: object
    name: str
    discount_type: DiscountType
    discount_value: Decimal


@dataclass(frozen=True)
class EffectivePlan:
    """A pricing plan after rule and promotion adjustments for one instant."""
    plan_id: object
    name: str
    rates: Rates
    original_rates: Rates
    minimum_hours: int = 0
    discount: int = 0
    multiplier: Decimal = Decimal("1")
    applied_rule: str | None = None
    applied_promotions: tuple[AppliedPromotion, ...] = ()
    override: OverrideTerms | None = None

    def receipt(self) -> dict:
        """JSON-safe summary stored with the ride and the payment."""
        return {
            "plan_id": str(self.plan_id),
            "plan_name": self.name,
            "rates": self.rates.as_dict(),
            "original_rates": self.original_rates.as_dict(),
            "multiplier": str(self.multiplier),
            "applied_rule": self.applied_rule,
            "applied_promotions": [
                {
                    "id": str(promo.id),
                    "name": promo.name,
                    "discount_type": promo.discount_type.value,
                    "discount_value": str(promo.discount_value),
                }
                for promo in self.applied_promotions
            ],
            "minimum_hours": self.minimum_hours,
            "discount": self.discount,
        }


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------

def as_utc(moment: datetime) -> datetime:
    """Timezone-aware UTC datetime; naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def local_day_and_hour(moment: datetime, tz: str | None = None) -> tuple[int, int]:
    """Day of week (0 = Sunday) and hour of ``moment`` in the pricing zone."""
    local = as_utc(moment).astimezone(ZoneInfo(tz or settings.PRICING_TIMEZONE))
    return local.isoweekday() % 7, local.hour


def window_contains(start_hour: int | None, end_hour: int | None, hour: int) -> bool:
    """
    Whether ``hour`` falls in the [start_hour, end_hour) window.

    A window with start_hour > end_hour wraps past midnight (22 -> 6 covers
    22:00 to 05:59). A missing bound means the whole day.
    """
    if start_hour is None or end_hour is None:
        return True
    if start_hour <= end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Rule selection
# ---------------------------------------------------------------------------

def _rule_order(rule) -> tuple:
    return (-rule.priority, rule.day_of_week is None, rule.name, str(rule.id))


def select_rule(rules: Iterable, day_of_week: int, hour: int):
    """
    The applicable rule for (day_of_week, hour), or None.

    Args:
        rules: PricingRule-like objects (is_active, day_of_week, start_hour,
               end_hour, multiplier, priority, name, id).
        day_of_week: 0 = Sunday ... 6 = Saturday.
        hour: 0-23.
    """
    candidates = [
        rule for rule in rules
        if rule.is_active
        and (rule.day_of_week is None or rule.day_of_week == day_of_week)
        and window_contains(rule.start_hour, rule.end_hour, hour)
    ]
    if not candidates:
        return None
    return min(candidates, key=_rule_order)


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------

def promotion_is_active(promotion, moment: datetime) -> bool:
    if not promotion.is_active:
        return False
    if promotion.usage_limit is not None and promotion.usage_count >= promotion.usage_limit:
        return False
    return as_utc(promotion.start_date) <= as_utc(moment) <= as_utc(promotion.end_date)


def _promotion_order(promotion) -> tuple:
    return (as_utc(promotion.created_at), str(promotion.id))


def apply_promotion(rates: Rates, promotion) -> Rates:
    """Rates after one promotion, never below zero."""
    value = Decimal(promotion.discount_value)

    if promotion.discount_type == DiscountType.PERCENTAGE:
        factor = Decimal(1) - value / Decimal(100)
        return Rates(**{
            tier: max(0, round_half_up(Decimal(rate) * factor))
            for tier, rate in rates.as_dict().items()
        })

    return Rates(**{
        tier: max(0, round_half_up(Decimal(rate) - value * HOURS_PER_TIER[tier]))
        for tier, rate in rates.as_dict().items()
    })


def apply_multiplier(rates: Rates, multiplier: Decimal) -> Rates:
    return Rates(**{
        tier: round_half_up(Decimal(rate) * multiplier)
        for tier, rate in rates.as_dict().items()
    })


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _override_terms(plan) -> OverrideTerms | None:
    override = plan.override
    if override is None:
        return None
    return OverrideTerms(
        overtime_type=override.overtime_type,
        overtime_value=Decimal(override.overtime_value),
        bands={
            tier: (
                getattr(override, f"{tier}_start_hour"),
                getattr(override, f"{tier}_end_hour"),
            )
            for tier in HOURS_PER_TIER
        },
    )


def _plan_order(plan) -> tuple:
    return (plan.sort_order, as_utc(plan.created_at), str(plan.id))


def resolve_plan(plan, rule, promotions: list, moment: datetime) -> EffectivePlan:
    """Effective rates of one plan, given the already-selected rule."""
    original = Rates(
        hourly=plan.hourly_rate,
        daily=plan.daily_rate,
        weekly=plan.weekly_rate,
        monthly=plan.monthly_rate,
    )
    multiplier = Decimal(rule.multiplier) if rule is not None else Decimal(1)
    rates = apply_multiplier(original, multiplier)

    applied = []
    plan_promotions = [
        promo for promo in promotions
        if any(attached.id == plan.id for attached in promo.plans)
        and promotion_is_active(promo, moment)
    ]
    for promo in sorted(plan_promotions, key=_promotion_order):
        rates = apply_promotion(rates, promo)
        applied.append(
            AppliedPromotion(
                id=promo.id,
                name=promo.name,
                discount_type=promo.discount_type,
                discount_value=Decimal(promo.discount_value),
            )
        )

    return EffectivePlan(
        plan_id=plan.id,
        name=plan.name,
        rates=rates,
        original_rates=original,
        minimum_hours=plan.minimum_hours,
        discount=plan.discount,
        multiplier=multiplier,
        applied_rule=rule.name if rule is not None else None,
        applied_promotions=tuple(applied),
        override=_override_terms(plan),
    )


def resolve_rates(config, target: datetime, tz: str | None = None) -> list[EffectivePlan]:
    """
    Effective rate table of every active plan at ``target``.

    Args:
        config: The active PricingConfig with plans, rules and promotions
                loaded, or None.
        target: Instant to price (naive values are UTC).
        tz: Zone for day/hour evaluation, defaults to settings.PRICING_TIMEZONE.

    Returns:
        One EffectivePlan per active plan, in catalog display order.

    Raises:
        NotConfiguredError: If there is no active configuration.
    """
    if config is None or not config.is_active:
        raise NotConfiguredError()

    day_of_week, hour = local_day_and_hour(target, tz)
    rule = select_rule(config.rules, day_of_week, hour)

    return [
        resolve_plan(plan, rule, config.promotions, target)
        for plan in sorted(config.plans, key=_plan_order)
        if plan.is_active
    ]
