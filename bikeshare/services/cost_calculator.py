"""
Session cost calculator — what a ride costs under an effective plan.

Pure function of (EffectivePlan, start, end); no I/O.

Billing policy:

  minutes   = elapsed time floored to whole minutes
  billable  = max(minutes, minimum_hours * 60)

  tier      = HOURLY   if billable <  1 440   (one day)
              DAILY    if billable < 10 080   (one week)
              WEEKLY   if billable < 43 200   (thirty days)
              MONTHLY  otherwise

  units, remainder = divmod(billable, tier length)
  normal cost      = units * tier rate
  remainder cost   = HOURLY: ceil(hourly rate * remainder / 60)
                     higher tiers: the remainder priced at the lower tiers,
                     capped at one unit of the selected tier

Overtime (plans with a PlanOverride): the remainder is the overtime
portion. When the ride started inside the override's hour band for the
selected tier, the whole ride is overtime instead. FIXED_PRICE replaces the
overtime cost with the override value; PERCENTAGE_REDUCTION takes the
override value as a percentage off it.

Finally the plan's flat discount is subtracted once, and the cost is
clamped at zero. Every amount is an int in the currency's minor unit.

The unlock fee is not part of the ride cost.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from bikeshare.exceptions import InvalidAmountError
from bikeshare.models.pricing import OverTimeType
from bikeshare.services.pricing_resolver import (
    EffectivePlan,
    OverrideTerms,
    Rates,
    as_utc,
    local_day_and_hour,
    round_half_up,
    window_contains,
)


# Tier name -> length in minutes, smallest first
TIER_MINUTES = {
    "hourly": 60,
    "daily": 24 * 60,
    "weekly": 7 * 24 * 60,
    "monthly": 30 * 24 * 60,
}
_TIERS = list(TIER_MINUTES)


@dataclass(frozen=True)
class CostBreakdown:
    cost: int
    actual_minutes: int
    billable_minutes: int
    tier: str
    # Whole tier units charged at the tier rate
    billable_units: int
    remainder_minutes: int
    normal_cost: int
    remainder_cost: int
    original_cost: int
    is_overtime: bool = False
    overtime_type: OverTimeType | None = None
    discount_applied: int = 0

    def as_dict(self) -> dict:
        return {
            "cost": self.cost,
            "actual_minutes": self.actual_minutes,
            "billable_minutes": self.billable_minutes,
            "tier": self.tier,
            "billable_units": self.billable_units,
            "remainder_minutes": self.remainder_minutes,
            "normal_cost": self.normal_cost,
            "remainder_cost": self.remainder_cost,
            "original_cost": self.original_cost,
            "is_overtime": self.is_overtime,
            "overtime_type": self.overtime_type.value if self.overtime_type else None,
            "discount_applied": self.discount_applied,
        }


def select_tier(billable_minutes: int) -> str:
    """Smallest tier whose next unit boundary lies beyond the duration."""
    for lower, upper in zip(_TIERS, _TIERS[1:]):
        if billable_minutes < TIER_MINUTES[upper]:
            return lower
    return _TIERS[-1]


def price_remainder(rates: Rates, tier: str, minutes: int) -> int:
    """Cost of a part-unit of ``tier``, priced at the tiers below it."""
    if minutes <= 0:
        return 0
    if tier == "hourly":
        return math.ceil(rates.hourly * minutes / 60) if rates.hourly else 0

    lower = _TIERS[_TIERS.index(tier) - 1]
    units, rest = divmod(minutes, TIER_MINUTES[lower])
    cost = units * rates.for_tier(lower) + price_remainder(rates, lower, rest)
    return min(cost, rates.for_tier(tier))


def apply_override(amount: int, override: OverrideTerms) -> int:
    if override.overtime_type == OverTimeType.FIXED_PRICE:
        return max(0, round_half_up(override.overtime_value))
    reduction = round_half_up(Decimal(amount) * override.overtime_value / Decimal(100))
    return max(0, amount - reduction)


def compute_cost(
    plan: EffectivePlan,
    start_time: datetime,
    end_time: datetime,
    tz: str | None = None,
) -> CostBreakdown:
    """
    Cost of a ride from ``start_time`` to ``end_time`` under ``plan``.

    Args:
        plan: Effective plan resolved for the ride's end instant.
        start_time: Unlock instant (naive values are UTC).
        end_time: Return instant.
        tz: Zone used to read the start hour against override bands.

    Returns:
        CostBreakdown with an integer cost >= 0.

    Raises:
        InvalidAmountError: If end_time precedes start_time.
    """
    start = as_utc(start_time)
    end = as_utc(end_time)
    if end < start:
        raise InvalidAmountError("Ride end time precedes its start time")

    actual_minutes = int((end - start).total_seconds() // 60)
    billable = max(actual_minutes, plan.minimum_hours * 60)

    tier = select_tier(billable)
    units, remainder = divmod(billable, TIER_MINUTES[tier])
    normal_cost = units * plan.rates.for_tier(tier)
    remainder_cost = price_remainder(plan.rates, tier, remainder)
    original_cost = normal_cost + remainder_cost

    cost = original_cost
    is_overtime = False
    overtime_type = None

    if plan.override is not None:
        band_start, band_end = plan.override.band(tier)
        in_band = (
            band_start is not None
            and band_end is not None
            and window_contains(band_start, band_end, local_day_and_hour(start, tz)[1])
        )
        if in_band:
            cost = apply_override(original_cost, plan.override)
            is_overtime = True
        elif remainder > 0:
            cost = normal_cost + apply_override(remainder_cost, plan.override)
            is_overtime = True
        if is_overtime:
            overtime_type = plan.override.overtime_type

    discount_applied = min(plan.discount, cost)
    cost -= discount_applied

    return CostBreakdown(
        cost=max(0, cost),
        actual_minutes=actual_minutes,
        billable_minutes=billable,
        tier=tier,
        billable_units=units,
        remainder_minutes=remainder,
        normal_cost=normal_cost,
        remainder_cost=remainder_cost,
        original_cost=original_cost,
        is_overtime=is_overtime,
        overtime_type=overtime_type,
        discount_applied=discount_applied,
    )
