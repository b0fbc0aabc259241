"""
Pydantic schemas for the pricing catalog and the public quote.

Rates and fees are whole currency units. Multipliers, overtime values and
promotion values are decimals, serialized as strings so they survive JSON
without float rounding.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from bikeshare.models.pricing import DiscountType, OverTimeType


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class PricingConfigCreate(BaseModel):
    name: str = Field("default", min_length=1, max_length=100)
    unlock_fee: int = Field(100, ge=0)
    base_hourly_rate: int = Field(200, ge=0)
    activate: bool = True


class PricingConfigUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    unlock_fee: int | None = Field(None, ge=0)
    base_hourly_rate: int | None = Field(None, ge=0)
    is_active: bool | None = None


class PricingConfigResponse(BaseModel):
    id: uuid.UUID
    name: str
    unlock_fee: int
    base_hourly_rate: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Plans and overrides
# ---------------------------------------------------------------------------

class PlanOverrideRequest(BaseModel):
    """
    Overtime policy of a plan.

    Each tier may carry an hour band [start, end); a band with start > end
    wraps past midnight. Both ends of a band are set together or not at all.
    """
    overtime_type: OverTimeType
    overtime_value: Decimal = Field(ge=0)
    hourly_start_hour: int | None = Field(None, ge=0, le=23)
    hourly_end_hour: int | None = Field(None, ge=0, le=23)
    daily_start_hour: int | None = Field(None, ge=0, le=23)
    daily_end_hour: int | None = Field(None, ge=0, le=23)
    weekly_start_hour: int | None = Field(None, ge=0, le=23)
    weekly_end_hour: int | None = Field(None, ge=0, le=23)
    monthly_start_hour: int | None = Field(None, ge=0, le=23)
    monthly_end_hour: int | None = Field(None, ge=0, le=23)

    @model_validator(mode="after")
    def check_bands(self):
        for tier in ("hourly", "daily", "weekly", "monthly"):
            start = getattr(self, f"{tier}_start_hour")
            end = getattr(self, f"{tier}_end_hour")
            if (start is None) != (end is None):
                raise ValueError(f"{tier} band needs both start and end hours")
        if self.overtime_type == OverTimeType.PERCENTAGE_REDUCTION and self.overtime_value > 100:
            raise ValueError("Percentage reduction cannot exceed 100")
        return self


class PlanOverrideResponse(PlanOverrideRequest):
    id: uuid.UUID
    plan_id: uuid.UUID

    model_config = {"from_attributes": True}


class PricingPlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    hourly_rate: int = Field(ge=0)
    daily_rate: int = Field(ge=0)
    weekly_rate: int = Field(ge=0)
    monthly_rate: int = Field(ge=0)
    minimum_hours: int = Field(1, ge=0)
    discount: int = Field(0, ge=0)
    is_active: bool = True
    sort_order: int = 0


class PricingPlanUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    hourly_rate: int | None = Field(None, ge=0)
    daily_rate: int | None = Field(None, ge=0)
    weekly_rate: int | None = Field(None, ge=0)
    monthly_rate: int | None = Field(None, ge=0)
    minimum_hours: int | None = Field(None, ge=0)
    discount: int | None = Field(None, ge=0)
    is_active: bool | None = None
    sort_order: int | None = None


class PricingPlanResponse(BaseModel):
    id: uuid.UUID
    config_id: uuid.UUID
    name: str
    hourly_rate: int
    daily_rate: int
    weekly_rate: int
    monthly_rate: int
    minimum_hours: int
    discount: int
    is_active: bool
    sort_order: int
    override: PlanOverrideResponse | None = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class PricingRuleCreate(BaseModel):
    """
    Time-based multiplier. day_of_week uses 0 = Sunday; a missing day
    applies every day and a missing start or end hour applies all day.
    """
    name: str = Field(min_length=1, max_length=100)
    day_of_week: int | None = Field(None, ge=0, le=6)
    start_hour: int | None = Field(None, ge=0, le=23)
    end_hour: int | None = Field(None, ge=0, le=23)
    multiplier: Decimal = Field(gt=0)
    priority: int = 0
    is_active: bool = True


class PricingRuleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    day_of_week: int | None = Field(None, ge=0, le=6)
    start_hour: int | None = Field(None, ge=0, le=23)
    end_hour: int | None = Field(None, ge=0, le=23)
    multiplier: Decimal | None = Field(None, gt=0)
    priority: int | None = None
    is_active: bool | None = None


class PricingRuleResponse(BaseModel):
    id: uuid.UUID
    name: str
    day_of_week: int | None
    start_hour: int | None
    end_hour: int | None
    multiplier: Decimal
    priority: int
    is_active: bool

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Promotions
# ---------------------------------------------------------------------------

class PromotionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(None, max_length=255)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = Field(None, gt=0)
    is_active: bool = True
    plan_ids: list[uuid.UUID] = Field(min_length=1)

    @model_validator(mode="after")
    def check_values(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class PromotionUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=255)
    end_date: datetime | None = None
    usage_limit: int | None = Field(None, gt=0)
    is_active: bool | None = None


class PromotionResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    discount_type: DiscountType
    discount_value: Decimal
    start_date: datetime
    end_date: datetime
    usage_limit: int | None
    usage_count: int
    is_active: bool
    plan_ids: list[uuid.UUID] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_promotion(cls, promotion) -> "PromotionResponse":
        response = cls.model_validate(promotion)
        response.plan_ids = [plan.id for plan in promotion.plans]
        return response


# ---------------------------------------------------------------------------
# Effective pricing and quotes
# ---------------------------------------------------------------------------

class RatesResponse(BaseModel):
    hourly: int
    daily: int
    weekly: int
    monthly: int

    model_config = {"from_attributes": True}


class AppliedPromotionResponse(BaseModel):
    id: uuid.UUID
    name: str
    discount_type: DiscountType
    discount_value: Decimal

    model_config = {"from_attributes": True}


class EffectivePlanResponse(BaseModel):
    """A plan's rates after the winning rule and active promotions."""
    plan_id: uuid.UUID | None
    name: str
    rates: RatesResponse
    original_rates: RatesResponse
    minimum_hours: int
    discount: int
    multiplier: Decimal
    applied_rule: str | None
    applied_promotions: list[AppliedPromotionResponse]

    model_config = {"from_attributes": True}


class CurrentPricingResponse(BaseModel):
    config_id: uuid.UUID
    unlock_fee: int
    currency: str
    target: datetime
    plans: list[EffectivePlanResponse]


class CurrentPricingQuery(BaseModel):
    date: date
    hour: int = Field(ge=0, le=23)


class PlanQuote(BaseModel):
    plan: EffectivePlanResponse
    cost: int
    tier: str
    billable_minutes: int


class QuoteResponse(BaseModel):
    """
    Public estimate. ``configured`` is false when no pricing is set up and
    the figures come from display-only defaults that never settle a ride.
    """
    configured: bool
    currency: str
    unlock_fee: int
    minutes: int
    quotes: list[PlanQuote]
