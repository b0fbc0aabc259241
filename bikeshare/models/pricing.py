"""
Pricing catalog models.

    PricingConfig (exactly one active)
    ├── PricingPlan*        rate tiers: hourly / daily / weekly / monthly
    │   └── PlanOverride?   overtime billing policy for the plan
    ├── PricingRule*        day/hour-window multipliers with a priority
    └── Promotion*          discount windows, attached to plans (many-to-many)

Rates are integers in the currency's minor unit. Multipliers and percentage
values are Numeric so they round-trip exactly as Decimal.

The catalog is only read when pricing a ride or a quote; services load the
active config with all of its children in one go and hand plain objects to
the pure resolver (services/pricing_resolver.py).
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bikeshare.database import Base


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class OverTimeType(str, enum.Enum):
    FIXED_PRICE = "FIXED_PRICE"
    PERCENTAGE_REDUCTION = "PERCENTAGE_REDUCTION"


# Promotions <-> plans they discount
promotion_plans = Table(
    "promotion_plans",
    Base.metadata,
    Column("promotion_id", ForeignKey("promotions.id", ondelete="CASCADE"), primary_key=True),
    Column("plan_id", ForeignKey("pricing_plans.id", ondelete="CASCADE"), primary_key=True),
)


class PricingConfig(Base):
    __tablename__ = "pricing_configs"

    __table_args__ = (
        # Only one configuration may be active at a time
        Index(
            "uq_pricing_configs_single_active",
            "is_active",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="default")

    # Shown on quotes; not part of the ride cost
    unlock_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    base_hourly_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=200)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    plans: Mapped[list["PricingPlan"]] = relationship(
        back_populates="config",
        order_by="PricingPlan.created_at",
        cascade="all, delete-orphan",
    )
    rules: Mapped[list["PricingRule"]] = relationship(
        back_populates="config",
        cascade="all, delete-orphan",
    )
    promotions: Mapped[list["Promotion"]] = relationship(
        back_populates="config",
        cascade="all, delete-orphan",
    )


class PricingPlan(Base):
    __tablename__ = "pricing_plans"

    __table_args__ = (
        CheckConstraint(
            "hourly_rate >= 0 AND daily_rate >= 0 AND weekly_rate >= 0 AND monthly_rate >= 0",
            name="ck_pricing_plans_non_negative_rates",
        ),
        CheckConstraint("minimum_hours >= 0", name="ck_pricing_plans_minimum_hours"),
        CheckConstraint("discount >= 0", name="ck_pricing_plans_discount"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    config_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pricing_configs.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    hourly_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    daily_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    weekly_rate: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_rate: Mapped[int] = mapped_column(Integer, nullable=False)

    # Billable floor for every ride on this plan
    minimum_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Flat amount taken off each ride's cost
    discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    config: Mapped[PricingConfig] = relationship(back_populates="plans")
    override: Mapped["PlanOverride | None"] = relationship(
        back_populates="plan",
        uselist=False,
        cascade="all, delete-orphan",
    )
    promotions: Mapped[list["Promotion"]] = relationship(
        secondary=promotion_plans,
        back_populates="plans",
    )


class PlanOverride(Base):
    """
    Overtime policy for one plan.

    Beyond a tier's whole units (or inside the tier's hour band, when one is
    configured), the marginal cost is replaced by ``overtime_value``
    (FIXED_PRICE) or reduced by ``overtime_value`` percent
    (PERCENTAGE_REDUCTION).
    """

    __tablename__ = "plan_overrides"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pricing_plans.id"), unique=True, nullable=False
    )

    overtime_type: Mapped[OverTimeType] = mapped_column(Enum(OverTimeType), nullable=False)
    overtime_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Optional hour bands, one per tier; NULL means no band for that tier
    hourly_start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hourly_end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    daily_start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    daily_end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weekly_end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    monthly_end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)

    plan: Mapped[PricingPlan] = relationship(back_populates="override")


class PricingRule(Base):
    __tablename__ = "pricing_rules"

    __table_args__ = (
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)",
            name="ck_pricing_rules_day_of_week",
        ),
        CheckConstraint("multiplier >= 0", name="ck_pricing_rules_multiplier"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    config_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pricing_configs.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # 0 = Sunday ... 6 = Saturday; NULL = every day
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # [start_hour, end_hour) in local time; start > end wraps past midnight
    start_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)

    multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    config: Mapped[PricingConfig] = relationship(back_populates="rules")


class Promotion(Base):
    __tablename__ = "promotions"

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_promotions_discount_value"),
        CheckConstraint("usage_count >= 0", name="ck_promotions_usage_count"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    config_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("pricing_configs.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    discount_type: Mapped[DiscountType] = mapped_column(Enum(DiscountType), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Promotions stack in ascending creation order
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    config: Mapped[PricingConfig] = relationship(back_populates="promotions")
    plans: Mapped[list[PricingPlan]] = relationship(
        secondary=promotion_plans,
        back_populates="promotions",
    )
