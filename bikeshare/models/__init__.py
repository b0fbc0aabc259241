"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table before create_all runs
  2. Other modules can import from bikeshare.models directly
"""

from bikeshare.models.user import User, UserType  # noqa: F401
from bikeshare.models.wallet import Wallet  # noqa: F401
from bikeshare.models.pricing import (  # noqa: F401
    DiscountType,
    OverTimeType,
    PlanOverride,
    PricingConfig,
    PricingPlan,
    PricingRule,
    Promotion,
)
from bikeshare.models.bike import Bike, BikeStatus  # noqa: F401
from bikeshare.models.ride import PaymentStatus, Ride, RideStatus  # noqa: F401
from bikeshare.models.incident import Incident, IncidentKind, IncidentStatus  # noqa: F401
from bikeshare.models.transaction import (  # noqa: F401
    CashDeposit,
    DamageCharge,
    Deposit,
    DepositTransfer,
    Ledger,
    PaymentMethod,
    Refund,
    RidePayment,
    Transaction,
    TransactionStatus,
    TransactionType,
    Withdrawal,
)
from bikeshare.models.audit_log import AuditLog  # noqa: F401
