"""
Plan catalog model: the administered subscription and package offerings.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Numeric, JSON, CheckConstraint
from eventhub.db.base import Base


class PlanType(str, enum.Enum):
    """Kinds of purchasable plans."""
    SUBSCRIPTION = "subscription"  # recurring, weekly/monthly publish limits
    PACKAGE = "package"  # one-time, fixed pool of publish credits


class BillingCycle(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


DEFAULT_SUBSCRIPTION_DURATION_DAYS = 30
DEFAULT_PACKAGE_DURATION_DAYS = 365


class SubscriptionPlan(Base):
    """
    A purchasable plan definition.
    
    Limits left NULL are unlimited for that window. Ledger entries copy the
    relevant fields at purchase time, so editing a plan never changes rights
    already sold.
    """
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(20), nullable=False, index=True)  # subscription | package
    name = Column(String(100), nullable=False, unique=True)  # slug, e.g. "basic", "10_events"
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    price = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    billing_cycle = Column(String(20), nullable=True)  # weekly | monthly, subscriptions only

    # Limits
    weekly_limit = Column(Integer, nullable=True)
    monthly_limit = Column(Integer, nullable=True)
    total_credits = Column(Integer, nullable=True)  # packages only
    duration_days = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)
    stripe_price_id = Column(String, nullable=True)
    plan_metadata = Column("metadata", JSON, nullable=True, default=dict)  # {"features": [...], "popular": bool}

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_subscription_plans_price_non_negative"),
    )

    @property
    def is_subscription(self) -> bool:
        return self.type == PlanType.SUBSCRIPTION.value

    @property
    def is_package(self) -> bool:
        return self.type == PlanType.PACKAGE.value

    @property
    def features(self) -> list:
        return list((self.plan_metadata or {}).get("features", []))

    @property
    def is_popular(self) -> bool:
        return bool((self.plan_metadata or {}).get("popular", False))

    @property
    def effective_duration_days(self) -> int:
        if self.duration_days:
            return self.duration_days
        if self.is_package:
            return DEFAULT_PACKAGE_DURATION_DAYS
        return DEFAULT_SUBSCRIPTION_DURATION_DAYS
