"""
Subscription ledger entry: one purchased instance of a plan for one user.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, JSON, ForeignKey, Index, CheckConstraint, text,
)
from sqlalchemy.orm import relationship
from eventhub.db.base import Base


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ONE_ACTIVE_SUBSCRIPTION_WHERE = "status = 'active' AND type = 'subscription'"


class UserSubscription(Base):
    """
    Ledger entry for a subscription or package purchase.
    
    Plan limits are snapshotted at creation. ``correlation_id`` holds the
    checkout session id until the provider subscription id is known, and is
    unique once set. Period counters (weekly_used, monthly_used) are only
    meaningful for the period containing ``last_used_at``; readers recompute
    rollover from ``started_at`` instead of relying on a reset job.
    """
    __tablename__ = "user_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("subscription_plans.id", ondelete="SET NULL"), nullable=True, index=True)

    # Plan snapshot
    type = Column(String(20), nullable=False)  # subscription | package
    name = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=True)
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    billing_cycle = Column(String(20), nullable=True)
    weekly_limit = Column(Integer, nullable=True)
    monthly_limit = Column(Integer, nullable=True)
    total_credits = Column(Integer, nullable=True)
    duration_days = Column(Integer, nullable=True)
    snapshot_metadata = Column("metadata", JSON, nullable=True)

    # Usage counters
    used_credits = Column(Integer, nullable=False, default=0)
    weekly_used = Column(Integer, nullable=False, default=0)
    monthly_used = Column(Integer, nullable=False, default=0)
    total_used = Column(Integer, nullable=False, default=0)  # lifetime publishes, never reset
    last_used_at = Column(DateTime, nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default=SubscriptionStatus.PENDING.value, index=True)
    started_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    payment_failed_at = Column(DateTime, nullable=True)  # set by invoice.payment_failed, needs operator attention

    # Payment provider correlation
    correlation_id = Column(String(255), nullable=True, unique=True)
    checkout_session_id = Column(String(255), nullable=True, index=True)
    last_invoice_id = Column(String(255), nullable=True)  # last renewal invoice applied to expired_at

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    plan = relationship("SubscriptionPlan")

    __table_args__ = (
        # At most one active subscription-type entry per user
        Index(
            "uq_user_subscriptions_one_active_subscription",
            "user_id",
            unique=True,
            postgresql_where=text(ONE_ACTIVE_SUBSCRIPTION_WHERE),
            sqlite_where=text(ONE_ACTIVE_SUBSCRIPTION_WHERE),
        ),
        Index("idx_user_subscriptions_user_status", "user_id", "status"),
        CheckConstraint(
            "total_credits IS NULL OR used_credits <= total_credits",
            name="ck_user_subscriptions_credits_within_total",
        ),
        CheckConstraint(
            "used_credits >= 0 AND weekly_used >= 0 AND monthly_used >= 0",
            name="ck_user_subscriptions_counters_non_negative",
        ),
    )

    @property
    def is_subscription(self) -> bool:
        return self.type == "subscription"

    @property
    def is_package(self) -> bool:
        return self.type == "package"

    @property
    def remaining_credits(self) -> int:
        if self.total_credits is None:
            return 0
        return max(0, self.total_credits - (self.used_credits or 0))

    def is_lapsed(self, now: datetime) -> bool:
        """True once the validity window has passed, whatever the stored status says."""
        return self.expired_at is not None and self.expired_at <= now

    def is_effectively_active(self, now: datetime) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value and not self.is_lapsed(now)

    def __repr__(self):
        return (
            f"<UserSubscription id={self.id} user_id={self.user_id} type={self.type} "
            f"name={self.name} status={self.status}>"
        )
