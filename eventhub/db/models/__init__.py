"""
Database models module.

Importing this package registers every model with SQLAlchemy's Base.metadata,
which table creation and Alembic autogenerate rely on.
"""
from eventhub.db.models.user import User
from eventhub.db.models.plan import SubscriptionPlan, PlanType, BillingCycle
from eventhub.db.models.user_subscription import UserSubscription, SubscriptionStatus

__all__ = [
    "User",
    "SubscriptionPlan",
    "PlanType",
    "BillingCycle",
    "UserSubscription",
    "SubscriptionStatus",
]
