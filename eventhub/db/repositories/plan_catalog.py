"""
Plan catalog repository.

Read access to plan definitions plus validation and seeding. The entitlement
engine never mutates plans.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from eventhub.core.errors import PlanNotFoundError, PlanValidationError
from eventhub.core.plan_defaults import get_default_plans
from eventhub.db.models.plan import SubscriptionPlan, PlanType, BillingCycle

logger = logging.getLogger(__name__)


def get_plan_by_id(db: Session, plan_id: int, include_inactive: bool = False) -> SubscriptionPlan:
    """
    Fetch a plan by id.
    
    Inactive plans are hidden from purchase flows; pass include_inactive=True
    to read them for history and administration.
    
    Raises:
        PlanNotFoundError: If the plan does not exist or is inactive
    """
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if plan is None or (not plan.is_active and not include_inactive):
        raise PlanNotFoundError(f"Plan {plan_id} not found", {"plan_id": plan_id})
    return plan


def get_plan_by_name(db: Session, name: str) -> Optional[SubscriptionPlan]:
    return db.query(SubscriptionPlan).filter(SubscriptionPlan.name == name).first()


def list_active_plans(db: Session, plan_type: Optional[str] = None) -> List[SubscriptionPlan]:
    """Active plans ordered for display, optionally restricted to one type."""
    query = db.query(SubscriptionPlan).filter(SubscriptionPlan.is_active.is_(True))
    if plan_type is not None:
        query = query.filter(SubscriptionPlan.type == PlanType(plan_type).value)
    return query.order_by(SubscriptionPlan.type.desc(), SubscriptionPlan.sort_order, SubscriptionPlan.id).all()


def validate_plan(plan: SubscriptionPlan) -> None:
    """
    Check a plan definition's internal consistency.
    
    Raises:
        PlanValidationError: Describing the first problem found
    """
    if not plan.name:
        raise PlanValidationError("Plan name is required")
    if plan.type not in (PlanType.SUBSCRIPTION.value, PlanType.PACKAGE.value):
        raise PlanValidationError(f"Invalid plan type: {plan.type}")
    if plan.price is None or plan.price < 0:
        raise PlanValidationError("Plan price cannot be negative")
    if plan.duration_days is not None and plan.duration_days <= 0:
        raise PlanValidationError("duration_days must be positive")

    if plan.type == PlanType.SUBSCRIPTION.value:
        if plan.total_credits is not None:
            raise PlanValidationError("Subscription plans cannot carry total_credits")
        if plan.billing_cycle is not None and plan.billing_cycle not in (
            BillingCycle.WEEKLY.value, BillingCycle.MONTHLY.value
        ):
            raise PlanValidationError(f"Invalid billing cycle: {plan.billing_cycle}")
        for limit_name in ("weekly_limit", "monthly_limit"):
            limit = getattr(plan, limit_name)
            if limit is not None and limit < 0:
                raise PlanValidationError(f"{limit_name} cannot be negative")
        if (
            plan.weekly_limit is not None
            and plan.monthly_limit is not None
            and plan.weekly_limit > plan.monthly_limit
        ):
            raise PlanValidationError("weekly_limit cannot exceed monthly_limit")
    else:
        if not plan.total_credits or plan.total_credits <= 0:
            raise PlanValidationError("Package plans require positive total_credits")
        if plan.weekly_limit is not None or plan.monthly_limit is not None:
            raise PlanValidationError("Package plans cannot carry weekly or monthly limits")


def create_plan(db: Session, **fields) -> SubscriptionPlan:
    """Validate and insert a plan. ``metadata`` is accepted as a keyword."""
    metadata = fields.pop("metadata", None)
    plan = SubscriptionPlan(**fields)
    plan.plan_metadata = metadata or {}
    if plan.is_active is None:
        plan.is_active = True
    if plan.currency is None:
        plan.currency = "EUR"
    validate_plan(plan)

    db.add(plan)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(plan)
    logger.info(f"Plan created: plan_id={plan.id}, name={plan.name}, type={plan.type}, price={plan.price}")
    return plan


def seed_default_plans(db: Session) -> List[SubscriptionPlan]:
    """
    Insert the default catalog, skipping plans whose name already exists.
    
    Returns:
        The plans created by this call (empty when already seeded)
    """
    created = []
    for definition in get_default_plans():
        if get_plan_by_name(db, definition["name"]) is not None:
            logger.debug(f"Plan already seeded: name={definition['name']}")
            continue
        created.append(create_plan(db, **definition))

    logger.info(f"Default plans seeded: created={len(created)}")
    return created
