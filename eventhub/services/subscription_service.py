"""
Subscription service.

The entry point HTTP handlers use for plans, purchases, cancellation and
publishing rights. Combines the plan catalog, the subscription ledger and the
entitlement calculator; the ledger is never written from anywhere else except
the webhook reconciler.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from eventhub.core.errors import (
    ActiveSubscriptionExistsError,
    InvalidPlanTypeError,
    LedgerEntryNotFoundError,
    LimitExceededError,
)
from eventhub.db.models.plan import SubscriptionPlan, PlanType
from eventhub.db.models.user import User
from eventhub.db.models.user_subscription import UserSubscription, SubscriptionStatus
from eventhub.db.repositories import plan_catalog, subscription_ledger as ledger
from eventhub.services.entitlement_calculator import (
    PublishingRights,
    UsageStats,
    compute_rights,
    compute_usage_stats,
    select_usage_source,
)
from eventhub.services.payment_provider import PaymentProvider, MODE_SUBSCRIPTION, MODE_PAYMENT

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE = 100
CONSUME_ATTEMPTS = 3


@dataclass(frozen=True)
class PurchaseResult:
    entry: UserSubscription
    checkout_url: str
    session_id: str


# ----------------------------------------------------------------------------
# Plans
# ----------------------------------------------------------------------------

def list_plans(db: Session, plan_type: Optional[str] = None) -> List[SubscriptionPlan]:
    return plan_catalog.list_active_plans(db, plan_type)


def get_plan(db: Session, plan_id: int) -> SubscriptionPlan:
    return plan_catalog.get_plan_by_id(db, plan_id)


def seed_default_plans(db: Session) -> List[SubscriptionPlan]:
    return plan_catalog.seed_default_plans(db)


# ----------------------------------------------------------------------------
# Rights and usage
# ----------------------------------------------------------------------------

def get_publishing_rights(db: Session, user_id: int, now: Optional[datetime] = None) -> PublishingRights:
    """Current publishing decision for a user."""
    now = now or datetime.utcnow()
    entries = ledger.list_active_for_user(db, user_id, now)
    return compute_rights(entries, now)


def get_user_subscriptions(db: Session, user_id: int, now: Optional[datetime] = None) -> List[UserSubscription]:
    return ledger.list_active_for_user(db, user_id, now)


def get_usage_stats(db: Session, user_id: int, now: Optional[datetime] = None) -> UsageStats:
    now = now or datetime.utcnow()
    return compute_usage_stats(ledger.list_for_user(db, user_id), now)


def get_subscription_history(
    db: Session, user_id: int, limit: int = 20, offset: int = 0
) -> Tuple[List[UserSubscription], int]:
    limit = max(1, min(limit, MAX_HISTORY_PAGE))
    offset = max(0, offset)
    return ledger.get_history_for_user(db, user_id, limit, offset)


def can_publish_event(db: Session, user_id: int, now: Optional[datetime] = None) -> bool:
    return get_publishing_rights(db, user_id, now).can_publish


def validate_event_publishing(db: Session, user_id: int, now: Optional[datetime] = None) -> PublishingRights:
    """
    Return the user's rights if they may publish now.

    Raises:
        LimitExceededError: Carrying the restriction reason otherwise
    """
    rights = get_publishing_rights(db, user_id, now)
    if not rights.can_publish:
        logger.info(f"Publishing blocked: user_id={user_id}, reason={rights.restriction_reason.value}")
        raise LimitExceededError(
            "Publishing limit reached",
            {"reason": rights.restriction_reason.value, "user_id": user_id},
        )
    return rights


def consume_publish_credit(db: Session, user_id: int, now: Optional[datetime] = None) -> UserSubscription:
    """
    Charge one publish to the user's plans.

    The active subscription pays first; once its weekly or monthly window is
    used up, the oldest package with credits left pays. If a concurrent
    publish takes the last slot of the chosen source between the read and
    the update, the decision is recomputed.

    Returns:
        The ledger entry that was charged

    Raises:
        LimitExceededError: No source has capacity
    """
    now = now or datetime.utcnow()
    last_error = None
    for _ in range(CONSUME_ATTEMPTS):
        rights = validate_event_publishing(db, user_id, now)
        source = select_usage_source(rights)
        if source is None:
            break
        entry, kind = source
        try:
            return ledger.increment_usage(db, entry.id, kind, now)
        except LimitExceededError as e:
            last_error = e
            logger.info(f"Publish source exhausted concurrently, retrying: user_id={user_id}, entry_id={entry.id}")

    if last_error is not None:
        raise last_error
    raise LimitExceededError("Publishing limit reached", {"user_id": user_id})


# ----------------------------------------------------------------------------
# Purchases and cancellation
# ----------------------------------------------------------------------------

def _purchase(
    db: Session,
    user: User,
    plan_id: int,
    provider: PaymentProvider,
    expected_type: PlanType,
    now: Optional[datetime],
) -> PurchaseResult:
    now = now or datetime.utcnow()
    plan = plan_catalog.get_plan_by_id(db, plan_id)
    if plan.type != expected_type.value:
        raise InvalidPlanTypeError(
            f"Plan {plan_id} is a {plan.type}, not a {expected_type.value}",
            {"plan_id": plan_id, "plan_type": plan.type},
        )

    if expected_type == PlanType.SUBSCRIPTION:
        live = ledger.find_live_subscription(db, user.id, now)
        if live is not None:
            raise ActiveSubscriptionExistsError(
                "You already have an active subscription; cancel it or change plan instead",
                {"active_subscription_id": live.id},
            )

    mode = MODE_SUBSCRIPTION if expected_type == PlanType.SUBSCRIPTION else MODE_PAYMENT
    session = provider.create_checkout_session(plan, user.email, user.full_name, user.id, mode)
    entry = ledger.create_pending(db, user.id, plan, session.session_id, session.session_id)

    logger.info(
        f"Purchase started: user_id={user.id}, plan={plan.name}, type={plan.type}, "
        f"entry_id={entry.id}, session_id={session.session_id}"
    )
    return PurchaseResult(entry=entry, checkout_url=session.url, session_id=session.session_id)


def purchase_subscription(
    db: Session, user: User, plan_id: int, provider: PaymentProvider, now: Optional[datetime] = None
) -> PurchaseResult:
    """
    Start a subscription purchase.

    Creates the provider checkout session and a pending ledger entry keyed by
    its id. The entry becomes active when the checkout webhook arrives.

    Raises:
        PlanNotFoundError: Unknown or inactive plan
        InvalidPlanTypeError: The plan is a package
        ActiveSubscriptionExistsError: The user already has a live subscription
    """
    return _purchase(db, user, plan_id, provider, PlanType.SUBSCRIPTION, now)


def purchase_package(
    db: Session, user: User, plan_id: int, provider: PaymentProvider, now: Optional[datetime] = None
) -> PurchaseResult:
    """Start a package purchase. Packages stack, so no active-plan check applies."""
    return _purchase(db, user, plan_id, provider, PlanType.PACKAGE, now)


def cancel_subscription(
    db: Session,
    entry_id: int,
    user_id: Optional[int] = None,
    provider: Optional[PaymentProvider] = None,
    now: Optional[datetime] = None,
) -> UserSubscription:
    """
    Cancel a ledger entry by id, for user-initiated cancellation.

    When ``user_id`` is given, entries belonging to someone else are reported
    as not found. When a provider is given and the entry is bound to a
    provider subscription, recurring billing is stopped there too.

    Raises:
        LedgerEntryNotFoundError: Unknown entry, or owned by another user
        InvalidTransitionError: The entry already expired
    """
    entry = ledger.get_entry(db, entry_id)
    if user_id is not None and entry.user_id != user_id:
        raise LedgerEntryNotFoundError(f"Subscription {entry_id} not found", {"subscription_id": entry_id})

    if (
        provider is not None
        and entry.is_subscription
        and entry.status == SubscriptionStatus.ACTIVE.value
        and entry.correlation_id
        and entry.correlation_id != entry.checkout_session_id
    ):
        provider.cancel_subscription(entry.correlation_id)

    entry = ledger.cancel_entry(db, entry_id, now)
    logger.info(f"Subscription cancelled by user: entry_id={entry_id}, user_id={entry.user_id}")
    return entry


def expire_lapsed_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    return ledger.expire_lapsed_entries(db, now)
