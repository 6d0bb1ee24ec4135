"""
Subscription ledger repository.

All writes to ``user_subscriptions`` go through here. Each mutating function
is one transaction: it commits once on success and rolls back entirely on
failure. Cross-row invariants are left to the database (unique correlation
id, partial unique index on the active subscription, CHECK constraints) and
status transitions are compare-and-swap UPDATEs, so concurrent webhook
deliveries and publish attempts cannot race each other into a bad state.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import update, case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from eventhub.core.errors import (
    ActiveSubscriptionExistsError,
    DuplicateCorrelationError,
    InvalidTransitionError,
    LedgerEntryNotFoundError,
    LimitExceededError,
    ValidationError,
)
from eventhub.core.usage_periods import current_week_start, current_month_start
from eventhub.db.models.plan import SubscriptionPlan, PlanType
from eventhub.db.models.user_subscription import UserSubscription, SubscriptionStatus
from eventhub.services.entitlement_calculator import UsageKind

logger = logging.getLogger(__name__)

PENDING = SubscriptionStatus.PENDING.value
ACTIVE = SubscriptionStatus.ACTIVE.value
CANCELLED = SubscriptionStatus.CANCELLED.value
EXPIRED = SubscriptionStatus.EXPIRED.value


def _snapshot(plan: SubscriptionPlan) -> dict:
    """Plan fields copied onto the ledger entry at creation time."""
    return {
        "plan_id": plan.id,
        "type": plan.type,
        "name": plan.name,
        "display_name": plan.display_name,
        "price": plan.price,
        "currency": plan.currency,
        "billing_cycle": plan.billing_cycle,
        "weekly_limit": plan.weekly_limit,
        "monthly_limit": plan.monthly_limit,
        "total_credits": plan.total_credits,
        "duration_days": plan.effective_duration_days,
        "snapshot_metadata": dict(plan.plan_metadata or {}),
    }


def _not_lapsed(now: datetime):
    return or_(UserSubscription.expired_at.is_(None), UserSubscription.expired_at > now)


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------

def get_entry(db: Session, entry_id: int) -> UserSubscription:
    entry = db.query(UserSubscription).filter(UserSubscription.id == entry_id).first()
    if entry is None:
        raise LedgerEntryNotFoundError(f"Subscription {entry_id} not found", {"subscription_id": entry_id})
    return entry


def get_by_correlation_id(db: Session, correlation_id: str) -> Optional[UserSubscription]:
    return db.query(UserSubscription).filter(UserSubscription.correlation_id == correlation_id).first()


def get_by_checkout_session_id(db: Session, checkout_session_id: str) -> Optional[UserSubscription]:
    return (
        db.query(UserSubscription)
        .filter(UserSubscription.checkout_session_id == checkout_session_id)
        .order_by(UserSubscription.id.desc())
        .first()
    )


def list_active_for_user(db: Session, user_id: int, now: Optional[datetime] = None) -> List[UserSubscription]:
    """Active entries whose validity window has not passed, oldest first."""
    now = now or datetime.utcnow()
    return (
        db.query(UserSubscription)
        .filter(
            UserSubscription.user_id == user_id,
            UserSubscription.status == ACTIVE,
            _not_lapsed(now),
        )
        .order_by(UserSubscription.started_at, UserSubscription.id)
        .all()
    )


def list_for_user(db: Session, user_id: int) -> List[UserSubscription]:
    """Every entry for the user in any status, newest first."""
    return (
        db.query(UserSubscription)
        .filter(UserSubscription.user_id == user_id)
        .order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
        .all()
    )


def get_history_for_user(
    db: Session, user_id: int, limit: int = 20, offset: int = 0
) -> Tuple[List[UserSubscription], int]:
    """
    One page of the user's purchase history, newest first.

    Returns:
        Tuple of (entries on this page, total number of entries)
    """
    query = db.query(UserSubscription).filter(UserSubscription.user_id == user_id)
    total = query.count()
    entries = (
        query.order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total


def find_live_subscription(db: Session, user_id: int, now: datetime) -> Optional[UserSubscription]:
    """The user's active, not yet lapsed, subscription-type entry if any."""
    return (
        db.query(UserSubscription)
        .filter(
            UserSubscription.user_id == user_id,
            UserSubscription.type == PlanType.SUBSCRIPTION.value,
            UserSubscription.status == ACTIVE,
            _not_lapsed(now),
        )
        .first()
    )


# ----------------------------------------------------------------------------
# Creation
# ----------------------------------------------------------------------------

def create_pending(
    db: Session,
    user_id: int,
    plan: SubscriptionPlan,
    correlation_id: str,
    checkout_session_id: Optional[str] = None,
) -> UserSubscription:
    """
    Record a purchase intent as a pending entry.

    Args:
        db: Database session
        user_id: Purchasing user
        plan: Plan whose fields are snapshotted onto the entry
        correlation_id: Provider key the confirming webhook will carry
        checkout_session_id: Checkout session that produced the entry

    Raises:
        DuplicateCorrelationError: If correlation_id is already recorded
    """
    if get_by_correlation_id(db, correlation_id) is not None:
        raise DuplicateCorrelationError(
            f"Correlation id already recorded: {correlation_id}", {"correlation_id": correlation_id}
        )

    entry = UserSubscription(
        user_id=user_id,
        status=PENDING,
        correlation_id=correlation_id,
        checkout_session_id=checkout_session_id or correlation_id,
        used_credits=0,
        weekly_used=0,
        monthly_used=0,
        total_used=0,
        **_snapshot(plan),
    )
    db.add(entry)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateCorrelationError(
            f"Correlation id already recorded: {correlation_id}", {"correlation_id": correlation_id}
        )
    db.refresh(entry)

    logger.info(
        f"Ledger entry created: entry_id={entry.id}, user_id={user_id}, plan={plan.name}, "
        f"type={plan.type}, status={PENDING}, correlation_id={correlation_id}"
    )
    return entry


def create_active(
    db: Session,
    user_id: int,
    plan: SubscriptionPlan,
    correlation_id: str,
    checkout_session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> UserSubscription:
    """
    Create an entry directly in ``active`` state, in a single transaction.

    Used when a payment confirmation arrives for a purchase with no pending
    entry. If the correlation id is already recorded (duplicate or parallel
    delivery), the existing entry is activated instead, idempotently.

    Raises:
        ActiveSubscriptionExistsError: If the user already has a live subscription
        InvalidTransitionError: If the existing entry was cancelled or expired
    """
    now = now or datetime.utcnow()

    if get_by_correlation_id(db, correlation_id) is not None:
        return activate_by_correlation_id(db, correlation_id, now)

    snapshot = _snapshot(plan)
    entry = UserSubscription(
        user_id=user_id,
        status=ACTIVE,
        correlation_id=correlation_id,
        checkout_session_id=checkout_session_id,
        started_at=now,
        expired_at=now + timedelta(days=snapshot["duration_days"]),
        used_credits=0,
        weekly_used=0,
        monthly_used=0,
        total_used=0,
        **snapshot,
    )

    try:
        if plan.type == PlanType.SUBSCRIPTION.value:
            _guard_single_active_subscription(db, user_id, now, exclude_id=None)
        db.add(entry)
        db.commit()
    except IntegrityError:
        db.rollback()
        if get_by_correlation_id(db, correlation_id) is not None:
            # A parallel delivery inserted the same correlation id first
            return activate_by_correlation_id(db, correlation_id, now)
        raise ActiveSubscriptionExistsError(
            f"User {user_id} already has an active subscription", {"user_id": user_id}
        )
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)

    logger.info(
        f"Ledger entry activated: entry_id={entry.id}, user_id={user_id}, plan={entry.name}, "
        f"type={entry.type}, correlation_id={correlation_id}, expired_at={entry.expired_at.isoformat()}"
    )
    return entry


# ----------------------------------------------------------------------------
# Status transitions
# ----------------------------------------------------------------------------

def _guard_single_active_subscription(
    db: Session, user_id: int, now: datetime, exclude_id: Optional[int]
) -> None:
    """
    Re-read the one-active-subscription rule inside the current transaction.

    A subscription whose window already passed is persisted as expired so
    its slot is freed; a live one blocks the activation.
    """
    lapsed = db.execute(
        update(UserSubscription)
        .where(
            UserSubscription.user_id == user_id,
            UserSubscription.type == PlanType.SUBSCRIPTION.value,
            UserSubscription.status == ACTIVE,
            UserSubscription.expired_at.isnot(None),
            UserSubscription.expired_at <= now,
        )
        .values(status=EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if lapsed.rowcount:
        logger.info(f"Lapsed subscription expired: user_id={user_id}, count={lapsed.rowcount}")

    query = db.query(UserSubscription).filter(
        UserSubscription.user_id == user_id,
        UserSubscription.type == PlanType.SUBSCRIPTION.value,
        UserSubscription.status == ACTIVE,
    )
    if exclude_id is not None:
        query = query.filter(UserSubscription.id != exclude_id)
    live = query.first()
    if live is not None:
        live_id = live.id
        db.rollback()
        logger.warning(
            f"Activation blocked by live subscription: user_id={user_id}, active_subscription_id={live_id}"
        )
        raise ActiveSubscriptionExistsError(
            f"User {user_id} already has an active subscription",
            {"user_id": user_id, "active_subscription_id": live_id},
        )


def activate_by_correlation_id(
    db: Session, correlation_id: str, now: Optional[datetime] = None
) -> UserSubscription:
    """
    Move the entry keyed by ``correlation_id`` from pending to active.

    Idempotent: an entry that is already active is returned unchanged, which
    makes repeated webhook deliveries harmless.

    Args:
        db: Database session
        correlation_id: Checkout session id or provider subscription id
        now: Activation instant (defaults to utcnow)

    Returns:
        The active ledger entry

    Raises:
        LedgerEntryNotFoundError: No entry carries this correlation id
        InvalidTransitionError: The entry is cancelled or expired
        ActiveSubscriptionExistsError: Another subscription is live for the user;
            the entry stays pending
    """
    now = now or datetime.utcnow()
    entry = get_by_correlation_id(db, correlation_id)
    if entry is None:
        raise LedgerEntryNotFoundError(
            f"No ledger entry for correlation id {correlation_id}", {"correlation_id": correlation_id}
        )

    if entry.status == ACTIVE:
        logger.info(f"Ledger entry already active: entry_id={entry.id}, correlation_id={correlation_id}")
        return entry
    if entry.status != PENDING:
        raise InvalidTransitionError(
            f"Cannot activate entry in status {entry.status}",
            {"subscription_id": entry.id, "status": entry.status},
        )

    entry_id = entry.id
    user_id = entry.user_id
    duration_days = entry.duration_days or 30

    try:
        if entry.is_subscription:
            _guard_single_active_subscription(db, user_id, now, exclude_id=entry_id)
        result = db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == entry_id, UserSubscription.status == PENDING)
            .values(
                status=ACTIVE,
                started_at=now,
                expired_at=now + timedelta(days=duration_days),
                weekly_used=0,
                monthly_used=0,
                last_used_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        entry = get_entry(db, entry_id)
        if entry.status == ACTIVE:
            return entry
        logger.error(
            f"Activation lost race on active subscription: entry_id={entry_id}, user_id={user_id}, "
            f"correlation_id={correlation_id}; entry left pending"
        )
        raise ActiveSubscriptionExistsError(
            f"User {user_id} already has an active subscription", {"user_id": user_id}
        )
    except Exception:
        db.rollback()
        raise

    entry = get_entry(db, entry_id)
    if result.rowcount == 0:
        # Another worker moved the entry between our read and the UPDATE
        if entry.status == ACTIVE:
            logger.info(f"Ledger entry activated concurrently: entry_id={entry_id}")
            return entry
        raise InvalidTransitionError(
            f"Cannot activate entry in status {entry.status}",
            {"subscription_id": entry_id, "status": entry.status},
        )

    logger.info(
        f"Ledger entry activated: entry_id={entry_id}, user_id={user_id}, plan={entry.name}, "
        f"type={entry.type}, correlation_id={correlation_id}, expired_at={entry.expired_at.isoformat()}"
    )
    return entry


def _cancel(db: Session, entry: UserSubscription, now: datetime) -> UserSubscription:
    if entry.status == CANCELLED:
        logger.info(f"Ledger entry already cancelled: entry_id={entry.id}")
        return entry
    if entry.status == EXPIRED:
        raise InvalidTransitionError(
            "Cannot cancel an expired entry", {"subscription_id": entry.id, "status": entry.status}
        )

    entry_id = entry.id
    try:
        result = db.execute(
            update(UserSubscription)
            .where(UserSubscription.id == entry_id, UserSubscription.status.in_([PENDING, ACTIVE]))
            .values(status=CANCELLED, cancelled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    entry = get_entry(db, entry_id)
    if result.rowcount == 0 and entry.status != CANCELLED:
        raise InvalidTransitionError(
            f"Cannot cancel entry in status {entry.status}",
            {"subscription_id": entry_id, "status": entry.status},
        )

    logger.info(
        f"Ledger entry cancelled: entry_id={entry_id}, user_id={entry.user_id}, "
        f"type={entry.type}, correlation_id={entry.correlation_id}"
    )
    return entry


def cancel_by_correlation_id(
    db: Session, correlation_id: str, now: Optional[datetime] = None
) -> UserSubscription:
    """
    Cancel the entry keyed by ``correlation_id``. Cancelling twice is a no-op.

    Raises:
        LedgerEntryNotFoundError: No entry carries this correlation id
        InvalidTransitionError: The entry already expired
    """
    entry = get_by_correlation_id(db, correlation_id)
    if entry is None:
        raise LedgerEntryNotFoundError(
            f"No ledger entry for correlation id {correlation_id}", {"correlation_id": correlation_id}
        )
    return _cancel(db, entry, now or datetime.utcnow())


def cancel_entry(db: Session, entry_id: int, now: Optional[datetime] = None) -> UserSubscription:
    """Cancel by primary key, for user-initiated cancellation."""
    return _cancel(db, get_entry(db, entry_id), now or datetime.utcnow())


def bind_correlation_id(db: Session, checkout_session_id: str, correlation_id: str) -> UserSubscription:
    """
    Re-key a pending entry from its checkout session id to the provider's
    subscription id, which later invoice and deletion events carry.

    Raises:
        LedgerEntryNotFoundError: No entry came from this checkout session
        DuplicateCorrelationError: Another entry already holds correlation_id
    """
    entry = get_by_checkout_session_id(db, checkout_session_id)
    if entry is None:
        raise LedgerEntryNotFoundError(
            f"No ledger entry for checkout session {checkout_session_id}",
            {"checkout_session_id": checkout_session_id},
        )
    if entry.correlation_id == correlation_id:
        return entry

    holder = get_by_correlation_id(db, correlation_id)
    if holder is not None:
        raise DuplicateCorrelationError(
            f"Correlation id already recorded: {correlation_id}",
            {"correlation_id": correlation_id, "subscription_id": holder.id},
        )

    previous = entry.correlation_id
    entry.correlation_id = correlation_id
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateCorrelationError(
            f"Correlation id already recorded: {correlation_id}", {"correlation_id": correlation_id}
        )
    db.refresh(entry)

    logger.info(
        f"Correlation id bound: entry_id={entry.id}, previous={previous}, correlation_id={correlation_id}"
    )
    return entry


def mark_payment_failed(db: Session, correlation_id: str, now: Optional[datetime] = None) -> UserSubscription:
    """
    Flag the entry for operator attention after a failed invoice.

    Status is left untouched; the first failure time is kept on repeats.
    """
    now = now or datetime.utcnow()
    entry = get_by_correlation_id(db, correlation_id)
    if entry is None:
        raise LedgerEntryNotFoundError(
            f"No ledger entry for correlation id {correlation_id}", {"correlation_id": correlation_id}
        )
    if entry.payment_failed_at is None:
        entry.payment_failed_at = now
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(entry)
    return entry


def clear_payment_failure(db: Session, correlation_id: str) -> Optional[UserSubscription]:
    entry = get_by_correlation_id(db, correlation_id)
    if entry is None or entry.payment_failed_at is None:
        return entry
    entry.payment_failed_at = None
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    logger.info(f"Payment failure cleared: entry_id={entry.id}, correlation_id={correlation_id}")
    return entry


def extend_paid_period(
    db: Session,
    correlation_id: str,
    invoice_id: Optional[str],
    period_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Tuple[UserSubscription, bool]:
    """
    Push a subscription's ``expired_at`` forward after a paid renewal invoice.

    The new expiry is the invoice's billed period end when known, otherwise
    one plan duration past the later of the current expiry and ``now``. An
    entry already persisted as expired is revived if no other subscription
    took its place.

    Idempotent per invoice: the invoice id is stored on the entry and a
    repeat delivery leaves the entry unchanged. An expiry that would not move
    forward is also treated as already applied.

    Returns:
        Tuple of (entry, whether expired_at was extended)

    Raises:
        LedgerEntryNotFoundError: No entry carries this correlation id
        InvalidTransitionError: The entry is not an active or expired subscription
        ActiveSubscriptionExistsError: Reviving the entry would make a second
            active subscription
    """
    now = now or datetime.utcnow()
    entry = get_by_correlation_id(db, correlation_id)
    if entry is None:
        raise LedgerEntryNotFoundError(
            f"No ledger entry for correlation id {correlation_id}", {"correlation_id": correlation_id}
        )
    if not entry.is_subscription or entry.status not in (ACTIVE, EXPIRED):
        raise InvalidTransitionError(
            f"Cannot renew {entry.type} entry in status {entry.status}",
            {"subscription_id": entry.id, "status": entry.status},
        )

    if invoice_id and entry.last_invoice_id == invoice_id:
        logger.info(f"Renewal invoice already applied: entry_id={entry.id}, invoice_id={invoice_id}")
        return entry, False

    previous_expired = entry.expired_at
    if period_end is not None:
        new_expired = period_end
    else:
        new_expired = max(previous_expired or now, now) + timedelta(days=entry.duration_days or 30)
    if previous_expired is not None and new_expired <= previous_expired:
        logger.info(
            f"Renewal does not move expiry: entry_id={entry.id}, invoice_id={invoice_id}, "
            f"expired_at={previous_expired.isoformat()}"
        )
        return entry, False

    entry_id = entry.id
    user_id = entry.user_id
    previous_status = entry.status
    conditions = [UserSubscription.id == entry_id, UserSubscription.status == previous_status]
    if previous_expired is None:
        conditions.append(UserSubscription.expired_at.is_(None))
    else:
        conditions.append(UserSubscription.expired_at == previous_expired)
    if invoice_id:
        conditions.append(
            or_(UserSubscription.last_invoice_id.is_(None), UserSubscription.last_invoice_id != invoice_id)
        )

    try:
        if previous_status == EXPIRED:
            _guard_single_active_subscription(db, user_id, now, exclude_id=entry_id)
        result = db.execute(
            update(UserSubscription)
            .where(*conditions)
            .values(
                status=ACTIVE,
                expired_at=new_expired,
                last_invoice_id=invoice_id or entry.last_invoice_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.error(
            f"Renewal blocked by another active subscription: entry_id={entry_id}, user_id={user_id}, "
            f"invoice_id={invoice_id}"
        )
        raise ActiveSubscriptionExistsError(
            f"User {user_id} already has an active subscription", {"user_id": user_id}
        )
    except Exception:
        db.rollback()
        raise

    entry = get_entry(db, entry_id)
    if result.rowcount == 0:
        logger.info(f"Ledger entry renewed concurrently: entry_id={entry_id}, invoice_id={invoice_id}")
        return entry, False

    logger.info(
        f"Subscription renewed: entry_id={entry_id}, user_id={user_id}, invoice_id={invoice_id}, "
        f"expired_at={entry.expired_at.isoformat()}"
    )
    return entry, True


def expire_lapsed_entries(db: Session, now: Optional[datetime] = None) -> int:
    """
    Persist ``expired`` on active entries whose window has passed.

    Reads never depend on this (lapsed entries are ignored anyway); it only
    keeps stored status tidy for reporting.
    """
    now = now or datetime.utcnow()
    try:
        result = db.execute(
            update(UserSubscription)
            .where(
                UserSubscription.status == ACTIVE,
                UserSubscription.expired_at.isnot(None),
                UserSubscription.expired_at <= now,
            )
            .values(status=EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Lapsed ledger entries expired: count={result.rowcount}")
    return result.rowcount


# ----------------------------------------------------------------------------
# Usage
# ----------------------------------------------------------------------------

def increment_usage(
    db: Session, entry_id: int, kind: UsageKind, now: Optional[datetime] = None
) -> UserSubscription:
    """
    Charge one publish to a ledger entry.

    A single conditional UPDATE both applies period rollover and checks the
    remaining capacity, so two simultaneous publishes can never both take the
    last slot.

    Args:
        db: Database session
        entry_id: Ledger entry to charge
        kind: UsageKind.PERIOD for subscriptions, UsageKind.CREDIT for packages
        now: Usage instant (defaults to utcnow)

    Raises:
        LedgerEntryNotFoundError: Entry missing, inactive or lapsed
        LimitExceededError: No capacity left on the entry
        ValidationError: kind does not match the entry type
    """
    now = now or datetime.utcnow()
    entry = get_entry(db, entry_id)
    if not entry.is_effectively_active(now):
        raise LedgerEntryNotFoundError(
            f"No active ledger entry {entry_id}", {"subscription_id": entry_id, "status": entry.status}
        )

    kind = UsageKind(kind)
    expected = UsageKind.PERIOD if entry.is_subscription else UsageKind.CREDIT
    if kind != expected:
        raise ValidationError(
            f"Usage kind {kind.value} does not apply to a {entry.type} entry",
            {"subscription_id": entry_id},
        )

    conditions = [
        UserSubscription.id == entry_id,
        UserSubscription.status == ACTIVE,
        _not_lapsed(now),
    ]

    if kind == UsageKind.PERIOD:
        written_at = func.coalesce(UserSubscription.last_used_at, UserSubscription.started_at)
        week_start = current_week_start(entry.started_at, now)
        month_start = current_month_start(entry.started_at, now)
        weekly_used = case((written_at < week_start, 0), else_=UserSubscription.weekly_used)
        monthly_used = case((written_at < month_start, 0), else_=UserSubscription.monthly_used)

        conditions += [
            # Period boundaries above were computed from this start time
            UserSubscription.started_at == entry.started_at,
            or_(UserSubscription.weekly_limit.is_(None), weekly_used < UserSubscription.weekly_limit),
            or_(UserSubscription.monthly_limit.is_(None), monthly_used < UserSubscription.monthly_limit),
        ]
        values = {
            "weekly_used": weekly_used + 1,
            "monthly_used": monthly_used + 1,
        }
    else:
        conditions.append(UserSubscription.used_credits < UserSubscription.total_credits)
        values = {"used_credits": UserSubscription.used_credits + 1}

    values.update(
        total_used=UserSubscription.total_used + 1,
        last_used_at=now,
        updated_at=now,
    )

    try:
        result = db.execute(
            update(UserSubscription)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            logger.info(f"Usage limit reached: entry_id={entry_id}, user_id={entry.user_id}, kind={kind.value}")
            raise LimitExceededError(
                "No publishing capacity left on this plan",
                {"subscription_id": entry_id, "kind": kind.value},
            )
        db.commit()
    except LimitExceededError:
        raise
    except Exception:
        db.rollback()
        raise

    entry = get_entry(db, entry_id)
    logger.info(
        f"Usage recorded: entry_id={entry_id}, user_id={entry.user_id}, kind={kind.value}, "
        f"weekly_used={entry.weekly_used}, monthly_used={entry.monthly_used}, used_credits={entry.used_credits}"
    )
    return entry
