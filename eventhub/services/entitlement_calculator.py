"""
Entitlement calculator.

Pure functions turning a user's ledger entries and a point in time into a
publishing decision and usage statistics. Nothing here touches the database
or the clock; callers pass ``now`` explicitly so the same inputs always give
the same answer.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from eventhub.core.usage_periods import (
    current_week_start,
    current_month_start,
    next_week_start,
    next_month_start,
    used_in_period,
)
from eventhub.db.models.user_subscription import UserSubscription


class RestrictionReason(str, enum.Enum):
    """Why publishing is blocked. Sources are checked in this order."""
    WEEKLY_LIMIT_REACHED = "weekly_limit_reached"
    MONTHLY_LIMIT_REACHED = "monthly_limit_reached"
    NO_CREDITS_REMAINING = "no_credits_remaining"
    NO_ACTIVE_PLAN = "no_active_plan"


class UsageKind(str, enum.Enum):
    """Which counters a publish consumes on a ledger entry."""
    PERIOD = "period"  # weekly_used + monthly_used on a subscription
    CREDIT = "credit"  # used_credits on a package


@dataclass(frozen=True)
class UsageWindow:
    """Limit/used/remaining for one period. ``limit=None`` means unlimited."""
    limit: Optional[int]
    used: int
    remaining: Optional[int]
    resets_at: Optional[datetime] = None

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.remaining <= 0


@dataclass(frozen=True)
class PublishingRights:
    can_publish: bool
    weekly: Optional[UsageWindow]
    monthly: Optional[UsageWindow]
    total_credits: int
    used_credits: int
    remaining_credits: int
    active_subscription: Optional[UserSubscription]
    active_packages: Tuple[UserSubscription, ...]
    restriction_reason: Optional[RestrictionReason]
    computed_at: datetime

    @property
    def subscription_has_capacity(self) -> bool:
        if self.active_subscription is None:
            return False
        return not self.weekly.exhausted and not self.monthly.exhausted


@dataclass(frozen=True)
class UsageStats:
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    total_packages: int = 0
    active_packages: int = 0
    total_spent: float = 0.0
    events_published: int = 0
    events_remaining: int = 0
    current_period_usage: int = 0
    last_payment_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    currencies: Tuple[str, ...] = field(default_factory=tuple)


def _window(limit: Optional[int], used: int, resets_at: datetime) -> UsageWindow:
    if limit is None:
        return UsageWindow(limit=None, used=used, remaining=None, resets_at=resets_at)
    return UsageWindow(limit=limit, used=used, remaining=max(0, limit - used), resets_at=resets_at)


def _start_key(entry: UserSubscription) -> Tuple[datetime, int]:
    return (entry.started_at or entry.created_at or datetime.min, entry.id or 0)


def partition_active(
    entries: Iterable[UserSubscription], now: datetime
) -> Tuple[Optional[UserSubscription], List[UserSubscription]]:
    """
    Split entries into the active subscription and the active packages.

    Entries whose validity window has passed are ignored even if their stored
    status is still ``active``. Should more than one subscription be active,
    the most recently started one wins. Packages come back oldest first.
    """
    subscriptions = []
    packages = []
    for entry in entries:
        if not entry.is_effectively_active(now):
            continue
        if entry.is_subscription:
            subscriptions.append(entry)
        elif entry.is_package:
            packages.append(entry)

    subscription = max(subscriptions, key=_start_key) if subscriptions else None
    packages.sort(key=_start_key)
    return subscription, packages


def subscription_windows(entry: UserSubscription, now: datetime) -> Tuple[UsageWindow, UsageWindow]:
    """Weekly and monthly windows for a subscription, with period rollover applied."""
    started_at = entry.started_at or now
    written_at = entry.last_used_at or entry.started_at

    week_start = current_week_start(started_at, now)
    month_start = current_month_start(started_at, now)

    weekly = _window(
        entry.weekly_limit,
        used_in_period(entry.weekly_used, written_at, week_start),
        next_week_start(started_at, now),
    )
    monthly = _window(
        entry.monthly_limit,
        used_in_period(entry.monthly_used, written_at, month_start),
        next_month_start(started_at, now),
    )
    return weekly, monthly


def compute_rights(entries: Iterable[UserSubscription], now: datetime) -> PublishingRights:
    """
    Decide whether the user may publish right now.

    A subscription grants publishing while both its weekly and monthly windows
    have capacity (unlimited windows always do). Packages grant publishing
    while any of them has credits left. Either source is enough. When neither
    is, the restriction reason is the first exhausted source in the order
    weekly limit, monthly limit, credits.

    Args:
        entries: The user's ledger entries (any status)
        now: Evaluation instant, naive UTC

    Returns:
        PublishingRights for that instant
    """
    subscription, packages = partition_active(entries, now)

    weekly = monthly = None
    if subscription is not None:
        weekly, monthly = subscription_windows(subscription, now)

    total_credits = sum(p.total_credits or 0 for p in packages)
    used_credits = sum(p.used_credits or 0 for p in packages)
    remaining_credits = sum(p.remaining_credits for p in packages)

    subscription_ok = subscription is not None and not weekly.exhausted and not monthly.exhausted
    credits_ok = remaining_credits > 0
    can_publish = subscription_ok or credits_ok

    reason = None
    if not can_publish:
        if subscription is not None and weekly.exhausted:
            reason = RestrictionReason.WEEKLY_LIMIT_REACHED
        elif subscription is not None and monthly.exhausted:
            reason = RestrictionReason.MONTHLY_LIMIT_REACHED
        elif packages:
            reason = RestrictionReason.NO_CREDITS_REMAINING
        else:
            reason = RestrictionReason.NO_ACTIVE_PLAN

    return PublishingRights(
        can_publish=can_publish,
        weekly=weekly,
        monthly=monthly,
        total_credits=total_credits,
        used_credits=used_credits,
        remaining_credits=remaining_credits,
        active_subscription=subscription,
        active_packages=tuple(packages),
        restriction_reason=reason,
        computed_at=now,
    )


def select_usage_source(rights: PublishingRights) -> Optional[Tuple[UserSubscription, UsageKind]]:
    """Entry a publish should be charged to: the subscription first, then the oldest package with credits."""
    if rights.subscription_has_capacity:
        return rights.active_subscription, UsageKind.PERIOD
    for package in rights.active_packages:
        if package.remaining_credits > 0:
            return package, UsageKind.CREDIT
    return None


def compute_usage_stats(entries: Iterable[UserSubscription], now: datetime) -> UsageStats:
    """Aggregate purchase and usage figures across all of a user's entries."""
    entries = list(entries)
    rights = compute_rights(entries, now)

    subscriptions = [e for e in entries if e.is_subscription]
    packages = [e for e in entries if e.is_package]
    paid = [e for e in entries if e.started_at is not None]

    current_period_usage = 0
    next_billing_date = None
    if rights.active_subscription is not None:
        current_period_usage = max(rights.weekly.used, rights.monthly.used)
        next_billing_date = rights.active_subscription.expired_at

    return UsageStats(
        total_subscriptions=len(subscriptions),
        active_subscriptions=1 if rights.active_subscription is not None else 0,
        total_packages=len(packages),
        active_packages=len(rights.active_packages),
        total_spent=round(sum(e.price or 0 for e in paid), 2),
        events_published=sum(e.total_used or 0 for e in entries),
        events_remaining=rights.remaining_credits,
        current_period_usage=current_period_usage,
        last_payment_date=max((e.started_at for e in paid), default=None),
        next_billing_date=next_billing_date,
        currencies=tuple(sorted({e.currency for e in paid if e.currency})),
    )
