"""
Unit tests for the entitlement calculator.
Pure functions: entries are built in memory, no database involved.
"""
from datetime import timedelta

from eventhub.services.entitlement_calculator import (
    RestrictionReason,
    UsageKind,
    compute_rights,
    compute_usage_stats,
    select_usage_source,
)
from factories import NOW, subscription_entry, package_entry


def test_no_entries_means_no_active_plan():
    """A user without any plan cannot publish."""
    rights = compute_rights([], NOW)

    assert rights.can_publish is False
    assert rights.restriction_reason == RestrictionReason.NO_ACTIVE_PLAN
    assert rights.active_subscription is None
    assert rights.active_packages == ()
    assert rights.weekly is None
    assert rights.remaining_credits == 0


def test_subscription_with_capacity():
    """Subscription under both limits grants publishing."""
    sub = subscription_entry(weekly_limit=3, monthly_limit=12, weekly_used=1, monthly_used=1)

    rights = compute_rights([sub], NOW)

    assert rights.can_publish is True
    assert rights.restriction_reason is None
    assert rights.active_subscription is sub
    assert rights.weekly.limit == 3
    assert rights.weekly.used == 1
    assert rights.weekly.remaining == 2
    assert rights.monthly.remaining == 11


def test_weekly_limit_exhausted_without_packages():
    sub = subscription_entry(weekly_limit=3, weekly_used=3, monthly_used=3)

    rights = compute_rights([sub], NOW)

    assert rights.can_publish is False
    assert rights.restriction_reason == RestrictionReason.WEEKLY_LIMIT_REACHED
    assert rights.weekly.remaining == 0


def test_monthly_limit_exhausted():
    """Weekly window has room but the month is used up."""
    started = NOW - timedelta(days=20)
    sub = subscription_entry(
        weekly_limit=3, monthly_limit=4, weekly_used=0, monthly_used=4,
        started_at=started, last_used_at=NOW - timedelta(days=8),
    )

    rights = compute_rights([sub], NOW)

    assert rights.weekly.used == 0
    assert rights.monthly.used == 4
    assert rights.can_publish is False
    assert rights.restriction_reason == RestrictionReason.MONTHLY_LIMIT_REACHED


def test_weekly_checked_before_monthly():
    """When both windows are exhausted the weekly limit is reported."""
    sub = subscription_entry(weekly_limit=1, monthly_limit=1, weekly_used=1, monthly_used=1)

    rights = compute_rights([sub], NOW)

    assert rights.restriction_reason == RestrictionReason.WEEKLY_LIMIT_REACHED


def test_exhausted_subscription_falls_back_to_packages():
    """With the weekly limit used up, remaining package credits still allow publishing."""
    sub = subscription_entry(weekly_limit=3, weekly_used=3, monthly_used=3)
    pkg = package_entry(total_credits=5, used_credits=2)

    rights = compute_rights([sub, pkg], NOW)

    assert rights.can_publish is True
    assert rights.restriction_reason is None
    assert rights.remaining_credits == 3
    assert rights.weekly.remaining == 0


def test_weekly_rollover_restores_capacity():
    """
    weekly_used=3 of 3 blocks the subscription inside the first week, but
    eight days after started_at the same stored counter no longer counts.
    """
    started = NOW
    sub = subscription_entry(weekly_limit=3, monthly_limit=None, weekly_used=3, monthly_used=3, started_at=started)
    pkg = package_entry(total_credits=2, used_credits=1, started_at=started - timedelta(days=1))

    same_week = compute_rights([sub, pkg], started + timedelta(days=2))
    assert same_week.weekly.remaining == 0
    assert same_week.subscription_has_capacity is False
    assert same_week.can_publish is True  # from the package only
    assert same_week.remaining_credits == 1

    next_week = compute_rights([sub, pkg], started + timedelta(days=8))
    assert next_week.weekly.used == 0
    assert next_week.weekly.remaining == 3
    assert next_week.subscription_has_capacity is True


def test_monthly_rollover_on_anniversary():
    started = NOW - timedelta(days=40)
    sub = subscription_entry(
        weekly_limit=None, monthly_limit=4, monthly_used=4, started_at=started,
        last_used_at=started + timedelta(days=3), duration_days=90,
    )

    rights = compute_rights([sub], NOW)

    assert rights.monthly.used == 0
    assert rights.monthly.remaining == 4
    assert rights.can_publish is True


def test_unlimited_subscription_beats_exhausted_package():
    """Unlimited subscription grants publishing even when package credits are gone."""
    sub = subscription_entry(weekly_limit=None, monthly_limit=None, weekly_used=50, monthly_used=200)
    pkg = package_entry(total_credits=5, used_credits=5)

    rights = compute_rights([sub, pkg], NOW)

    assert rights.can_publish is True
    assert rights.weekly.unlimited is True
    assert rights.weekly.remaining is None
    assert rights.monthly.exhausted is False
    assert rights.remaining_credits == 0


def test_exhausted_packages_only():
    pkg = package_entry(total_credits=1, used_credits=1)

    rights = compute_rights([pkg], NOW)

    assert rights.can_publish is False
    assert rights.restriction_reason == RestrictionReason.NO_CREDITS_REMAINING
    assert rights.total_credits == 1
    assert rights.used_credits == 1


def test_credits_summed_across_packages_oldest_first():
    newer = package_entry(entry_id=11, total_credits=10, used_credits=4, started_at=NOW - timedelta(days=1))
    older = package_entry(entry_id=12, total_credits=1, used_credits=0, started_at=NOW - timedelta(days=30))

    rights = compute_rights([newer, older], NOW)

    assert rights.active_packages == (older, newer)
    assert rights.total_credits == 11
    assert rights.used_credits == 4
    assert rights.remaining_credits == 7


def test_lapsed_and_inactive_entries_ignored():
    """Entries past expired_at, pending, cancelled or expired grant nothing."""
    lapsed_pkg = package_entry(entry_id=20, started_at=NOW - timedelta(days=400))
    lapsed_sub = subscription_entry(entry_id=21, started_at=NOW - timedelta(days=31))
    pending = package_entry(entry_id=22, status="pending")
    cancelled = subscription_entry(entry_id=23, status="cancelled")
    expired = package_entry(entry_id=24, status="expired")

    rights = compute_rights([lapsed_pkg, lapsed_sub, pending, cancelled, expired], NOW)

    assert rights.can_publish is False
    assert rights.restriction_reason == RestrictionReason.NO_ACTIVE_PLAN


def test_latest_subscription_wins_when_several_active():
    older = subscription_entry(entry_id=1, started_at=NOW - timedelta(days=10), weekly_limit=1)
    newer = subscription_entry(entry_id=2, started_at=NOW - timedelta(days=1), weekly_limit=2)

    rights = compute_rights([newer, older], NOW)

    assert rights.active_subscription is newer
    assert compute_rights([older, newer], NOW).active_subscription is newer


def test_compute_rights_is_deterministic():
    """Same entries and same instant give identical output."""
    entries = [
        subscription_entry(weekly_used=2, monthly_used=5),
        package_entry(entry_id=10, used_credits=3),
        package_entry(entry_id=11, total_credits=1, used_credits=1, started_at=NOW - timedelta(days=50)),
    ]

    first = compute_rights(entries, NOW)
    second = compute_rights(list(entries), NOW)

    assert first == second
    assert compute_rights(list(reversed(entries)), NOW) == first


def test_select_usage_source_prefers_subscription():
    sub = subscription_entry(weekly_used=0)
    pkg = package_entry()

    entry, kind = select_usage_source(compute_rights([sub, pkg], NOW))

    assert entry is sub
    assert kind == UsageKind.PERIOD


def test_select_usage_source_falls_back_to_oldest_package_with_credits():
    sub = subscription_entry(weekly_limit=1, weekly_used=1, monthly_used=1)
    empty_old = package_entry(entry_id=10, total_credits=1, used_credits=1, started_at=NOW - timedelta(days=90))
    old = package_entry(entry_id=11, total_credits=5, used_credits=1, started_at=NOW - timedelta(days=60))
    new = package_entry(entry_id=12, total_credits=5, started_at=NOW - timedelta(days=1))

    entry, kind = select_usage_source(compute_rights([sub, new, old, empty_old], NOW))

    assert entry is old
    assert kind == UsageKind.CREDIT


def test_select_usage_source_none_when_blocked():
    assert select_usage_source(compute_rights([], NOW)) is None


def test_usage_stats():
    sub = subscription_entry(weekly_used=2, monthly_used=3, price=130.0, last_used_at=NOW - timedelta(hours=1))
    sub.total_used = 7
    pkg = package_entry(total_credits=10, used_credits=4, price=249.99)
    cancelled = subscription_entry(entry_id=3, status="cancelled", started_at=NOW - timedelta(days=60), price=78.0)
    cancelled.total_used = 1
    pending = package_entry(entry_id=4, status="pending", price=29.0)
    pending.started_at = None

    stats = compute_usage_stats([sub, pkg, cancelled, pending], NOW)

    assert stats.total_subscriptions == 2
    assert stats.active_subscriptions == 1
    assert stats.total_packages == 2
    assert stats.active_packages == 1
    assert stats.total_spent == round(130.0 + 249.99 + 78.0, 2)
    assert stats.events_published == 7 + 4 + 1
    assert stats.events_remaining == 6
    assert stats.current_period_usage == 3
    assert stats.last_payment_date == sub.started_at
    assert stats.currencies == ("EUR",)
    assert stats.next_billing_date == sub.expired_at
