"""
Tests for the subscription service: purchases, cancellation and publish charging.
"""
from datetime import timedelta

import pytest

from eventhub.core.errors import (
    ActiveSubscriptionExistsError,
    InvalidPlanTypeError,
    LedgerEntryNotFoundError,
    LimitExceededError,
    PlanNotFoundError,
)
from eventhub.db.models.user_subscription import UserSubscription
from eventhub.db.repositories import subscription_ledger as ledger
from eventhub.services import subscription_service
from eventhub.services.entitlement_calculator import RestrictionReason
from factories import NOW, persist_active


def test_purchase_subscription_creates_pending_entry(db, test_user, plans, provider):
    """Purchase creates a checkout session and a pending entry keyed by it."""
    result = subscription_service.purchase_subscription(db, test_user, plans["plus"].id, provider, NOW)

    assert result.session_id == "cs_test_1"
    assert result.checkout_url == "https://checkout.test/cs_test_1"
    assert result.entry.status == "pending"
    assert result.entry.correlation_id == "cs_test_1"
    assert provider.sessions[0]["mode"] == "subscription"
    assert provider.sessions[0]["customer_email"] == test_user.email

    # Pending purchases grant nothing
    assert subscription_service.can_publish_event(db, test_user.id, NOW) is False


def test_purchase_package_uses_payment_mode(db, test_user, plans, provider):
    result = subscription_service.purchase_package(db, test_user, plans["10_events"].id, provider, NOW)

    assert result.entry.type == "package"
    assert result.entry.total_credits == 10
    assert provider.sessions[0]["mode"] == "payment"


def test_purchase_wrong_plan_type(db, test_user, plans, provider):
    with pytest.raises(InvalidPlanTypeError):
        subscription_service.purchase_subscription(db, test_user, plans["10_events"].id, provider, NOW)
    with pytest.raises(InvalidPlanTypeError):
        subscription_service.purchase_package(db, test_user, plans["basic"].id, provider, NOW)
    assert provider.sessions == []


def test_purchase_unknown_plan(db, test_user, plans, provider):
    with pytest.raises(PlanNotFoundError):
        subscription_service.purchase_package(db, test_user, 4242, provider, NOW)


def test_purchase_rejected_while_subscription_active(db, test_user, plans, provider):
    """A second subscription cannot be bought; no checkout session is opened."""
    live = persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")

    with pytest.raises(ActiveSubscriptionExistsError) as exc_info:
        subscription_service.purchase_subscription(db, test_user, plans["pro"].id, provider, NOW)

    assert exc_info.value.details["active_subscription_id"] == live.id
    assert provider.sessions == []


def test_package_purchase_allowed_with_active_subscription(db, test_user, plans, provider):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")

    result = subscription_service.purchase_package(db, test_user, plans["single_event"].id, provider, NOW)

    assert result.entry.status == "pending"


def test_purchase_allowed_after_subscription_lapsed(db, test_user, plans, provider):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=45), "sub_1")

    result = subscription_service.purchase_subscription(db, test_user, plans["pro"].id, provider, NOW)

    assert result.entry.name == "pro"


def test_consume_charges_subscription_first(db, test_user, plans):
    sub = persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")
    pkg = persist_active(db, test_user, plans["10_events"], NOW - timedelta(days=2), "pkg_1")

    charged = subscription_service.consume_publish_credit(db, test_user.id, NOW)

    assert charged.id == sub.id
    db.refresh(pkg)
    assert pkg.used_credits == 0


def test_consume_falls_back_to_package_when_week_used(db, test_user, plans):
    """basic allows one publish per week; the second goes to the package."""
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")
    pkg = persist_active(db, test_user, plans["10_events"], NOW - timedelta(days=2), "pkg_1")

    subscription_service.consume_publish_credit(db, test_user.id, NOW)
    charged = subscription_service.consume_publish_credit(db, test_user.id, NOW + timedelta(minutes=5))

    assert charged.id == pkg.id
    assert charged.used_credits == 1

    rights = subscription_service.get_publishing_rights(db, test_user.id, NOW + timedelta(minutes=10))
    assert rights.weekly.remaining == 0
    assert rights.remaining_credits == 9
    assert rights.can_publish is True


def test_consume_oldest_package_first(db, test_user, plans):
    newer = persist_active(db, test_user, plans["10_events"], NOW - timedelta(days=1), "pkg_new")
    older = persist_active(db, test_user, plans["single_event"], NOW - timedelta(days=20), "pkg_old")

    first = subscription_service.consume_publish_credit(db, test_user.id, NOW)
    second = subscription_service.consume_publish_credit(db, test_user.id, NOW)

    assert first.id == older.id
    assert second.id == newer.id


def test_consume_without_plan(db, test_user):
    with pytest.raises(LimitExceededError) as exc_info:
        subscription_service.consume_publish_credit(db, test_user.id, NOW)
    assert exc_info.value.details["reason"] == RestrictionReason.NO_ACTIVE_PLAN.value


def test_consume_until_credits_exhausted(db, test_user, plans):
    persist_active(db, test_user, plans["single_event"], NOW - timedelta(days=1), "pkg_1")

    subscription_service.consume_publish_credit(db, test_user.id, NOW)

    with pytest.raises(LimitExceededError) as exc_info:
        subscription_service.validate_event_publishing(db, test_user.id, NOW)
    assert exc_info.value.details["reason"] == "no_credits_remaining"


def test_weekly_capacity_returns_next_week(db, test_user, plans):
    started = NOW - timedelta(days=1)
    persist_active(db, test_user, plans["basic"], started, "sub_1")
    subscription_service.consume_publish_credit(db, test_user.id, NOW)

    assert subscription_service.can_publish_event(db, test_user.id, NOW + timedelta(days=1)) is False
    assert subscription_service.can_publish_event(db, test_user.id, started + timedelta(days=8)) is True


def test_cancel_own_subscription_stops_provider_billing(db, test_user, plans, provider):
    entry = persist_active(
        db, test_user, plans["plus"], NOW - timedelta(days=3), "sub_1", checkout_session_id="cs_1"
    )

    cancelled = subscription_service.cancel_subscription(db, entry.id, test_user.id, provider, NOW)

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at == NOW
    assert provider.cancelled == ["sub_1"]
    assert subscription_service.can_publish_event(db, test_user.id, NOW) is False


def test_cancel_pending_purchase_skips_provider(db, test_user, plans, provider):
    result = subscription_service.purchase_subscription(db, test_user, plans["plus"].id, provider, NOW)

    subscription_service.cancel_subscription(db, result.entry.id, test_user.id, provider, NOW)

    assert provider.cancelled == []


def test_cancel_other_users_entry_not_found(db, test_user, other_user, plans, provider):
    entry = persist_active(db, other_user, plans["plus"], NOW, "sub_1")

    with pytest.raises(LedgerEntryNotFoundError):
        subscription_service.cancel_subscription(db, entry.id, test_user.id, provider, NOW)
    db.refresh(entry)
    assert entry.status == "active"


def test_history_limit_clamped(db, test_user, plans):
    for i in range(3):
        persist_active(db, test_user, plans["single_event"], NOW + timedelta(minutes=i), f"pkg_{i}")

    entries, total = subscription_service.get_subscription_history(db, test_user.id, limit=500, offset=-4)

    assert total == 3
    assert len(entries) == 3


def test_usage_stats(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")
    persist_active(db, test_user, plans["10_events"], NOW - timedelta(days=2), "pkg_1")
    subscription_service.consume_publish_credit(db, test_user.id, NOW)

    stats = subscription_service.get_usage_stats(db, test_user.id, NOW)

    assert stats.active_subscriptions == 1
    assert stats.active_packages == 1
    assert stats.events_published == 1
    assert stats.events_remaining == 10
    assert stats.total_spent == 327.99


def test_expire_lapsed_subscriptions(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=31), "sub_1")

    assert subscription_service.expire_lapsed_subscriptions(db, NOW) == 1
    assert ledger.get_by_correlation_id(db, "sub_1").status == "expired"
    assert db.query(UserSubscription).filter(UserSubscription.status == "active").count() == 0
