"""
Tests for the subscription ledger repository against in-memory SQLite.
"""
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from eventhub.core.errors import (
    ActiveSubscriptionExistsError,
    DuplicateCorrelationError,
    InvalidTransitionError,
    LedgerEntryNotFoundError,
    LimitExceededError,
    ValidationError,
)
from eventhub.db.models.user_subscription import UserSubscription
from eventhub.db.repositories import subscription_ledger as ledger
from eventhub.services.entitlement_calculator import UsageKind
from factories import NOW, persist_active


def test_create_pending_snapshots_plan(db, test_user, plans):
    """Pending entry copies the plan's limits and price."""
    entry = ledger.create_pending(db, test_user.id, plans["plus"], "cs_1")

    assert entry.status == "pending"
    assert entry.plan_id == plans["plus"].id
    assert entry.type == "subscription"
    assert entry.weekly_limit == 2
    assert entry.monthly_limit == 8
    assert entry.price == 130.0
    assert entry.duration_days == 30
    assert entry.correlation_id == "cs_1"
    assert entry.checkout_session_id == "cs_1"
    assert entry.started_at is None
    assert entry.snapshot_metadata["popular"] is True


def test_plan_edits_do_not_change_existing_entries(db, test_user, plans):
    entry = ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")

    plans["basic"].weekly_limit = 10
    plans["basic"].price = 99.0
    db.commit()

    db.refresh(entry)
    assert entry.weekly_limit == 1
    assert entry.price == 78.0


def test_create_pending_duplicate_correlation(db, test_user, plans):
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")

    with pytest.raises(DuplicateCorrelationError):
        ledger.create_pending(db, test_user.id, plans["10_events"], "cs_1")
    assert db.query(UserSubscription).count() == 1


def test_activate_sets_validity_window(db, test_user, plans):
    ledger.create_pending(db, test_user.id, plans["10_events"], "cs_1")

    entry = ledger.activate_by_correlation_id(db, "cs_1", NOW)

    assert entry.status == "active"
    assert entry.started_at == NOW
    assert entry.expired_at == NOW + timedelta(days=365)


def test_activate_twice_is_noop(db, test_user, plans):
    """Repeated activation returns the same entry without moving started_at."""
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")
    first = ledger.activate_by_correlation_id(db, "cs_1", NOW)

    second = ledger.activate_by_correlation_id(db, "cs_1", NOW + timedelta(hours=1))

    assert second.id == first.id
    assert second.started_at == NOW
    assert db.query(UserSubscription).filter(UserSubscription.status == "active").count() == 1


def test_activate_unknown_correlation(db):
    with pytest.raises(LedgerEntryNotFoundError):
        ledger.activate_by_correlation_id(db, "cs_missing", NOW)


def test_activate_cancelled_entry_rejected(db, test_user, plans):
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")
    ledger.cancel_by_correlation_id(db, "cs_1", NOW)

    with pytest.raises(InvalidTransitionError):
        ledger.activate_by_correlation_id(db, "cs_1", NOW)


def test_second_subscription_activation_blocked(db, test_user, plans):
    """A live subscription blocks activating another; the new entry stays pending."""
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=3), "sub_1")
    pending = ledger.create_pending(db, test_user.id, plans["pro"], "cs_2")

    with pytest.raises(ActiveSubscriptionExistsError) as exc_info:
        ledger.activate_by_correlation_id(db, "cs_2", NOW)

    assert exc_info.value.details["user_id"] == test_user.id
    db.refresh(pending)
    assert pending.status == "pending"


def test_lapsed_subscription_frees_the_slot(db, test_user, plans):
    """An active row past its window is persisted as expired so a new one can activate."""
    old = persist_active(db, test_user, plans["basic"], NOW - timedelta(days=40), "sub_old")
    ledger.create_pending(db, test_user.id, plans["pro"], "cs_2")

    entry = ledger.activate_by_correlation_id(db, "cs_2", NOW)

    assert entry.status == "active"
    db.refresh(old)
    assert old.status == "expired"


def test_packages_stack_with_subscription(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=1), "sub_1")
    ledger.create_pending(db, test_user.id, plans["single_event"], "cs_p1")
    ledger.create_pending(db, test_user.id, plans["10_events"], "cs_p2")

    ledger.activate_by_correlation_id(db, "cs_p1", NOW)
    ledger.activate_by_correlation_id(db, "cs_p2", NOW)

    assert len(ledger.list_active_for_user(db, test_user.id, NOW)) == 3


def test_database_enforces_single_active_subscription(db, test_user, plans):
    """The partial unique index rejects a second active subscription row."""
    persist_active(db, test_user, plans["basic"], NOW, "sub_1")

    with pytest.raises(IntegrityError):
        persist_active(db, test_user, plans["pro"], NOW, "sub_2")
    db.rollback()


def test_create_active_is_idempotent(db, test_user, plans):
    first = ledger.create_active(db, test_user.id, plans["single_event"], "cs_1", "cs_1", NOW)
    second = ledger.create_active(db, test_user.id, plans["single_event"], "cs_1", "cs_1", NOW)

    assert first.id == second.id
    assert db.query(UserSubscription).count() == 1


def test_create_active_subscription_conflict(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW, "sub_1")

    with pytest.raises(ActiveSubscriptionExistsError):
        ledger.create_active(db, test_user.id, plans["pro"], "sub_2", "cs_2", NOW)
    assert ledger.get_by_correlation_id(db, "sub_2") is None


def test_cancel_is_idempotent(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW, "sub_1")

    first = ledger.cancel_by_correlation_id(db, "sub_1", NOW + timedelta(days=1))
    second = ledger.cancel_by_correlation_id(db, "sub_1", NOW + timedelta(days=2))

    assert first.status == "cancelled"
    assert second.cancelled_at == NOW + timedelta(days=1)


def test_cancel_expired_entry_rejected(db, test_user, plans):
    entry = persist_active(db, test_user, plans["basic"], NOW, "sub_1", status="expired")

    with pytest.raises(InvalidTransitionError):
        ledger.cancel_entry(db, entry.id, NOW)


def test_bind_correlation_id(db, test_user, plans):
    """Pending entry is re-keyed from the checkout session to the provider subscription."""
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")

    entry = ledger.bind_correlation_id(db, "cs_1", "sub_1")

    assert entry.correlation_id == "sub_1"
    assert entry.checkout_session_id == "cs_1"
    assert ledger.get_by_correlation_id(db, "cs_1") is None


def test_bind_correlation_id_already_taken(db, test_user, plans):
    persist_active(db, test_user, plans["single_event"], NOW, "sub_1")
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_2")

    with pytest.raises(DuplicateCorrelationError):
        ledger.bind_correlation_id(db, "cs_2", "sub_1")


def test_payment_failure_flag(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW, "sub_1")

    entry = ledger.mark_payment_failed(db, "sub_1", NOW)
    again = ledger.mark_payment_failed(db, "sub_1", NOW + timedelta(days=1))

    assert entry.status == "active"
    assert again.payment_failed_at == NOW

    cleared = ledger.clear_payment_failure(db, "sub_1")
    assert cleared.payment_failed_at is None


def test_extend_paid_period_once_per_invoice(db, test_user, plans):
    persist_active(db, test_user, plans["basic"], NOW - timedelta(days=20), "sub_1")

    entry, extended = ledger.extend_paid_period(db, "sub_1", "in_1", now=NOW)
    again, extended_again = ledger.extend_paid_period(db, "sub_1", "in_1", now=NOW + timedelta(days=1))

    assert extended is True
    assert entry.expired_at == NOW + timedelta(days=40)
    assert entry.last_invoice_id == "in_1"
    assert extended_again is False
    assert again.expired_at == NOW + timedelta(days=40)


def test_extend_paid_period_rejects_packages_and_cancelled(db, test_user, plans):
    persist_active(db, test_user, plans["10_events"], NOW, "pkg_1")
    persist_active(db, test_user, plans["basic"], NOW, "sub_1", status="cancelled")

    with pytest.raises(InvalidTransitionError):
        ledger.extend_paid_period(db, "pkg_1", "in_1", now=NOW)
    with pytest.raises(InvalidTransitionError):
        ledger.extend_paid_period(db, "sub_1", "in_2", now=NOW)
    with pytest.raises(LedgerEntryNotFoundError):
        ledger.extend_paid_period(db, "sub_missing", "in_3", now=NOW)


def test_list_active_ignores_lapsed_and_pending(db, test_user, other_user, plans):
    persist_active(db, test_user, plans["single_event"], NOW - timedelta(days=400), "pkg_old")
    current = persist_active(db, test_user, plans["10_events"], NOW - timedelta(days=10), "pkg_new")
    ledger.create_pending(db, test_user.id, plans["basic"], "cs_1")
    persist_active(db, other_user, plans["basic"], NOW, "sub_other")

    active = ledger.list_active_for_user(db, test_user.id, NOW)

    assert [e.id for e in active] == [current.id]


def test_expire_lapsed_entries(db, test_user, plans):
    lapsed = persist_active(db, test_user, plans["single_event"], NOW - timedelta(days=400), "pkg_old")
    live = persist_active(db, test_user, plans["10_events"], NOW, "pkg_new")

    assert ledger.expire_lapsed_entries(db, NOW) == 1

    db.refresh(lapsed)
    db.refresh(live)
    assert lapsed.status == "expired"
    assert live.status == "active"


def test_history_pagination(db, test_user, plans):
    for i in range(5):
        persist_active(db, test_user, plans["single_event"], NOW + timedelta(minutes=i), f"pkg_{i}")

    entries, total = ledger.get_history_for_user(db, test_user.id, limit=2, offset=1)

    assert total == 5
    assert [e.correlation_id for e in entries] == ["pkg_3", "pkg_2"]


def test_increment_period_usage(db, test_user, plans):
    entry = persist_active(db, test_user, plans["basic"], NOW, "sub_1")

    updated = ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW + timedelta(hours=1))

    assert updated.weekly_used == 1
    assert updated.monthly_used == 1
    assert updated.total_used == 1
    assert updated.last_used_at == NOW + timedelta(hours=1)


def test_increment_period_usage_respects_weekly_limit(db, test_user, plans):
    """basic allows one publish a week; the second attempt in the same week fails."""
    entry = persist_active(db, test_user, plans["basic"], NOW, "sub_1")
    ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW + timedelta(hours=1))

    with pytest.raises(LimitExceededError):
        ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW + timedelta(days=2))

    db.refresh(entry)
    assert entry.weekly_used == 1


def test_increment_period_usage_rolls_over_week(db, test_user, plans):
    """A new week resets the weekly counter and keeps the monthly one."""
    entry = persist_active(db, test_user, plans["basic"], NOW, "sub_1")
    ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW + timedelta(hours=1))

    updated = ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW + timedelta(days=8))

    assert updated.weekly_used == 1
    assert updated.monthly_used == 2
    assert updated.total_used == 2


def test_increment_credit_usage_until_exhausted(db, test_user, plans):
    entry = persist_active(db, test_user, plans["single_event"], NOW, "pkg_1")

    updated = ledger.increment_usage(db, entry.id, UsageKind.CREDIT, NOW)
    assert updated.used_credits == 1
    assert updated.remaining_credits == 0

    with pytest.raises(LimitExceededError):
        ledger.increment_usage(db, entry.id, UsageKind.CREDIT, NOW)


def test_increment_wrong_kind(db, test_user, plans):
    entry = persist_active(db, test_user, plans["single_event"], NOW, "pkg_1")

    with pytest.raises(ValidationError):
        ledger.increment_usage(db, entry.id, UsageKind.PERIOD, NOW)


def test_increment_lapsed_entry(db, test_user, plans):
    entry = persist_active(db, test_user, plans["single_event"], NOW - timedelta(days=400), "pkg_1")

    with pytest.raises(LedgerEntryNotFoundError):
        ledger.increment_usage(db, entry.id, UsageKind.CREDIT, NOW)
