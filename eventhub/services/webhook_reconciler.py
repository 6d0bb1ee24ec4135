"""
Webhook reconciler.

Payment provider events are decoded once, at the boundary, into a closed set
of event types. ``reconcile`` applies each one to the subscription ledger.

Every handler is idempotent: replaying an event, or receiving events out of
order, converges on the same ledger state. Nothing here raises for "already
done" or for events carrying too little data to act on; those are logged and
acknowledged so the provider stops redelivering them. Signature verification
happens before this module is reached.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from eventhub.core.errors import (
    ActiveSubscriptionExistsError,
    DuplicateCorrelationError,
    InvalidTransitionError,
    LedgerEntryNotFoundError,
    MissingCorrelationMetadataError,
    PlanNotFoundError,
)
from eventhub.db.models.plan import PlanType
from eventhub.db.models.user_subscription import SubscriptionStatus
from eventhub.db.repositories import plan_catalog, subscription_ledger as ledger

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# Event variants
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: Optional[str]
    mode: Optional[str]
    payment_status: Optional[str]
    subscription_id: Optional[str]
    user_id: Optional[int]
    plan_id: Optional[int]


@dataclass(frozen=True)
class InvoiceSucceeded:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    billing_reason: Optional[str] = None
    period_end: Optional[datetime] = None  # end of the billed period, naive UTC


@dataclass(frozen=True)
class InvoiceFailed:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class Unhandled:
    event_id: str
    event_type: str


ProviderEvent = Union[CheckoutCompleted, InvoiceSucceeded, InvoiceFailed, SubscriptionDeleted, Unhandled]


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"  # ledger changed
    ALREADY_APPLIED = "already_applied"  # ledger was already in the target state
    DROPPED = "dropped"  # event lacked the data needed to act
    IGNORED = "ignored"  # nothing to do for this event
    FLAGGED = "flagged"  # recorded for operator attention


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    entry_id: Optional[int] = None
    detail: str = ""


# ----------------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------------

def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    return value or None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    # Older API versions put the id at the top level, newer ones under parent
    subscription_id = _as_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _as_id(details.get("subscription"))


def _invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    """Latest line item period end; the invoice's own period_end is the previous period."""
    lines = (invoice.get("lines") or {}).get("data") or []
    ends = [_as_int((line.get("period") or {}).get("end")) for line in lines]
    ends = [end for end in ends if end is not None]
    if not ends:
        return None
    return datetime.fromtimestamp(max(ends), tz=timezone.utc).replace(tzinfo=None)


def decode_event(raw: Dict[str, Any]) -> ProviderEvent:
    """
    Turn a provider event payload into one of the event variants.

    Args:
        raw: Verified webhook payload (Stripe event JSON)

    Returns:
        The matching variant, or Unhandled for event types the ledger ignores
    """
    event_id = raw.get("id") or ""
    event_type = raw.get("type") or ""
    obj = (raw.get("data") or {}).get("object") or {}

    if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        metadata = obj.get("metadata") or {}
        return CheckoutCompleted(
            event_id=event_id,
            session_id=obj.get("id"),
            mode=obj.get("mode"),
            payment_status=obj.get("payment_status"),
            subscription_id=_as_id(obj.get("subscription")),
            user_id=_as_int(metadata.get("user_id")),
            plan_id=_as_int(metadata.get("plan_id")),
        )
    if event_type in ("invoice.payment_succeeded", "invoice.paid"):
        return InvoiceSucceeded(
            event_id=event_id,
            invoice_id=obj.get("id"),
            subscription_id=_invoice_subscription_id(obj),
            billing_reason=obj.get("billing_reason"),
            period_end=_invoice_period_end(obj),
        )
    if event_type == "invoice.payment_failed":
        return InvoiceFailed(event_id, obj.get("id"), _invoice_subscription_id(obj))
    if event_type == "customer.subscription.deleted":
        return SubscriptionDeleted(event_id, _as_id(obj.get("id")))
    return Unhandled(event_id, event_type)


# ----------------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------------

def _require(value, field_name: str, event: ProviderEvent):
    if value is None:
        raise MissingCorrelationMetadataError(
            f"{type(event).__name__} event {event.event_id} is missing {field_name}",
            {"event_id": event.event_id, "field": field_name},
        )
    return value


def _activate(db: Session, correlation_id: str, event: ProviderEvent, now: datetime) -> ReconcileResult:
    """Activate an existing entry, mapping ledger outcomes onto reconcile results."""
    entry = ledger.get_by_correlation_id(db, correlation_id)
    was_active = entry is not None and entry.status == SubscriptionStatus.ACTIVE.value
    try:
        entry = ledger.activate_by_correlation_id(db, correlation_id, now)
    except ActiveSubscriptionExistsError:
        logger.error(
            f"Paid subscription left pending, user already has an active subscription: "
            f"event_id={event.event_id}, correlation_id={correlation_id}"
        )
        return ReconcileResult(ReconcileOutcome.FLAGGED, entry.id, "active subscription exists")
    except InvalidTransitionError as e:
        logger.warning(
            f"Payment confirmation for closed entry: event_id={event.event_id}, "
            f"correlation_id={correlation_id}, status={e.details.get('status')}"
        )
        return ReconcileResult(ReconcileOutcome.FLAGGED, entry.id, f"entry is {e.details.get('status')}")

    if was_active:
        return ReconcileResult(ReconcileOutcome.ALREADY_APPLIED, entry.id)
    return ReconcileResult(ReconcileOutcome.APPLIED, entry.id)


def _create_from_metadata(
    db: Session, event: CheckoutCompleted, correlation_id: str, expected_type: str, now: datetime
) -> ReconcileResult:
    user_id = _require(event.user_id, "metadata.user_id", event)
    plan_id = _require(event.plan_id, "metadata.plan_id", event)

    plan = plan_catalog.get_plan_by_id(db, plan_id, include_inactive=True)
    if plan.type != expected_type:
        logger.warning(
            f"Checkout mode does not match plan type: event_id={event.event_id}, "
            f"plan_id={plan_id}, plan_type={plan.type}, mode={event.mode}"
        )
        return ReconcileResult(ReconcileOutcome.DROPPED, None, "plan type mismatch")

    try:
        entry = ledger.create_active(db, user_id, plan, correlation_id, event.session_id, now)
    except ActiveSubscriptionExistsError:
        entry = ledger.create_pending(db, user_id, plan, correlation_id, event.session_id)
        logger.error(
            f"Paid subscription recorded as pending, user already has an active subscription: "
            f"event_id={event.event_id}, entry_id={entry.id}, user_id={user_id}"
        )
        return ReconcileResult(ReconcileOutcome.FLAGGED, entry.id, "active subscription exists")
    except InvalidTransitionError as e:
        logger.warning(f"Checkout completed for closed entry: event_id={event.event_id}, correlation_id={correlation_id}")
        return ReconcileResult(ReconcileOutcome.FLAGGED, None, f"entry is {e.details.get('status')}")

    return ReconcileResult(ReconcileOutcome.APPLIED, entry.id)


def _handle_checkout_completed(db: Session, event: CheckoutCompleted, now: datetime) -> ReconcileResult:
    if event.payment_status == "unpaid":
        logger.info(f"Checkout completed without payment yet: event_id={event.event_id}, session_id={event.session_id}")
        return ReconcileResult(ReconcileOutcome.IGNORED, None, "payment pending")

    if event.mode == "subscription":
        subscription_id = _require(event.subscription_id, "subscription", event)

        entry = ledger.get_by_correlation_id(db, subscription_id)
        if entry is None and event.session_id:
            pending = ledger.get_by_checkout_session_id(db, event.session_id)
            if pending is not None:
                if event.user_id is not None and event.user_id != pending.user_id:
                    logger.error(
                        f"Checkout metadata user does not match pending entry: event_id={event.event_id}, "
                        f"entry_id={pending.id}, entry_user_id={pending.user_id}, metadata_user_id={event.user_id}"
                    )
                    return ReconcileResult(ReconcileOutcome.FLAGGED, pending.id, "user mismatch")
                entry = ledger.bind_correlation_id(db, event.session_id, subscription_id)

        if entry is None:
            return _create_from_metadata(db, event, subscription_id, PlanType.SUBSCRIPTION.value, now)
        return _activate(db, subscription_id, event, now)

    if event.mode == "payment":
        session_id = _require(event.session_id, "session id", event)
        if ledger.get_by_correlation_id(db, session_id) is not None:
            return _activate(db, session_id, event, now)
        return _create_from_metadata(db, event, session_id, PlanType.PACKAGE.value, now)

    logger.info(f"Checkout mode not handled: event_id={event.event_id}, mode={event.mode}")
    return ReconcileResult(ReconcileOutcome.IGNORED, None, f"mode {event.mode}")


def _renew(db: Session, subscription_id: str, event: InvoiceSucceeded, now: datetime) -> ReconcileResult:
    try:
        entry, extended = ledger.extend_paid_period(
            db, subscription_id, event.invoice_id, event.period_end, now
        )
    except (ActiveSubscriptionExistsError, InvalidTransitionError) as e:
        entry = ledger.get_by_correlation_id(db, subscription_id)
        logger.error(
            f"Renewal payment not applied, needs attention: event_id={event.event_id}, "
            f"invoice_id={event.invoice_id}, entry_id={entry.id}, detail={e.message}"
        )
        return ReconcileResult(ReconcileOutcome.FLAGGED, entry.id, "renewal not applied")

    if extended:
        return ReconcileResult(ReconcileOutcome.APPLIED, entry.id, "renewed")
    return ReconcileResult(ReconcileOutcome.ALREADY_APPLIED, entry.id)


def _handle_invoice_succeeded(db: Session, event: InvoiceSucceeded, now: datetime) -> ReconcileResult:
    subscription_id = _require(event.subscription_id, "subscription", event)
    entry = ledger.get_by_correlation_id(db, subscription_id)
    if entry is None:
        # Arrived before checkout completion; that event activates the entry
        logger.info(
            f"Invoice paid for unknown subscription: event_id={event.event_id}, subscription_id={subscription_id}"
        )
        return ReconcileResult(ReconcileOutcome.IGNORED, None, "no ledger entry yet")

    # The first invoice only confirms the purchase; later ones pay for a new period
    renewal = (
        entry.is_subscription
        and entry.status in (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.EXPIRED.value)
        and event.billing_reason != "subscription_create"
    )
    if renewal:
        result = _renew(db, subscription_id, event, now)
    else:
        result = _activate(db, subscription_id, event, now)
    if result.outcome in (ReconcileOutcome.APPLIED, ReconcileOutcome.ALREADY_APPLIED):
        ledger.clear_payment_failure(db, subscription_id)
    return result


def _handle_invoice_failed(db: Session, event: InvoiceFailed, now: datetime) -> ReconcileResult:
    subscription_id = _require(event.subscription_id, "subscription", event)
    try:
        entry = ledger.mark_payment_failed(db, subscription_id, now)
    except LedgerEntryNotFoundError:
        logger.warning(
            f"Invoice payment failed for unknown subscription: event_id={event.event_id}, "
            f"subscription_id={subscription_id}"
        )
        return ReconcileResult(ReconcileOutcome.DROPPED, None, "no ledger entry")

    logger.warning(
        f"Invoice payment failed, needs attention: entry_id={entry.id}, user_id={entry.user_id}, "
        f"invoice_id={event.invoice_id}, status={entry.status}"
    )
    return ReconcileResult(ReconcileOutcome.FLAGGED, entry.id, "payment failed")


def _handle_subscription_deleted(db: Session, event: SubscriptionDeleted, now: datetime) -> ReconcileResult:
    subscription_id = _require(event.subscription_id, "subscription id", event)
    entry = ledger.get_by_correlation_id(db, subscription_id)
    if entry is None:
        logger.info(
            f"Subscription deleted with no ledger entry: event_id={event.event_id}, subscription_id={subscription_id}"
        )
        return ReconcileResult(ReconcileOutcome.IGNORED, None, "no ledger entry")

    if entry.status in (SubscriptionStatus.CANCELLED.value, SubscriptionStatus.EXPIRED.value):
        logger.info(f"Subscription already closed: entry_id={entry.id}, status={entry.status}")
        return ReconcileResult(ReconcileOutcome.ALREADY_APPLIED, entry.id)

    entry = ledger.cancel_by_correlation_id(db, subscription_id, now)
    return ReconcileResult(ReconcileOutcome.APPLIED, entry.id)


def _handle_unhandled(db: Session, event: Unhandled, now: datetime) -> ReconcileResult:
    logger.info(f"Unhandled webhook event type: {event.event_type}, id={event.event_id}")
    return ReconcileResult(ReconcileOutcome.IGNORED, None, event.event_type)


_HANDLERS = {
    CheckoutCompleted: _handle_checkout_completed,
    InvoiceSucceeded: _handle_invoice_succeeded,
    InvoiceFailed: _handle_invoice_failed,
    SubscriptionDeleted: _handle_subscription_deleted,
    Unhandled: _handle_unhandled,
}


def reconcile(db: Session, event: ProviderEvent, now: Optional[datetime] = None) -> ReconcileResult:
    """
    Apply one decoded provider event to the ledger.

    Args:
        db: Database session
        event: Decoded event variant
        now: Processing instant (defaults to utcnow)

    Returns:
        ReconcileResult describing what happened; never raises for
        duplicates, out-of-order deliveries or missing metadata
    """
    now = now or datetime.utcnow()
    handler = _HANDLERS[type(event)]
    try:
        result = handler(db, event, now)
    except MissingCorrelationMetadataError as e:
        logger.warning(f"Webhook dropped: {e.message}")
        return ReconcileResult(ReconcileOutcome.DROPPED, None, e.message)
    except PlanNotFoundError as e:
        logger.warning(f"Webhook dropped, unknown plan: event_id={event.event_id}, detail={e.message}")
        return ReconcileResult(ReconcileOutcome.DROPPED, None, e.message)
    except DuplicateCorrelationError as e:
        logger.error(f"Webhook correlation conflict: event_id={event.event_id}, detail={e.message}")
        return ReconcileResult(ReconcileOutcome.FLAGGED, None, e.message)

    logger.info(
        f"Webhook reconciled: event_id={event.event_id}, event={type(event).__name__}, "
        f"outcome={result.outcome.value}, entry_id={result.entry_id}"
    )
    return result
