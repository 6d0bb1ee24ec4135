"""
Subscription endpoints: plans, purchases, cancellation, rights and history.
"""
import logging
from datetime import datetime
from functools import lru_cache
from typing import List
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from eventhub.db.session import get_db
from eventhub.db.models.user import User
from eventhub.db.models.plan import PlanType
from eventhub.core.auth_dependency import get_current_user_obj
from eventhub.schemas.subscription import (
    PlanResponse,
    PlansResponse,
    SubscriptionEntryResponse,
    PublishingRightsResponse,
    UsageStatsResponse,
    SubscriptionHistoryResponse,
    PurchaseRequest,
    PurchaseResponse,
    entry_response,
    rights_response,
    stats_response,
)
from eventhub.services import subscription_service
from eventhub.services.payment_provider import PaymentProvider, StripePaymentProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@lru_cache()
def get_payment_provider() -> PaymentProvider:
    """Payment provider dependency; tests override it with a fake."""
    return StripePaymentProvider()


@router.get("/plans", response_model=PlansResponse)
def list_plans(db: Session = Depends(get_db)):
    """Active subscription and package plans, in display order."""
    plans = subscription_service.list_plans(db)
    return {
        "subscriptions": [p for p in plans if p.is_subscription],
        "packages": [p for p in plans if p.is_package],
    }


@router.get("/plans/subscriptions", response_model=List[PlanResponse])
def list_subscription_plans(db: Session = Depends(get_db)):
    return subscription_service.list_plans(db, PlanType.SUBSCRIPTION.value)


@router.get("/plans/packages", response_model=List[PlanResponse])
def list_package_plans(db: Session = Depends(get_db)):
    return subscription_service.list_plans(db, PlanType.PACKAGE.value)


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return subscription_service.get_plan(db, plan_id)


@router.get("/me", response_model=List[SubscriptionEntryResponse])
def my_subscriptions(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Active subscription and packages of the authenticated user."""
    now = datetime.utcnow()
    return [entry_response(e, now) for e in subscription_service.get_user_subscriptions(db, user.id, now)]


@router.get("/publishing-rights", response_model=PublishingRightsResponse)
def publishing_rights(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """
    Whether the authenticated user can publish an event right now.
    
    Returns weekly/monthly windows of the active subscription, package
    credits, and the restriction reason when publishing is blocked.
    """
    rights = subscription_service.get_publishing_rights(db, user.id)
    logger.debug(f"Publishing rights requested: user_id={user.id}, can_publish={rights.can_publish}")
    return rights_response(rights)


@router.get("/usage-stats", response_model=UsageStatsResponse)
def usage_stats(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    return stats_response(subscription_service.get_usage_stats(db, user.id))


@router.get("/history", response_model=SubscriptionHistoryResponse)
def history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    entries, total = subscription_service.get_subscription_history(db, user.id, limit, offset)
    now = datetime.utcnow()
    return {"items": [entry_response(e, now) for e in entries], "total": total, "limit": limit, "offset": offset}


@router.post("/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
def purchase_subscription(
    request: PurchaseRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Start a subscription checkout. The subscription activates once payment is confirmed."""
    result = subscription_service.purchase_subscription(db, user, request.plan_id, provider)
    return PurchaseResponse(
        subscription_id=result.entry.id,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


@router.post("/packages/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
def purchase_package(
    request: PurchaseRequest,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    """Start a package checkout. Credits become available once payment is confirmed."""
    result = subscription_service.purchase_package(db, user, request.plan_id, provider)
    return PurchaseResponse(
        subscription_id=result.entry.id,
        checkout_url=result.checkout_url,
        session_id=result.session_id,
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionEntryResponse)
def cancel_subscription(
    subscription_id: int,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider)
):
    entry = subscription_service.cancel_subscription(db, subscription_id, user_id=user.id, provider=provider)
    return entry_response(entry, datetime.utcnow())
