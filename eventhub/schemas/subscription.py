"""
Pydantic schemas for subscription endpoints.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

from eventhub.db.models.user_subscription import UserSubscription
from eventhub.services.entitlement_calculator import (
    PublishingRights,
    UsageWindow,
    UsageStats,
    subscription_windows,
)


class PlanResponse(BaseModel):
    """A purchasable plan."""
    id: int
    type: str = Field(..., description="subscription or package")
    name: str = Field(..., description="Plan slug")
    display_name: str
    description: Optional[str] = None
    price: float
    currency: str
    billing_cycle: Optional[str] = Field(None, description="weekly or monthly (subscriptions only)")
    weekly_limit: Optional[int] = Field(None, description="Events per week (None for unlimited)")
    monthly_limit: Optional[int] = Field(None, description="Events per month (None for unlimited)")
    total_credits: Optional[int] = Field(None, description="Event credits (packages only)")
    duration_days: Optional[int] = None
    sort_order: int = 0
    features: List[str] = Field(default_factory=list)
    is_popular: bool = False

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 2,
                "type": "subscription",
                "name": "plus",
                "display_name": "Plus Plan",
                "description": "Great for regular event creators",
                "price": 130.0,
                "currency": "EUR",
                "billing_cycle": "monthly",
                "weekly_limit": 2,
                "monthly_limit": 8,
                "total_credits": None,
                "duration_days": 30,
                "sort_order": 2,
                "features": ["2 events per week", "8 events per month", "Priority support"],
                "is_popular": True
            }
        }


class PlansResponse(BaseModel):
    subscriptions: List[PlanResponse]
    packages: List[PlanResponse]


class SubscriptionEntryResponse(BaseModel):
    """A user's purchased subscription or package."""
    id: int
    plan_id: Optional[int] = None
    type: str
    name: str
    display_name: Optional[str] = None
    price: float
    currency: str
    billing_cycle: Optional[str] = None
    weekly_limit: Optional[int] = None
    monthly_limit: Optional[int] = None
    total_credits: Optional[int] = None
    used_credits: int = 0
    remaining_credits: int = 0
    weekly_used: int = 0
    monthly_used: int = 0
    total_used: int = 0
    status: str = Field(..., description="pending, active, cancelled or expired")
    started_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_failed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UsageWindowResponse(BaseModel):
    limit: Optional[int] = Field(None, description="Limit for the period (None for unlimited)")
    used: int
    remaining: Optional[int] = Field(None, description="Remaining in the period (None for unlimited)")
    unlimited: bool
    resets_at: Optional[datetime] = None


class PublishingRightsResponse(BaseModel):
    """Response schema for GET /subscriptions/publishing-rights."""
    can_publish: bool
    weekly: Optional[UsageWindowResponse] = None
    monthly: Optional[UsageWindowResponse] = None
    total_credits: int
    used_credits: int
    remaining_credits: int
    active_subscription: Optional[SubscriptionEntryResponse] = None
    active_packages: List[SubscriptionEntryResponse] = Field(default_factory=list)
    restriction_reason: Optional[str] = Field(
        None, description="weekly_limit_reached, monthly_limit_reached, no_credits_remaining or no_active_plan"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "can_publish": False,
                "weekly": {"limit": 2, "used": 2, "remaining": 0, "unlimited": False, "resets_at": "2026-10-21T09:00:00"},
                "monthly": {"limit": 8, "used": 5, "remaining": 3, "unlimited": False, "resets_at": "2026-11-01T09:00:00"},
                "total_credits": 0,
                "used_credits": 0,
                "remaining_credits": 0,
                "active_subscription": None,
                "active_packages": [],
                "restriction_reason": "weekly_limit_reached"
            }
        }


class UsageStatsResponse(BaseModel):
    total_subscriptions: int
    active_subscriptions: int
    total_packages: int
    active_packages: int
    total_spent: float
    events_published: int
    events_remaining: int
    current_period_usage: int
    last_payment_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    currencies: List[str] = Field(default_factory=list, description="Currencies the user has paid in")


class SubscriptionHistoryResponse(BaseModel):
    items: List[SubscriptionEntryResponse]
    total: int
    limit: int
    offset: int


class PurchaseRequest(BaseModel):
    plan_id: int = Field(..., gt=0, description="Plan to purchase")


class PurchaseResponse(BaseModel):
    subscription_id: int
    status: str = Field("pending_payment", description="Always pending_payment until the provider confirms")
    checkout_url: str
    session_id: str


class WebhookAck(BaseModel):
    received: bool = True
    outcome: Optional[str] = None


def window_response(window: Optional[UsageWindow]) -> Optional[UsageWindowResponse]:
    if window is None:
        return None
    return UsageWindowResponse(
        limit=window.limit,
        used=window.used,
        remaining=window.remaining,
        unlimited=window.unlimited,
        resets_at=window.resets_at,
    )


def entry_response(entry: UserSubscription, now: datetime) -> SubscriptionEntryResponse:
    """
    Serialize a ledger entry with period counters as of ``now``.

    Stored weekly_used/monthly_used belong to the period they were last
    written in; once that period has rolled over they read as zero.
    """
    response = SubscriptionEntryResponse.model_validate(entry)
    if entry.is_subscription and entry.started_at is not None:
        weekly, monthly = subscription_windows(entry, now)
        response = response.model_copy(update={"weekly_used": weekly.used, "monthly_used": monthly.used})
    return response


def rights_response(rights: PublishingRights) -> PublishingRightsResponse:
    subscription = rights.active_subscription
    now = rights.computed_at
    return PublishingRightsResponse(
        can_publish=rights.can_publish,
        weekly=window_response(rights.weekly),
        monthly=window_response(rights.monthly),
        total_credits=rights.total_credits,
        used_credits=rights.used_credits,
        remaining_credits=rights.remaining_credits,
        active_subscription=entry_response(subscription, now) if subscription else None,
        active_packages=[entry_response(p, now) for p in rights.active_packages],
        restriction_reason=rights.restriction_reason.value if rights.restriction_reason else None,
    )


def stats_response(stats: UsageStats) -> UsageStatsResponse:
    return UsageStatsResponse(
        total_subscriptions=stats.total_subscriptions,
        active_subscriptions=stats.active_subscriptions,
        total_packages=stats.total_packages,
        active_packages=stats.active_packages,
        total_spent=stats.total_spent,
        events_published=stats.events_published,
        events_remaining=stats.events_remaining,
        current_period_usage=stats.current_period_usage,
        last_payment_date=stats.last_payment_date,
        next_billing_date=stats.next_billing_date,
        currencies=list(stats.currencies),
    )
