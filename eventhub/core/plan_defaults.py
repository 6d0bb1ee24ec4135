"""
Default plan catalog seeded into a fresh database.

Subscriptions renew monthly and carry weekly and monthly publish limits.
Packages are one-time purchases of publish credits valid for a year.
"""

DEFAULT_SUBSCRIPTION_PLANS = [
    {
        "type": "subscription",
        "name": "basic",
        "display_name": "Basic Plan",
        "description": "Perfect for getting started with event creation",
        "price": 78.00,
        "currency": "EUR",
        "billing_cycle": "monthly",
        "weekly_limit": 1,
        "monthly_limit": 4,
        "duration_days": 30,
        "sort_order": 1,
        "metadata": {"features": ["1 event per week", "4 events per month", "Basic support"], "popular": False},
    },
    {
        "type": "subscription",
        "name": "plus",
        "display_name": "Plus Plan",
        "description": "Great for regular event creators",
        "price": 130.00,
        "currency": "EUR",
        "billing_cycle": "monthly",
        "weekly_limit": 2,
        "monthly_limit": 8,
        "duration_days": 30,
        "sort_order": 2,
        "metadata": {"features": ["2 events per week", "8 events per month", "Priority support"], "popular": True},
    },
    {
        "type": "subscription",
        "name": "pro",
        "display_name": "Pro Plan",
        "description": "For professional event organizers",
        "price": 156.00,
        "currency": "EUR",
        "billing_cycle": "monthly",
        "weekly_limit": 3,
        "monthly_limit": 12,
        "duration_days": 30,
        "sort_order": 3,
        "metadata": {
            "features": ["3 events per week", "12 events per month", "Premium support", "Advanced analytics"],
            "popular": False,
        },
    },
]

DEFAULT_PACKAGE_PLANS = [
    {
        "type": "package",
        "name": "single_event",
        "display_name": "Single Event",
        "description": "Perfect for one-time events",
        "price": 29.00,
        "currency": "EUR",
        "total_credits": 1,
        "duration_days": 365,
        "sort_order": 1,
        "metadata": {"features": ["1 event credit", "Valid for 1 year"], "popular": False},
    },
    {
        "type": "package",
        "name": "10_events",
        "display_name": "10 Events Package",
        "description": "Better value for multiple events",
        "price": 249.99,
        "currency": "EUR",
        "total_credits": 10,
        "duration_days": 365,
        "sort_order": 2,
        "metadata": {"features": ["10 event credits", "Valid for 1 year", "Better value"], "popular": True},
    },
    {
        "type": "package",
        "name": "25_events",
        "display_name": "25 Events Package",
        "description": "Best value for frequent event creators",
        "price": 499.99,
        "currency": "EUR",
        "total_credits": 25,
        "duration_days": 365,
        "sort_order": 3,
        "metadata": {
            "features": ["25 event credits", "Valid for 1 year", "Best value", "Bulk discount"],
            "popular": False,
        },
    },
]


def get_default_plans() -> list:
    """All default plans, subscriptions first. Returns copies safe to mutate."""
    return [dict(plan) for plan in DEFAULT_SUBSCRIPTION_PLANS + DEFAULT_PACKAGE_PLANS]
