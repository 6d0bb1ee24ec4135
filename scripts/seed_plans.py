"""
Seed the default plan catalog.
Run: python -m scripts.seed_plans
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from eventhub.db.session import SessionLocal
from eventhub.db.init_db import init_db
from eventhub.services.subscription_service import seed_default_plans, list_plans
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def seed_plans(create_tables: bool = False) -> bool:
    """Insert any missing default plans and log the resulting catalog."""
    if create_tables:
        init_db()

    db = SessionLocal()
    try:
        created = seed_default_plans(db)
        logger.info(f"Created {len(created)} plan(s)")
        for plan in list_plans(db):
            logger.info(
                f"  {plan.type:<12} {plan.name:<14} {plan.price:>8.2f} {plan.currency} "
                f"weekly={plan.weekly_limit} monthly={plan.monthly_limit} credits={plan.total_credits}"
            )
        return True
    except Exception as e:
        logger.error(f"Error seeding plans: {e}", exc_info=True)
        return False
    finally:
        db.close()


if __name__ == "__main__":
    success = seed_plans(create_tables="--create-tables" in sys.argv)

    if success:
        print("\n[SUCCESS] Plan catalog seeded")
    else:
        print("\n[ERROR] Failed to seed plan catalog")
        sys.exit(1)
