"""
Health check endpoint for deployment monitoring.
"""
import logging
from fastapi import APIRouter
from datetime import datetime
from sqlalchemy import text
from eventhub.core import config
from eventhub.db.session import SessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
def health_check():
    """
    Report database connectivity and whether Stripe is configured.

    Always 200; ``status`` is "degraded" when the database is unreachable.
    """
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check database error: {e}")
        db_status = "error"
    finally:
        db.close()

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "database": db_status,
        "payments": "configured" if config.STRIPE_SECRET_KEY and config.STRIPE_WEBHOOK_SECRET else "not_configured",
        "version": "1.0.0",
    }
