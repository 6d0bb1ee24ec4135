"""
Create all tables directly from the models (local development and scripts).

Production schemas are managed by Alembic; see eventhub.db.migrate.
"""
import logging

from eventhub.db.session import engine
from eventhub.db.base import Base
import eventhub.db.models  # noqa: F401  registers every model on Base.metadata

logger = logging.getLogger(__name__)


def init_db(bind=None):
    """Create missing tables on the given engine (defaults to the app engine)."""
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database tables ensured: tables={sorted(Base.metadata.tables)}")
