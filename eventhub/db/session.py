from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from eventhub.core import config
DATABASE_URL = config.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    """Connection options per backend; every query on Postgres gets a statement timeout."""
    if url.startswith("postgresql"):
        return {
            "pool_pre_ping": True,
            "pool_timeout": config.DB_POOL_TIMEOUT_SECONDS,
            "connect_args": {"options": f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT_MS}"},
        }
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
