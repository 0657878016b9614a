# clinicgate/database.py
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite connections are shared with the request threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# Create engine
engine = create_engine(
    get_settings().database_url,
    echo=False,
    **_engine_kwargs(get_settings().database_url)
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind=None):
    """Create all database tables - models must be imported first."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


def drop_tables(bind=None):
    """Drop all database tables"""
    Base.metadata.drop_all(bind=bind or engine)
    logger.info("Database tables dropped")
