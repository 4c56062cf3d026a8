"""
Engine and session plumbing for the deal store.

The engine itself never holds a connection; services receive a Session
(or a session factory for fan-out) from their caller.
"""

from typing import Generator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from forecast_engine.core.config import get_settings
from forecast_engine.core.models import Base
import logging

logger = logging.getLogger(__name__)

# Built lazily; reset_engine() disposes them.
_engine: Optional[Engine] = None
_SessionLocal = None


def get_engine() -> Engine:
    """
    Shared engine for DATABASE_URL, built on first call.

    SQLite URLs get the default pool; server databases a bounded one.
    """
    global _engine
    if _engine is None:
        url = get_settings().require_database_url()
        kwargs = {"pool_pre_ping": True, "echo": False}
        if not url.startswith("sqlite"):
            kwargs.update(pool_size=5, max_overflow=10)
        _engine = create_engine(url, **kwargs)
    return _engine


def create_tables(engine: Optional[Engine] = None) -> None:
    """
    Create the deal/config tables if they don't exist.

    Only used for local development and tests; production schemas are
    owned by the ingestion service.
    """
    if engine is None:
        engine = get_engine()

    logger.info("Creating forecast tables if they don't exist...")
    Base.metadata.create_all(bind=engine)
    logger.info("Forecast tables ready")


def get_session_factory():
    """Get the shared session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Yield a session and close it afterwards.

    Usage:
        for db in get_db():
            ForecastService(db).get_forecast_summary(...)
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def reset_engine() -> None:
    """Dispose the shared engine (tests, config reloads)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
