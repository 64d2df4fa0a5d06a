"""
Database connection and session management for the SQL entity store.

The engine is shared per URL: asking for a different URL disposes of the
old engine and builds a new one. Without an explicit URL, DATABASE_URL from
settings is used.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from cinerecon.core.config import get_settings
from cinerecon.core.models import Base

logger = logging.getLogger(__name__)

_engine = None
_engine_url: Optional[str] = None
_SessionLocal = None


def get_engine(database_url: Optional[str] = None):
    """
    Get the shared database engine for database_url (or DATABASE_URL).

    Raises:
        MissingDatabaseURLError: If no URL is given and DATABASE_URL is not configured
    """
    global _engine, _engine_url, _SessionLocal
    url = database_url or get_settings().require_database_url()
    if _engine is None or _engine_url != url:
        if _engine is not None:
            _engine.dispose()
        _engine = create_engine(url, pool_pre_ping=True, echo=False)
        _engine_url = url
        _SessionLocal = None
    return _engine


def create_tables(engine=None):
    """Create the entity store tables if they don't exist. Idempotent."""
    if engine is None:
        engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Entity store tables ready")


def get_session_factory(database_url: Optional[str] = None):
    """Get the session factory bound to the shared engine."""
    global _SessionLocal
    engine = get_engine(database_url)
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return _SessionLocal


@contextmanager
def session_scope(database_url: Optional[str] = None) -> Iterator[Session]:
    """
    Open a session on the entity store, creating tables first.

    Usage:
        with session_scope(url) as session:
            store = SqlEntityStore(session)
    """
    create_tables(get_engine(database_url))
    session = get_session_factory(database_url)()
    try:
        yield session
    finally:
        session.close()


def reset_engine() -> None:
    """Dispose of the shared engine; the next call rebuilds it."""
    global _engine, _engine_url, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    _SessionLocal = None
