from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from src.db.models.base import Base

_engine: Engine | None = None


def create_state_engine(url: str | None = None) -> Engine:
    """Create an engine for the state database (defaults to settings.database_url)."""
    settings = get_settings()
    url = url or settings.database_url
    return create_engine(url, echo=settings.log_level == "DEBUG", pool_pre_ping=True)


def get_engine() -> Engine:
    """Get the shared database engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_state_engine()
    return _engine


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


def session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(bind=engine or get_engine(), autocommit=False, autoflush=False)


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (factory or session_factory())()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()
