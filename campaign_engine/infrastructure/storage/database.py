"""
Database Connection and Session Management
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from campaign_engine.core.config import get_settings
from campaign_engine.infrastructure.storage.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    In-memory SQLite shares one connection so every session sees the same data.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create session factory bound to an engine"""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_schema(engine: Engine) -> None:
    """Create all tables that don't exist yet."""
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema initialized")


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_session_factory() -> sessionmaker:
    """Get or create the application's session factory from settings."""
    global _engine, _session_factory
    if _session_factory is None:
        settings = get_settings()
        _engine = create_db_engine(settings.database_url)
        _session_factory = create_session_factory(_engine)
        logger.info("Database engine created")
    return _session_factory


@contextmanager
def get_db(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Get database session with automatic cleanup

    Usage:
        with get_db(factory) as db:
            campaigns = db.query(CampaignRecord).all()
    """
    db = (session_factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_engine() -> Engine:
    """Engine behind the application's session factory."""
    get_session_factory()
    return _engine
