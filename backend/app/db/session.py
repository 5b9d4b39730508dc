"""Engine and session factory configuration."""

from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.db.base import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """Create an engine suited to long-running workers.

    PostgreSQL gets a pre-pinged, recycled pool with TCP keepalives so
    connections survive hours-long imports. SQLite (tests, local runs)
    only needs cross-thread access since jobs run on pool threads.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    # pool_pre_ping: Test connections before using (handles stale connections)
    # pool_recycle: Recycle connections after 30 minutes (prevents timeout)
    return create_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Queue callers keep using records after the session closes
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return build_session_factory(get_engine())


def init_db(engine: Engine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # Register every model on the metadata before create_all
    import app.db.models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def get_fresh_session() -> Session:
    """Get a fresh database session, handling connection errors.

    This is useful for long-running tasks where connections might timeout.
    """
    session_factory = get_session_factory()
    try:
        return session_factory()
    except (OperationalError, DisconnectionError) as e:
        logger.warning(f"Connection error creating session: {e}, retrying...")
        # Force pool to reconnect
        get_engine().dispose()
        return session_factory()


def get_db() -> Generator[Session, None, None]:
    """Yield a transactional session for request/worker lifecycles."""
    db = get_fresh_session()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
