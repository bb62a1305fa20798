"""Database configuration and session management."""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gatekeeper.core.config import get_settings

SessionFactory = Callable[[], Session]


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for the given URL.

    In-memory SQLite engines share a single connection so every session sees
    the same database.
    """
    if url.startswith("sqlite") and ":memory:" in url:
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to an engine."""
    return sessionmaker(
        engine,
        class_=Session,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@lru_cache
def get_engine() -> Engine:
    """Get the process-wide engine for the configured database."""
    settings = get_settings()
    return create_db_engine(settings.database_url, echo=settings.debug)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """Get the process-wide session factory."""
    return create_session_factory(get_engine())


@contextmanager
def session_scope(factory: SessionFactory) -> Generator[Session, None, None]:
    """Context manager that commits on success and rolls back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create all tables (used by tests and local development)."""
    import gatekeeper.models  # noqa: F401

    Base.metadata.create_all(engine)
