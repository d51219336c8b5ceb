"""
Database base configuration for SQLAlchemy models.

Uses SQLAlchemy 2.0 style with DeclarativeBase. The engine is built lazily
from settings so that importing the models never requires a reachable
database; batch jobs call get_session_factory() once per invocation.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import QueuePool

from edumeter_analytics.core.config import settings
from edumeter_analytics.core.errors import ConfigurationError


class Base(DeclarativeBase):
    """
    SQLAlchemy 2.0 declarative base class with type annotation support.
    """

    pass


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a sync engine for the given URL.

    SQLite URLs (used by tests and local runs) skip the connection pool
    settings, which SQLite's pool implementation does not accept.
    """
    if not database_url:
        raise ConfigurationError(
            "DATABASE_URL is not set",
            context={"setting": "DATABASE_URL"},
        )

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_POOL_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=settings.DB_POOL_PRE_PING,  # Verify connections are alive before using them
    )


@lru_cache(maxsize=1)
def get_session_factory() -> "sessionmaker[Session]":
    """
    Return the process-wide session factory, building the engine on first use.

    Raises:
        ConfigurationError: If DATABASE_URL is not configured.
    """
    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
