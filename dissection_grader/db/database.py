"""
Database configuration.

Uses SQLAlchemy for persistence. PostgreSQL in production; SQLite works for
local runs and tests.
"""
import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from dissection_grader.config import get_settings

logger = logging.getLogger(__name__)

# Base class for all models
Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections may be shared across threads (the CLI and tests use
    one engine from several sessions); other backends use a pre-pinged pool.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


@lru_cache()
def get_engine() -> Engine:
    """Engine for the configured database URL."""
    settings = get_settings()
    return create_db_engine(settings.database_url, echo=settings.database_echo)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Session factory for the configured database."""
    return create_session_factory(get_engine())


def init_db(engine: Engine | None = None) -> None:
    """
    Initialize the database by creating all tables.
    """
    engine = engine or get_engine()
    # Import models to ensure they're registered with Base
    from dissection_grader.db import tables  # noqa: F401
    Base.metadata.create_all(engine)
    logger.info("Database tables created/verified successfully")


def close_db() -> None:
    """
    Close database connections.
    """
    get_engine().dispose()
    logger.info("Database connections closed")
