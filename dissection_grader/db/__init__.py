"""
Persistence Module.

SQLAlchemy engine, session factory and ORM tables.
"""

from dissection_grader.db.database import (
    Base,
    close_db,
    create_db_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "close_db",
    "create_db_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]
