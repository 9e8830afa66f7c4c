"""Database package: shared engine and session factory."""

from assessment_pipeline.db.base import Base, close_db, create_engine, get_session_factory, init_db

__all__ = [
    "Base",
    "close_db",
    "create_engine",
    "get_session_factory",
    "init_db",
]
