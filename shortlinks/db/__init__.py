"""Database module for the short-link mapping store."""
from shortlinks.db.base import (
    engine,
    get_engine,
    get_session,
    get_session_factory,
    create_schema,
    DatabaseHealthCheck,
)
from shortlinks.db.session import db_transaction

__all__ = [
    "engine",
    "get_engine",
    "get_session",
    "get_session_factory",
    "create_schema",
    "DatabaseHealthCheck",
    "db_transaction",
]
