"""SQLAlchemy engine singleton and system table definitions.

The engine is created once at app startup. Destination tables are not
declared here: they are owned by the database and reflected on demand.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    text,
)
from sqlalchemy.engine import Engine

from backend.core.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None

metadata = MetaData()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


data_mapping = Table(
    settings.mapping_table,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(63), nullable=False, index=True),
    Column("header_cell", String(64), nullable=False),
    Column("column_name", String(63), nullable=False),
    Column("column_kind", String(16), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_utcnow),
)

table_headers = Table(
    settings.headers_table,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(63), nullable=False, index=True),
    Column("headers", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), default=_utcnow),
)


def build_engine(url: Optional[str] = None) -> Engine:
    """Create an engine without registering it as the app singleton."""
    resolved = url or settings.database_url
    connect_args = {"check_same_thread": False} if resolved.startswith("sqlite") else {}
    return create_engine(resolved, future=True, pool_pre_ping=True, connect_args=connect_args)


def init_engine(url: Optional[str] = None) -> Engine:
    """Initialize the database engine. Call once at app startup."""
    global _engine
    _engine = build_engine(url)
    logger.info(f"Database engine initialized ({_engine.dialect.name})")
    return _engine


def init_db(engine: Engine) -> None:
    """Create the mapping and header tables if they are missing."""
    metadata.create_all(engine)


def get_engine() -> Engine:
    """Get the active engine."""
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_engine() first.")
    return _engine


def close_engine() -> None:
    """Dispose of the engine's connection pool. Call at app shutdown."""
    global _engine
    if _engine:
        _engine.dispose()
        _engine = None
        logger.info("Database engine closed")


def check_connection() -> bool:
    """Check if the database is reachable."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
