"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 5,
    # Fail fast when the pool is exhausted instead of queueing saga steps
    "pool_timeout": 2,
    "pool_recycle": 30,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}

# Concurrent ledger writers wait for the lock instead of failing with "database is locked"
SQLITE_BUSY_TIMEOUT_MS = 30_000

Base: DeclarativeMeta = declarative_base()


def _is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options per dialect."""
    if _is_sqlite(db_url):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if db_url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return dict(_DEFAULT_POOL_KWARGS)


def create_db_engine(db_url: str) -> Engine:
    """Create the engine for the bookings and quota ledger store."""
    engine = create_engine(db_url, future=True, **_build_engine_kwargs(db_url))
    sqlite = _is_sqlite(db_url)

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        if sqlite:
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
            cursor.close()
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory used by the store; one short-lived session per saga step."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create tables for all registered models."""
    # Import models so Base.metadata is populated.
    from .. import models  # noqa: F401

    Base.metadata.create_all(engine)
