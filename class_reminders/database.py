"""
SQLAlchemy async database client for the class reminder service.

The event store, identity directory and delivery ledger all live in one
PostgreSQL database and share one asyncpg pool. The pool is sized from the
dispatch concurrency: every event processed in parallel may hold a connection
for its directory lookup and its ledger writes.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .config import get_dispatch_concurrency

# Seconds a single statement may run before asyncpg cancels it
COMMAND_TIMEOUT = 10

_engine: AsyncEngine | None = None

_ASYNC_SCHEME = "postgresql+asyncpg://"
_SYNC_SCHEME = "postgresql://"


def _split_scheme(database_url: str) -> str:
    """Return the URL without its scheme (postgres, postgresql or a driver variant)."""
    for scheme in (_ASYNC_SCHEME, "postgresql+psycopg2://", _SYNC_SCHEME, "postgres://"):
        if database_url.startswith(scheme):
            return database_url[len(scheme):]
    scheme = database_url.split(":", 1)[0]
    raise ValueError(f"DATABASE_URL must be a PostgreSQL URL, got {scheme!r}")


def _require_url() -> str:
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable must be set")
    return database_url


def get_async_database_url() -> str:
    """DATABASE_URL rewritten for the asyncpg driver."""
    return _ASYNC_SCHEME + _split_scheme(_require_url())


def get_sync_database_url() -> str:
    """DATABASE_URL rewritten for psycopg2 (Alembic runs synchronously)."""
    return _SYNC_SCHEME + _split_scheme(_require_url())


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine singleton."""
    global _engine
    if _engine is None:
        concurrency = get_dispatch_concurrency()
        _engine = create_async_engine(
            get_async_database_url(),
            echo=os.environ.get("SQL_ECHO", "").lower() == "true",
            pool_size=max(5, concurrency),
            max_overflow=concurrency,
            pool_timeout=10,
            pool_recycle=1800,
            pool_pre_ping=True,
            connect_args={"command_timeout": COMMAND_TIMEOUT},
        )
    return _engine


@asynccontextmanager
async def get_connection() -> AsyncGenerator[AsyncConnection, None]:
    """
    Read-only work.

    Usage:
        async with get_connection() as conn:
            result = await conn.execute(select(sessions))
    """
    async with get_engine().connect() as conn:
        yield conn


@asynccontextmanager
async def get_transaction() -> AsyncGenerator[AsyncConnection, None]:
    """Connection inside a transaction: commits on exit, rolls back on exception."""
    async with get_engine().begin() as conn:
        yield conn


async def close_engine() -> None:
    """Dispose of the pool. Safe to call when no engine was ever created."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
