"""
Platform Integration - Database Engine.

============================================================
PURPOSE
============================================================
Async SQLAlchemy engine and session management for the
local venue mirror.

- Engines are created and owned by the caller
- Session factory with expire_on_commit=False so ORM rows
  stay readable after commit
- transaction_scope() commits on success and rolls back on
  ANY exception

SQLite (aiosqlite) is used for development and tests,
PostgreSQL (asyncpg) in production.

============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import DEFAULT_DATABASE_URL
from .errors import PersistenceError
from .models import Base


logger = logging.getLogger(__name__)


# =============================================================
# ENGINE
# =============================================================

def _set_sqlite_pragma(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str = DEFAULT_DATABASE_URL,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async engine.

    SQLite connections get foreign key enforcement switched on
    so orphan accounts/trades are rejected by the store itself.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=1800, pool_pre_ping=True)

    engine = create_async_engine(database_url, **kwargs)

    if database_url.startswith("sqlite"):
        event.listens_for(engine.sync_engine, "connect")(_set_sqlite_pragma)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# SCHEMA
# =============================================================

async def init_schema(engine: AsyncEngine) -> None:
    """Create all integration tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Integration schema ready")


# =============================================================
# SESSION MANAGEMENT
# =============================================================

@asynccontextmanager
async def transaction_scope(session_factory: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """
    Explicit transaction boundary.

    Commits only if no exception occurs. Rolls back on ANY
    exception and re-raises it.

    Usage:
        async with transaction_scope(factory) as session:
            session.add(record)
    """
    session: AsyncSession = session_factory()
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error, rolling back: {e}")
        await session.rollback()
        raise PersistenceError("transaction", str(e)) from e
    except Exception as e:
        logger.debug(f"Rolling back transaction: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()
