# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Document database connection management using SQLAlchemy async.

The document database holds durable learner records (chat turns, progress
submissions, persona insight notes) as JSON documents. It is a single
PostgreSQL database in production; tests run it on sqlite+aiosqlite.

Uses SQLAlchemy 2.0 async API.

Example:
    from src.infrastructure.database.connection import (
        init_document_database,
        get_document_sessionmaker,
    )

    # Initialize at application startup
    await init_document_database(settings, create_schema=True)

    store = SQLDocumentStore(get_document_sessionmaker())
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.infrastructure.database.models import Base
from src.infrastructure.errors import BackendError

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Module-level state for the document database connection
_document_engine: Optional[AsyncEngine] = None
_document_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(BackendError):
    """A document database operation failed or the pool is not initialized."""


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the sessionmaker used for document operations.

    Args:
        engine: Async engine bound to the document database.

    Returns:
        Sessionmaker producing AsyncSession objects.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create the document tables if they do not exist.

    Args:
        engine: Async engine bound to the document database.

    Raises:
        DatabaseError: If the DDL fails.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to create document schema", e) from e


async def init_document_database(
    settings: "Settings",
    create_tables: bool = False,
) -> None:
    """Initialize the document database connection pool.

    This should be called once at application startup.

    Args:
        settings: Application settings containing database configuration.
        create_tables: Whether to create missing tables.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _document_engine, _document_sessionmaker

    db_settings = settings.document_db
    engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}
    if db_settings.url.startswith("postgresql"):
        engine_kwargs.update(
            pool_size=db_settings.pool_size,
            max_overflow=db_settings.max_overflow,
            pool_recycle=1800,
        )

    try:
        _document_engine = create_async_engine(db_settings.url, **engine_kwargs)
        _document_sessionmaker = create_sessionmaker(_document_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize document database connection", e) from e

    if create_tables:
        await create_schema(_document_engine)


async def close_document_database() -> None:
    """Close the document database connection pool.

    This should be called at application shutdown.
    """
    global _document_engine, _document_sessionmaker

    if _document_engine is not None:
        await _document_engine.dispose()
        _document_engine = None
        _document_sessionmaker = None


def get_document_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the document database sessionmaker.

    Returns:
        The SQLAlchemy async sessionmaker for the document database.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _document_sessionmaker is None:
        raise DatabaseError(
            "Document database not initialized. Call init_document_database() first."
        )
    return _document_sessionmaker


@asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error.

    Args:
        sessionmaker: Sessionmaker to open the session from.

    Yields:
        AsyncSession for database operations.

    Raises:
        DatabaseError: If a database operation fails.
    """
    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def check_document_database_connection() -> bool:
    """Check if the document database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _document_engine is None:
        return False

    try:
        async with _document_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
