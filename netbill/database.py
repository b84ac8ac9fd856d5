"""
NetBill - Database Configuration

This module handles database connection setup using SQLAlchemy 2.0 async,
and the unit-of-work scope every mutating billing operation runs in.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import MetaData
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from netbill.config import settings
from netbill.utils.error_handling import PersistenceException

logger = logging.getLogger(__name__)


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


# SQLite doesn't support pool settings
if settings.is_sqlite:
    engine = create_async_engine(
        settings.database_url_async,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        settings.database_url_async,
        echo=settings.debug,  # Log SQL queries in debug mode
        pool_pre_ping=True,   # Verify connections before use
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )

# Create async session factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database session.
    Use with FastAPI's Depends().
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias for backward compatibility
get_db = get_async_session


_UOW_DEPTH = "netbill.uow_depth"


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Transaction scope for one logical unit of work.

    The outermost scope commits on success and rolls back on any error.
    Scopes opened while another one is active on the same session join it,
    so composed operations (invoice creation consuming referral benefits)
    commit or roll back together.

    Datastore failures are re-raised as PersistenceException.
    """
    depth = session.info.get(_UOW_DEPTH, 0)
    session.info[_UOW_DEPTH] = depth + 1

    if depth > 0:
        try:
            yield session
        finally:
            session.info[_UOW_DEPTH] = depth
        return

    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(f"Unit of work rolled back after datastore error: {exc}", exc_info=True)
        raise PersistenceException(original_error=exc) from exc
    except Exception:
        await session.rollback()
        raise
    finally:
        session.info[_UOW_DEPTH] = 0


def in_unit_of_work(session: AsyncSession) -> bool:
    """True while a unit_of_work scope is open on the session."""
    return session.info.get(_UOW_DEPTH, 0) > 0


async def init_db():
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    For production, use Alembic migrations.
    """
    # Register all models on Base.metadata
    import netbill.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections."""
    await engine.dispose()
