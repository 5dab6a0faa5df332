"""
Database Connection Manager
===========================

Handles the async connection to the AutoOps SQLite database and the
write path shared by the run store and the evolution engine.

A single AsyncSession may be handed to several components (the demo does
this). Commits from concurrent runs and evolution cycles must not
interleave on it, so every write goes through ``commit_session``, which
holds a lock stored in the session's ``info`` dict.

Usage:
    session_maker = await init_db(Path("./data"))
    async with session_maker() as session:
        await commit_session(session, RunRecordModel(...))
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from autoops.db.models import Base

logger = logging.getLogger(__name__)

DB_DIRNAME = ".autoops"
DB_FILENAME = "autoops.db"

_WRITE_LOCK_KEY = "autoops.write_lock"

# Global session maker
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_engine = None


async def init_db(data_dir: Path, echo: bool = False) -> async_sessionmaker[AsyncSession]:
    """
    Create the tables (if missing) in ``<data_dir>/.autoops/autoops.db``
    and return the session maker.
    """
    global _async_session_maker, _engine

    db_path = Path(data_dir) / DB_DIRNAME / DB_FILENAME
    db_path.parent.mkdir(parents=True, exist_ok=True)

    _engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=echo)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _async_session_maker = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info("Database ready at %s", db_path)
    return _async_session_maker


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the configured session maker."""
    if _async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_maker


async def close_db() -> None:
    """Dispose of the engine so the database file can be removed."""
    global _async_session_maker, _engine

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_maker = None


# =============================================================================
# Writes
# =============================================================================

def write_lock(session: AsyncSession) -> asyncio.Lock:
    """The lock serializing commits on this session."""
    lock = session.info.get(_WRITE_LOCK_KEY)
    if lock is None:
        lock = session.info[_WRITE_LOCK_KEY] = asyncio.Lock()
    return lock


async def commit_session(session: AsyncSession, *rows: Base) -> None:
    """
    Add rows and commit them as one transaction.

    Only one commit per session is in flight at a time. On failure the
    transaction is rolled back and the original error re-raised, leaving
    the session usable for the next write.
    """
    async with write_lock(session):
        session.add_all(rows)
        try:
            await session.commit()
        except SQLAlchemyError:
            try:
                await session.rollback()
            except SQLAlchemyError as e:
                logger.warning("Rollback failed: %s", e)
            raise
