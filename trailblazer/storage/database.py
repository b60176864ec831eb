"""Database initialization and connection helpers for the record store."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .migrations import run_migrations

logger = logging.getLogger("trailblazer.storage.database")


async def get_db_path(db_path: Path) -> Path:
    """Ensure the directory exists and return the DB path."""
    db_path = Path(db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


async def init_db(db_path: Path) -> None:
    """Initialize the database with required tables."""
    db_path = await get_db_path(db_path)
    logger.info("Initializing record store at %s", db_path)
    async with aiosqlite.connect(db_path) as db:
        await run_migrations(db)


@asynccontextmanager
async def connect(db_path: Path, timeout: float = 5.0):
    """Open a connection in autocommit mode; callers issue BEGIN/COMMIT themselves."""
    db_path = await get_db_path(db_path)
    async with aiosqlite.connect(db_path, timeout=timeout, isolation_level=None) as db:
        db.row_factory = aiosqlite.Row
        await db.execute("PRAGMA foreign_keys = ON")
        yield db
