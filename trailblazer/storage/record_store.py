"""Transactional store for assignment and node records."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Type

import aiosqlite
from pydantic import BaseModel

from trailblazer.errors import RecordNotFound, TransactionFailure, UnknownStoreError
from trailblazer.storage.database import connect, init_db
from trailblazer.storage.models import AssignmentRecord, NodeRecord

logger = logging.getLogger("trailblazer.storage.record_store")

ASSIGNMENTS = "assignments"
NODES = "nodes"

MODE_READONLY = "readonly"
MODE_READWRITE = "readwrite"

STORE_MODELS: dict[str, Type[BaseModel]] = {
    ASSIGNMENTS: AssignmentRecord,
    NODES: NodeRecord,
}
STORE_COLUMNS: dict[str, tuple[str, ...]] = {
    ASSIGNMENTS: ("title", "description", "created_at"),
    NODES: ("local_assignment_id", "tab_id", "title", "url"),
}
STORE_INDEXES: dict[str, set[str]] = {
    ASSIGNMENTS: set(),
    NODES: {"tab_id", "local_assignment_id"},
}


def _check_store(store_name: str) -> None:
    if store_name not in STORE_MODELS:
        raise UnknownStoreError(store_name)


def _row_to_record(store_name: str, row: aiosqlite.Row) -> BaseModel:
    return STORE_MODELS[store_name].model_validate(dict(row))


class ObjectStore:
    """Write handle for one object store inside a transaction."""

    def __init__(self, db: aiosqlite.Connection, name: str, mode: str):
        self._db = db
        self.name = name
        self.mode = mode

    async def add(self, record: BaseModel | dict[str, Any]) -> int:
        """Insert ``record`` and return the identifier assigned by the store."""
        if self.mode != MODE_READWRITE:
            raise ValueError(f"cannot add to {self.name} in a {self.mode} transaction")
        values = record.model_dump() if isinstance(record, BaseModel) else dict(record)
        columns = STORE_COLUMNS[self.name]
        placeholders = ", ".join("?" for _ in columns)
        cursor = await self._db.execute(
            f"INSERT INTO {self.name} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(values.get(column) for column in columns),
        )
        local_id = int(cursor.lastrowid)
        await cursor.close()
        logger.debug("Added %s record local_id=%s", self.name, local_id)
        return local_id


class Transaction:
    """Scope of object stores whose writes commit or abort together."""

    def __init__(self, db: aiosqlite.Connection, mode: str, store_names: Iterable[str]):
        self._db = db
        self.mode = mode
        self.store_names = tuple(store_names)

    def object_store(self, name: str) -> ObjectStore:
        if name not in self.store_names:
            raise UnknownStoreError(name)
        return ObjectStore(self._db, name, self.mode)


class RecordStore:
    """
    SQLite-backed store providing atomic multi-record writes and index lookups.

    Write transactions are serialized with a store-wide lock; SQLite itself
    guarantees that a rolled back transaction leaves no rows behind.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        await init_db(self.db_path)

    @asynccontextmanager
    async def transaction(self, mode: str, store_names: Iterable[str]) -> AsyncIterator[Transaction]:
        """
        Open a transaction over ``store_names``.

        Commits when the block exits cleanly. Any exception inside the block,
        a failed commit, or a database that cannot be opened or locked
        surfaces as ``TransactionFailure`` chained to the underlying error;
        no write from the block is kept.
        """
        if mode not in {MODE_READONLY, MODE_READWRITE}:
            raise ValueError(f"invalid transaction mode: {mode}")
        names = tuple(store_names)
        for name in names:
            _check_store(name)
        scope = ", ".join(names)

        async with self._write_lock if mode == MODE_READWRITE else _no_lock():
            try:
                async with connect(self.db_path, timeout=self.timeout) as db:
                    await db.execute("BEGIN IMMEDIATE" if mode == MODE_READWRITE else "BEGIN")
                    tx = Transaction(db, mode, names)
                    try:
                        yield tx
                    except TransactionFailure:
                        await _rollback(db, scope)
                        raise
                    except Exception as exc:
                        await _rollback(db, scope)
                        logger.warning("Transaction over %s aborted: %s", scope, exc)
                        raise TransactionFailure(f"transaction aborted: {exc}") from exc
                    try:
                        await db.execute("COMMIT")
                    except aiosqlite.Error as exc:
                        await _rollback(db, scope)
                        logger.warning("Commit over %s failed: %s", scope, exc)
                        raise TransactionFailure(f"commit failed: {exc}") from exc
            except aiosqlite.Error as exc:
                logger.warning("Transaction over %s could not start: %s", scope, exc)
                raise TransactionFailure(f"store unavailable: {exc}") from exc

    async def index_lookup(self, store_name: str, field: str, value: Any) -> list[BaseModel]:
        """Return records whose indexed ``field`` equals ``value``, newest first."""
        _check_store(store_name)
        if field not in STORE_INDEXES[store_name]:
            raise ValueError(f"{store_name} has no index on {field}")
        async with connect(self.db_path) as db:
            async with db.execute(
                f"SELECT * FROM {store_name} WHERE {field} = ? ORDER BY local_id DESC",
                (value,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_record(store_name, row) for row in rows]

    async def get(self, store_name: str, local_id: int) -> BaseModel | None:
        _check_store(store_name)
        async with connect(self.db_path) as db:
            async with db.execute(
                f"SELECT * FROM {store_name} WHERE local_id = ?",
                (local_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _row_to_record(store_name, row)

    async def require(self, store_name: str, local_id: int) -> BaseModel:
        record = await self.get(store_name, local_id)
        if record is None:
            raise RecordNotFound(store_name, local_id)
        return record

    async def list_records(self, store_name: str, limit: int = 50) -> list[BaseModel]:
        """Return up to ``limit`` records, newest first."""
        _check_store(store_name)
        async with connect(self.db_path) as db:
            async with db.execute(
                f"SELECT * FROM {store_name} ORDER BY local_id DESC LIMIT ?",
                (int(limit),),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_row_to_record(store_name, row) for row in rows]

    async def count(self, store_name: str) -> int:
        _check_store(store_name)
        async with connect(self.db_path) as db:
            async with db.execute(f"SELECT COUNT(*) AS count FROM {store_name}") as cursor:
                row = await cursor.fetchone()
        return int(row["count"] if row else 0)


@asynccontextmanager
async def _no_lock() -> AsyncIterator[None]:
    yield


async def _rollback(db: aiosqlite.Connection, scope: str) -> None:
    try:
        await db.execute("ROLLBACK")
    except aiosqlite.Error:
        # SQLite may already have rolled back on its own.
        logger.warning("Rollback over %s failed", scope, exc_info=True)
