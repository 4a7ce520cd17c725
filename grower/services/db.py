from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable

import aiosqlite
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter


log = logging.getLogger(__name__)

# Retry configuration for database lock handling
_DB_RETRY_ATTEMPTS = 3
_DB_RETRY_INITIAL_DELAY = 0.1  # seconds


def _is_locked_error(exc: BaseException) -> bool:
    return isinstance(exc, aiosqlite.OperationalError) and "locked" in str(exc).lower()


_retry_on_lock = retry(
    reraise=True,
    wait=wait_exponential_jitter(initial=_DB_RETRY_INITIAL_DELAY, max=1.0),
    stop=stop_after_attempt(_DB_RETRY_ATTEMPTS),
    retry=retry_if_exception(_is_locked_error),
)


class Transaction:
    """Statements issued inside an open ``BEGIN IMMEDIATE`` block.

    Nothing is committed until the owning ``Database.transaction()`` block
    exits cleanly; an exception rolls every statement back.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> int | None:
        async with self.conn.execute(sql, tuple(params)) as cur:
            return cur.lastrowid

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, tuple(params)) as cur:
            return await cur.fetchone()

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, tuple(params)) as cur:
            return list(await cur.fetchall())


@dataclass
class Database:
    path: str
    conn: aiosqlite.Connection
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    async def init(cls, path: str) -> "Database":
        # Create parent directory if needed (skip for in-memory databases)
        if path != ":memory:":
            parent_dir = os.path.dirname(path)
            if parent_dir:
                os.makedirs(parent_dir, exist_ok=True)

        # Autocommit mode: transactions are opened explicitly by transaction()
        conn = await aiosqlite.connect(path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        schema_path = os.path.join(os.path.dirname(__file__), "../storage/schema.sql")
        schema_path = os.path.normpath(schema_path)
        async with conn.execute("PRAGMA foreign_keys = ON;"):
            pass
        try:
            await conn.execute("PRAGMA synchronous = NORMAL;")
            await conn.execute("PRAGMA temp_store = MEMORY;")
        except aiosqlite.Error:
            # Ignore if unavailable
            pass
        if not os.path.isfile(schema_path):
            log.error("Schema file not found: %s", schema_path)
            await conn.close()
            raise FileNotFoundError(f"Database schema not found: {schema_path}")
        with open(schema_path, "r", encoding="utf-8") as f:
            await conn.executescript(f.read())

        from ..storage.migrations import init_schema_version, apply_migrations
        await init_schema_version(conn)
        await apply_migrations(conn)

        return cls(path=path, conn=conn)

    async def close(self) -> None:
        await self.conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Run a block of statements as one atomic unit.

        The connection lock is held for the whole block, so no other
        coroutine's statements can interleave with (or commit) ours.
        """
        async with self._lock:
            await self._begin()
            try:
                yield Transaction(self.conn)
            except BaseException:
                await self.conn.execute("ROLLBACK")
                log.warning("Transaction rolled back", exc_info=True)
                raise
            else:
                await self.conn.execute("COMMIT")

    @_retry_on_lock
    async def _begin(self) -> None:
        await self.conn.execute("BEGIN IMMEDIATE")

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> int | None:
        """Execute a single autocommitted statement; returns the last row id."""
        async with self._lock:
            return await self._execute(sql, tuple(params))

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self._lock:
            return await self._fetchone(sql, tuple(params))

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self._lock:
            return await self._fetchall(sql, tuple(params))

    @_retry_on_lock
    async def _execute(self, sql: str, params: tuple[Any, ...]) -> int | None:
        async with self.conn.execute(sql, params) as cur:
            return cur.lastrowid

    @_retry_on_lock
    async def _fetchone(self, sql: str, params: tuple[Any, ...]) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, params) as cur:
            return await cur.fetchone()

    @_retry_on_lock
    async def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cur:
            return list(await cur.fetchall())
