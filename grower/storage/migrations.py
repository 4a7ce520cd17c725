"""Schema versioning for the game database."""
from __future__ import annotations

import logging
from typing import List, Callable, Awaitable

import aiosqlite


log = logging.getLogger(__name__)


# Migration functions take a connection and perform schema changes
Migration = Callable[[aiosqlite.Connection], Awaitable[None]]


async def _column_exists(conn: aiosqlite.Connection, table: str, column: str) -> bool:
    async with conn.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _add_completion_timestamps(conn: aiosqlite.Connection) -> None:
    """v2: fights and duellos gained ``completed_at`` after the first release."""
    for table in ("fights", "duellos"):
        if not await _column_exists(conn, table, "completed_at"):
            await conn.execute(f"ALTER TABLE {table} ADD COLUMN completed_at TEXT")
            log.info("Added %s.completed_at", table)


# Migrations in order (v1, v2, ...); v1 is schema.sql itself
MIGRATIONS: List[Migration | None] = [
    None,
    _add_completion_timestamps,
]


async def get_schema_version(conn: aiosqlite.Connection) -> int:
    """Return the stored schema version, 0 when no version table exists."""
    try:
        async with conn.execute("SELECT version FROM schema_version LIMIT 1") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0
    except aiosqlite.OperationalError:
        # Table doesn't exist yet
        return 0


async def set_schema_version(conn: aiosqlite.Connection, version: int) -> None:
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    await conn.execute("DELETE FROM schema_version")
    await conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
    await conn.commit()


async def apply_migrations(conn: aiosqlite.Connection, target_version: int | None = None) -> None:
    """Apply pending migrations to bring the database up to date.

    Args:
        conn: Database connection
        target_version: Version to migrate to (None = latest)
    """
    current = await get_schema_version(conn)

    if target_version is None:
        target_version = len(MIGRATIONS)

    if current >= target_version:
        log.debug("Database schema is up to date (v%d)", current)
        return

    log.info("Migrating database schema from v%d to v%d", current, target_version)

    for version in range(current + 1, target_version + 1):
        if version > len(MIGRATIONS):
            log.warning("No migration defined for version %d", version)
            break

        migration = MIGRATIONS[version - 1]
        try:
            if migration is not None:
                log.info("Applying migration v%d...", version)
                await migration(conn)
            await set_schema_version(conn, version)
        except Exception as e:
            log.error("Migration v%d failed: %s", version, e, exc_info=True)
            raise


async def init_schema_version(conn: aiosqlite.Connection) -> None:
    """Mark a freshly created database as v1 (the schema.sql baseline)."""
    current = await get_schema_version(conn)
    if current == 0:
        await set_schema_version(conn, 1)
        log.info("Initialized schema version to v1")
