"""Database migrations for assignment and node tables."""

import logging

import aiosqlite

logger = logging.getLogger("trailblazer.storage.migrations")

MIGRATIONS: list[tuple[str, str]] = [
    (
        "20150301_create_assignments",
        """
        CREATE TABLE IF NOT EXISTS assignments (
            local_id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
    ),
    (
        "20150301_create_nodes",
        """
        CREATE TABLE IF NOT EXISTS nodes (
            local_id INTEGER PRIMARY KEY AUTOINCREMENT,
            local_assignment_id INTEGER NOT NULL,
            tab_id INTEGER NOT NULL,
            title TEXT,
            url TEXT,
            FOREIGN KEY(local_assignment_id) REFERENCES assignments(local_id)
        )
        """,
    ),
    (
        "20150301_create_nodes_tab_id_index",
        """
        CREATE INDEX IF NOT EXISTS idx_nodes_tab_id ON nodes(tab_id)
        """,
    ),
    (
        "20150302_create_nodes_assignment_index",
        """
        CREATE INDEX IF NOT EXISTS idx_nodes_local_assignment_id ON nodes(local_assignment_id)
        """,
    ),
]


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Apply one-time database migrations in order."""
    logger.info("Running record store migrations...")
    await db.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            id TEXT PRIMARY KEY,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    async with db.execute("SELECT id FROM schema_migrations") as cursor:
        rows = await cursor.fetchall()
    applied = {row[0] for row in rows}

    for migration_id, sql in MIGRATIONS:
        if migration_id in applied:
            logger.debug("Migration already applied: %s", migration_id)
            continue
        logger.info("Applying migration: %s", migration_id)
        await db.execute(sql)
        await db.execute(
            "INSERT INTO schema_migrations (id) VALUES (?)",
            (migration_id,),
        )

    await db.commit()
    logger.info("Record store migrations complete.")
