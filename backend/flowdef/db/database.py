"""SQLite database connection, schema initialization and write coordination."""

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

# Global connection holder
_db_connection: aiosqlite.Connection | None = None

# Writers share one connection, so transactions must not interleave
_write_lock: asyncio.Lock | None = None

# Per-code locks serialize version commits for the same workflow code
_code_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection, _write_lock, _code_locks

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row
    _write_lock = asyncio.Lock()
    _code_locks = weakref.WeakValueDictionary()

    # Enable foreign keys
    await _db_connection.execute("PRAGMA foreign_keys = ON")

    # Create schema
    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection, _write_lock
    if _db_connection:
        await _db_connection.close()
        _db_connection = None
        _write_lock = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    return _db_connection


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run a unit of work that commits on success and rolls back on error."""
    db = await get_db()
    if _write_lock is None:
        raise RuntimeError("Database not initialized. Call init_database first.")
    async with _write_lock:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()


@asynccontextmanager
async def code_lock(code: int) -> AsyncIterator[None]:
    """Hold the exclusive commit slot for one workflow code.

    Must be acquired before `transaction()`, never inside it.
    """
    lock = _code_locks.get(code)
    if lock is None:
        lock = asyncio.Lock()
        _code_locks[code] = lock
    async with lock:
        yield


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Current (mutable) definition row: one per code, points at the active version
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_definitions (
            code INTEGER PRIMARY KEY,
            version INTEGER NOT NULL,
            project_code INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            global_params_json TEXT NOT NULL DEFAULT '[]',
            timeout INTEGER NOT NULL DEFAULT 0,
            execution_type TEXT NOT NULL DEFAULT 'PARALLEL',
            locations TEXT,
            release_state TEXT NOT NULL DEFAULT 'OFFLINE',
            published_version INTEGER,
            user_id INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            -- Highest version ever committed; deleted versions are not handed out again
            max_version INTEGER NOT NULL DEFAULT 0
        )
    """)

    await db.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_workflow_project_name
        ON workflow_definitions(project_code, name)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_workflow_project_updated
        ON workflow_definitions(project_code, updated_at, code)
    """)

    # Immutable version history: one row per (code, version)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_definition_logs (
            code INTEGER NOT NULL,
            version INTEGER NOT NULL,
            project_code INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            global_params_json TEXT NOT NULL DEFAULT '[]',
            timeout INTEGER NOT NULL DEFAULT 0,
            execution_type TEXT NOT NULL DEFAULT 'PARALLEL',
            locations TEXT,
            tasks_json TEXT NOT NULL DEFAULT '[]',
            user_id INTEGER,
            created_at TEXT NOT NULL,
            PRIMARY KEY (code, version)
        )
    """)

    # Current task definitions
    await db.execute("""
        CREATE TABLE IF NOT EXISTS task_definitions (
            code INTEGER PRIMARY KEY,
            version INTEGER NOT NULL,
            project_code INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            task_type TEXT NOT NULL,
            task_params_json TEXT NOT NULL DEFAULT '{}',
            timeout INTEGER NOT NULL DEFAULT 0,
            fail_retry_times INTEGER NOT NULL DEFAULT 0,
            fail_retry_interval INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    # Task version history
    await db.execute("""
        CREATE TABLE IF NOT EXISTS task_definition_logs (
            code INTEGER NOT NULL,
            version INTEGER NOT NULL,
            project_code INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            task_type TEXT NOT NULL,
            task_params_json TEXT NOT NULL DEFAULT '{}',
            timeout INTEGER NOT NULL DEFAULT 0,
            fail_retry_times INTEGER NOT NULL DEFAULT 0,
            fail_retry_interval INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (code, version)
        )
    """)

    # Edges scoped to one workflow version
    await db.execute("""
        CREATE TABLE IF NOT EXISTS task_relations (
            workflow_code INTEGER NOT NULL,
            workflow_version INTEGER NOT NULL,
            pre_task_code INTEGER NOT NULL,
            pre_task_version INTEGER NOT NULL DEFAULT 0,
            post_task_code INTEGER NOT NULL,
            post_task_version INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (workflow_code, workflow_version, pre_task_code, post_task_code),
            FOREIGN KEY (workflow_code, workflow_version)
                REFERENCES workflow_definition_logs(code, version) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_relations_post_task
        ON task_relations(post_task_code)
    """)

    # Lineage edges
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workflow_lineage (
            workflow_code INTEGER NOT NULL,
            workflow_version INTEGER NOT NULL,
            task_code INTEGER NOT NULL,
            resource TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (workflow_code, workflow_version, task_code, resource)
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_lineage_resource
        ON workflow_lineage(resource)
    """)

    await db.commit()
