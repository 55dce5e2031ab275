"""VersionStore - immutable snapshots of workflow definitions.

Every commit appends one `workflow_definition_logs` row under the next
version number for its code and repoints the mutable `workflow_definitions`
row at it. Commits for one code are serialized by `code_lock`; the
`(code, version)` primary key is the backstop against races.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiosqlite

from flowdef.db.database import code_lock, get_db, transaction
from flowdef.db.definition_store import (
    DEFINITION_COLUMNS,
    TASK_COLUMNS,
    now,
    row_to_definition,
    row_to_task,
    task_values,
)
from flowdef.errors import (
    DeleteBlockedError,
    DuplicateNameError,
    NotFoundError,
    VersionConflictError,
)
from flowdef.models.task import TaskDefinition, TaskRelation
from flowdef.models.version import VersionPage, VersionSummary, WorkflowSnapshot
from flowdef.models.workflow import (
    ExecutionType,
    Property,
    ReleaseState,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOG_COLUMNS = (
    "code, version, project_code, name, description, global_params_json, timeout, "
    "execution_type, locations, tasks_json, user_id, created_at"
)


class VersionStore:
    """Append-only version history with a single mutable pointer per code."""

    # ==================== Reads ====================

    async def _read(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run an idempotent read, retrying once on a transient storage error."""
        try:
            return await fn(*args)
        except aiosqlite.OperationalError as e:
            logger.warning(f"Transient read failure in {fn.__name__}, retrying once: {e}")
            return await fn(*args)

    async def get(self, code: int, version: int) -> WorkflowSnapshot:
        """Get the snapshot of `(code, version)`."""
        snapshot = await self._read(self._fetch_snapshot, code, version)
        if snapshot is None:
            raise NotFoundError(
                f"Workflow {code} version {version} not found", code=code, version=version
            )
        return snapshot

    async def get_current(self, code: int) -> WorkflowSnapshot:
        """Get the snapshot the current pointer refers to."""
        current = await self._read(self._fetch_current_row, code)
        if current is None:
            raise NotFoundError(f"Workflow {code} not found", code=code)
        return await self.get(code, current.version)

    async def latest_version(self, code: int) -> int | None:
        """Highest committed version of a code, or None."""
        return await self._read(self._fetch_latest_version, code)

    async def list_versions(
        self, code: int, page_no: int = 1, page_size: int = 10
    ) -> VersionPage:
        """List version summaries, newest first."""
        return await self._read(self._fetch_version_page, code, page_no, page_size)

    async def _fetch_current_row(self, code: int) -> WorkflowDefinition | None:
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {DEFINITION_COLUMNS} FROM workflow_definitions WHERE code = ?",
            (code,),
        )
        row = await cursor.fetchone()
        return row_to_definition(row) if row else None

    async def _fetch_latest_version(self, code: int) -> int | None:
        db = await get_db()
        cursor = await db.execute(
            "SELECT MAX(version) AS version FROM workflow_definition_logs WHERE code = ?",
            (code,),
        )
        row = await cursor.fetchone()
        return row["version"] if row else None

    async def _fetch_snapshot(self, code: int, version: int) -> WorkflowSnapshot | None:
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {LOG_COLUMNS} FROM workflow_definition_logs WHERE code = ? AND version = ?",
            (code, version),
        )
        row = await cursor.fetchone()
        if row is None:
            return None

        current = await self._fetch_current_row(code)
        definition = _log_row_to_definition(row, current)

        tasks: list[TaskDefinition] = []
        for task_code, task_version in json.loads(row["tasks_json"]):
            cursor = await db.execute(
                f"SELECT {TASK_COLUMNS} FROM task_definition_logs WHERE code = ? AND version = ?",
                (task_code, task_version),
            )
            task_row = await cursor.fetchone()
            if task_row is not None:
                tasks.append(row_to_task(task_row))

        cursor = await db.execute(
            """
            SELECT pre_task_code, pre_task_version, post_task_code, post_task_version
            FROM task_relations WHERE workflow_code = ? AND workflow_version = ?
            ORDER BY pre_task_code, post_task_code
            """,
            (code, version),
        )
        relation_rows = await cursor.fetchall()
        relations = [
            TaskRelation(
                pre_task_code=r["pre_task_code"],
                pre_task_version=r["pre_task_version"],
                post_task_code=r["post_task_code"],
                post_task_version=r["post_task_version"],
            )
            for r in relation_rows
        ]

        return WorkflowSnapshot(definition=definition, tasks=tasks, relations=relations)

    async def _fetch_version_page(
        self, code: int, page_no: int, page_size: int
    ) -> VersionPage:
        db = await get_db()
        cursor = await db.execute(
            "SELECT COUNT(*) AS count FROM workflow_definition_logs WHERE code = ?",
            (code,),
        )
        row = await cursor.fetchone()
        total = row["count"] if row else 0

        current = await self._fetch_current_row(code)
        active_version = current.version if current else None

        cursor = await db.execute(
            """
            SELECT code, version, name, description, user_id, created_at
            FROM workflow_definition_logs WHERE code = ?
            ORDER BY version DESC
            LIMIT ? OFFSET ?
            """,
            (code, page_size, (page_no - 1) * page_size),
        )
        rows = await cursor.fetchall()
        items = [
            VersionSummary(
                code=r["code"],
                version=r["version"],
                name=r["name"],
                description=r["description"],
                user_id=r["user_id"],
                is_active=r["version"] == active_version,
                created_at=r["created_at"],
            )
            for r in rows
        ]
        return VersionPage(items=items, total=total, page_no=page_no, page_size=page_size)

    # ==================== Writes ====================

    async def commit(
        self, snapshot: WorkflowSnapshot, expected_version: int | None = None
    ) -> WorkflowSnapshot:
        """Append the next version for `snapshot.code` and make it current.

        Task versions are resolved against the current task rows: new tasks
        start at 1, changed tasks bump, unchanged tasks keep their version.
        The version carried by `snapshot.definition` is ignored.

        Raises:
            VersionConflictError: `expected_version` is stale, or another
                writer committed the same version.
            DuplicateNameError: the name is taken in the project.
        """
        definition = snapshot.definition
        code = definition.code

        version = 0
        async with code_lock(code):
            try:
                async with transaction() as db:
                    cursor = await db.execute(
                        "SELECT MAX(version) AS version FROM workflow_definition_logs WHERE code = ?",
                        (code,),
                    )
                    row = await cursor.fetchone()
                    latest = row["version"] if row and row["version"] is not None else 0
                    cursor = await db.execute(
                        "SELECT max_version FROM workflow_definitions WHERE code = ?", (code,)
                    )
                    row = await cursor.fetchone()
                    if row is not None:
                        latest = max(latest, row["max_version"])
                    elif latest > 0:
                        # History without a current row: the definition was deleted
                        raise NotFoundError(f"Workflow {code} not found", code=code)
                    if expected_version is not None and latest != expected_version:
                        raise VersionConflictError(code, latest + 1)
                    version = latest + 1
                    timestamp = now()

                    tasks = await self._write_tasks(db, snapshot.tasks, definition.project_code, timestamp)
                    task_versions = {t.code: t.version for t in tasks}

                    await db.execute(
                        f"INSERT INTO workflow_definition_logs ({LOG_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            code,
                            version,
                            definition.project_code,
                            definition.name,
                            definition.description,
                            _dump_params(definition.global_params),
                            definition.timeout,
                            definition.execution_type.value,
                            definition.locations,
                            json.dumps([[t.code, t.version] for t in tasks]),
                            definition.user_id,
                            timestamp,
                        ),
                    )

                    relations = [
                        TaskRelation(
                            pre_task_code=r.pre_task_code,
                            pre_task_version=task_versions.get(r.pre_task_code, 0),
                            post_task_code=r.post_task_code,
                            post_task_version=task_versions.get(r.post_task_code, 0),
                        )
                        for r in snapshot.relations
                    ]
                    await db.executemany(
                        """
                        INSERT INTO task_relations
                        (workflow_code, workflow_version, pre_task_code, pre_task_version,
                         post_task_code, post_task_version, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                code,
                                version,
                                r.pre_task_code,
                                r.pre_task_version,
                                r.post_task_code,
                                r.post_task_version,
                                timestamp,
                            )
                            for r in relations
                        ],
                    )

                    await db.execute(
                        f"""
                        INSERT INTO workflow_definitions ({DEFINITION_COLUMNS})
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(code) DO UPDATE SET
                            version = excluded.version,
                            name = excluded.name,
                            description = excluded.description,
                            global_params_json = excluded.global_params_json,
                            timeout = excluded.timeout,
                            execution_type = excluded.execution_type,
                            locations = excluded.locations,
                            user_id = excluded.user_id,
                            updated_at = excluded.updated_at
                        """,
                        (
                            code,
                            version,
                            definition.project_code,
                            definition.name,
                            definition.description,
                            _dump_params(definition.global_params),
                            definition.timeout,
                            definition.execution_type.value,
                            definition.locations,
                            ReleaseState.OFFLINE.value,
                            None,
                            definition.user_id,
                            timestamp,
                            timestamp,
                        ),
                    )
                    await db.execute(
                        "UPDATE workflow_definitions SET max_version = ? WHERE code = ?",
                        (version, code),
                    )
            except aiosqlite.IntegrityError as e:
                raise _translate_integrity_error(e, definition, version) from e

        logger.info(f"Committed workflow {code} version {version}")
        return await self.get(code, version)

    async def _write_tasks(
        self,
        db: aiosqlite.Connection,
        tasks: list[TaskDefinition],
        project_code: int,
        timestamp: str,
    ) -> list[TaskDefinition]:
        """Resolve task versions, append changed tasks to the task log and
        upsert the current task rows."""
        resolved = []
        for task in tasks:
            cursor = await db.execute(
                f"SELECT {TASK_COLUMNS} FROM task_definitions WHERE code = ?",
                (task.code,),
            )
            row = await cursor.fetchone()
            if row is not None:
                existing = row_to_task(row)
                if existing.content_key() == task.content_key():
                    resolved.append(existing)
                    continue
                created_at = existing.created_at
            else:
                created_at = timestamp

            # The current row may point at an older version after a switch
            cursor = await db.execute(
                "SELECT MAX(version) AS version FROM task_definition_logs WHERE code = ?",
                (task.code,),
            )
            log_row = await cursor.fetchone()
            new_version = (log_row["version"] or 0) + 1 if log_row else 1

            versioned = task.model_copy(
                update={
                    "version": new_version,
                    "project_code": project_code,
                    "created_at": created_at,
                    "updated_at": timestamp,
                }
            )
            values = task_values(versioned, project_code, timestamp)
            placeholders = ", ".join("?" for _ in values)
            await db.execute(
                f"INSERT INTO task_definition_logs ({TASK_COLUMNS}) VALUES ({placeholders})",
                values,
            )
            await db.execute(
                f"INSERT OR REPLACE INTO task_definitions ({TASK_COLUMNS}) VALUES ({placeholders})",
                values,
            )
            resolved.append(versioned)
        return resolved

    async def switch_active(self, code: int, version: int) -> WorkflowDefinition:
        """Repoint the current row at an existing version without a new log row."""
        async with code_lock(code):
            async with transaction() as db:
                cursor = await db.execute(
                    f"SELECT {LOG_COLUMNS} FROM workflow_definition_logs "
                    "WHERE code = ? AND version = ?",
                    (code, version),
                )
                row = await cursor.fetchone()
                if row is None:
                    raise NotFoundError(
                        f"Workflow {code} version {version} not found",
                        code=code,
                        version=version,
                    )
                cursor = await db.execute(
                    "SELECT 1 FROM workflow_definitions WHERE code = ?", (code,)
                )
                if await cursor.fetchone() is None:
                    raise NotFoundError(f"Workflow {code} not found", code=code)

                timestamp = now()
                try:
                    await db.execute(
                        """
                        UPDATE workflow_definitions SET
                            version = ?, name = ?, description = ?, global_params_json = ?,
                            timeout = ?, execution_type = ?, locations = ?, user_id = ?,
                            updated_at = ?
                        WHERE code = ?
                        """,
                        (
                            version,
                            row["name"],
                            row["description"],
                            row["global_params_json"],
                            row["timeout"],
                            row["execution_type"],
                            row["locations"],
                            row["user_id"],
                            timestamp,
                            code,
                        ),
                    )
                except aiosqlite.IntegrityError as e:
                    raise DuplicateNameError(row["project_code"], row["name"]) from e

                # Current task rows follow the switched-to version
                for task_code, task_version in json.loads(row["tasks_json"]):
                    await db.execute(
                        f"""
                        INSERT OR REPLACE INTO task_definitions ({TASK_COLUMNS})
                        SELECT {TASK_COLUMNS} FROM task_definition_logs
                        WHERE code = ? AND version = ?
                        """,
                        (task_code, task_version),
                    )

        logger.info(f"Switched workflow {code} to version {version}")
        current = await self._fetch_current_row(code)
        if current is None:
            raise NotFoundError(f"Workflow {code} not found", code=code)
        return current

    async def delete_version(
        self, code: int, version: int, running_versions: set[int] | None = None
    ) -> None:
        """Delete one historical version with its relations and lineage.

        Raises:
            NotFoundError: the version does not exist.
            DeleteBlockedError: the version is active, published while
                online, or in use by a running execution.
        """
        async with code_lock(code):
            async with transaction() as db:
                cursor = await db.execute(
                    "SELECT 1 FROM workflow_definition_logs WHERE code = ? AND version = ?",
                    (code, version),
                )
                if await cursor.fetchone() is None:
                    raise NotFoundError(
                        f"Workflow {code} version {version} not found",
                        code=code,
                        version=version,
                    )

                cursor = await db.execute(
                    "SELECT version, release_state, published_version "
                    "FROM workflow_definitions WHERE code = ?",
                    (code,),
                )
                current = await cursor.fetchone()
                if current is not None:
                    if current["version"] == version:
                        raise DeleteBlockedError(
                            f"Version {version} is the active version of workflow {code}",
                            code=code,
                            version=version,
                        )
                    if (
                        current["release_state"] == ReleaseState.ONLINE.value
                        and current["published_version"] == version
                    ):
                        raise DeleteBlockedError(
                            f"Version {version} of workflow {code} is online",
                            code=code,
                            version=version,
                        )
                if running_versions and version in running_versions:
                    raise DeleteBlockedError(
                        f"Version {version} of workflow {code} is used by a running execution",
                        code=code,
                        version=version,
                    )

                await self._delete_version_rows(db, code, version)

        logger.info(f"Deleted workflow {code} version {version}")

    async def delete_versions(self, code: int, versions: list[int]) -> None:
        """Delete historical rows of a code whose current row is already gone."""
        async with code_lock(code):
            async with transaction() as db:
                for version in versions:
                    await self._delete_version_rows(db, code, version)

    async def _delete_version_rows(
        self, db: aiosqlite.Connection, code: int, version: int
    ) -> None:
        await db.execute(
            "DELETE FROM task_relations WHERE workflow_code = ? AND workflow_version = ?",
            (code, version),
        )
        await db.execute(
            "DELETE FROM workflow_lineage WHERE workflow_code = ? AND workflow_version = ?",
            (code, version),
        )
        await db.execute(
            "DELETE FROM workflow_definition_logs WHERE code = ? AND version = ?",
            (code, version),
        )


def _dump_params(params: list[Property]) -> str:
    return json.dumps([p.model_dump() for p in params])


def _log_row_to_definition(
    row: aiosqlite.Row, current: WorkflowDefinition | None
) -> WorkflowDefinition:
    """Build a definition from a log row.

    A historical version reports ONLINE only when it is the one published.
    """
    online = (
        current is not None
        and current.is_online
        and current.published_version == row["version"]
    )
    return WorkflowDefinition(
        code=row["code"],
        version=row["version"],
        project_code=row["project_code"],
        name=row["name"],
        description=row["description"],
        global_params=[Property(**p) for p in json.loads(row["global_params_json"])],
        timeout=row["timeout"],
        execution_type=ExecutionType(row["execution_type"]),
        locations=row["locations"],
        release_state=ReleaseState.ONLINE if online else ReleaseState.OFFLINE,
        published_version=current.published_version if current else None,
        user_id=row["user_id"],
        created_at=current.created_at if current else row["created_at"],
        updated_at=row["created_at"],
    )


def _translate_integrity_error(
    error: aiosqlite.IntegrityError, definition: WorkflowDefinition, version: int
) -> Exception:
    message = str(error)
    if "workflow_definitions.project_code" in message or "workflow_definitions.name" in message:
        return DuplicateNameError(definition.project_code, definition.name)
    return VersionConflictError(definition.code, version)


# Global instance
version_store = VersionStore()
