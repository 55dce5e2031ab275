"""DefinitionStore - storage for current definition rows, tasks and lineage."""

import json
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from flowdef.db.database import code_lock, get_db, transaction
from flowdef.models.results import LineageEdge
from flowdef.models.task import TaskDefinition
from flowdef.models.workflow import (
    DefinitionFilter,
    DefinitionPage,
    ExecutionType,
    Property,
    ReleaseState,
    WorkflowDefinition,
    WorkflowSummary,
)

DEFINITION_COLUMNS = (
    "code, version, project_code, name, description, global_params_json, timeout, "
    "execution_type, locations, release_state, published_version, user_id, "
    "created_at, updated_at"
)

TASK_COLUMNS = (
    "code, version, project_code, name, description, task_type, task_params_json, "
    "timeout, fail_retry_times, fail_retry_interval, created_at, updated_at"
)


def now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so `value` matches literally (with ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def row_to_definition(row: aiosqlite.Row) -> WorkflowDefinition:
    """Build a WorkflowDefinition from a workflow_definitions row."""
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
        release_state=ReleaseState(row["release_state"]),
        published_version=row["published_version"],
        user_id=row["user_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def row_to_task(row: aiosqlite.Row) -> TaskDefinition:
    """Build a TaskDefinition from a task_definitions / task_definition_logs row."""
    return TaskDefinition(
        code=row["code"],
        version=row["version"],
        project_code=row["project_code"],
        name=row["name"],
        description=row["description"],
        task_type=row["task_type"],
        task_params=json.loads(row["task_params_json"]),
        timeout=row["timeout"],
        fail_retry_times=row["fail_retry_times"],
        fail_retry_interval=row["fail_retry_interval"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def task_values(task: TaskDefinition, project_code: int, timestamp: str) -> tuple[Any, ...]:
    """Column values for inserting a task row, in TASK_COLUMNS order."""
    return (
        task.code,
        task.version,
        project_code,
        task.name,
        task.description,
        task.task_type,
        json.dumps(task.task_params, sort_keys=True),
        task.timeout,
        task.fail_retry_times,
        task.fail_retry_interval,
        task.created_at or timestamp,
        timestamp,
    )


class DefinitionStore:
    """Storage abstraction for current definitions, task definitions and lineage."""

    # ==================== Workflows ====================

    async def get_definition(self, code: int) -> WorkflowDefinition | None:
        """Get the current definition row by code."""
        db = await get_db()
        cursor = await db.execute(
            f"SELECT {DEFINITION_COLUMNS} FROM workflow_definitions WHERE code = ?",
            (code,),
        )
        row = await cursor.fetchone()
        return row_to_definition(row) if row else None

    async def get_definitions(self, codes: list[int]) -> list[WorkflowDefinition]:
        """Get current definition rows for several codes, in code order."""
        if not codes:
            return []
        db = await get_db()
        placeholders = ", ".join("?" for _ in codes)
        cursor = await db.execute(
            f"""
            SELECT {DEFINITION_COLUMNS} FROM workflow_definitions
            WHERE code IN ({placeholders}) ORDER BY code
            """,
            list(codes),
        )
        rows = await cursor.fetchall()
        return [row_to_definition(row) for row in rows]

    async def get_definition_by_name(
        self, project_code: int, name: str
    ) -> WorkflowDefinition | None:
        """Get the current definition with the given name in a project."""
        db = await get_db()
        cursor = await db.execute(
            f"""
            SELECT {DEFINITION_COLUMNS} FROM workflow_definitions
            WHERE project_code = ? AND name = ?
            """,
            (project_code, name),
        )
        row = await cursor.fetchone()
        return row_to_definition(row) if row else None

    async def name_exists(
        self, project_code: int, name: str, exclude_code: int | None = None
    ) -> bool:
        """Check whether a name is taken in a project by another definition."""
        existing = await self.get_definition_by_name(project_code, name)
        return existing is not None and existing.code != exclude_code

    async def names_with_prefix(self, project_code: int, prefix: str) -> set[str]:
        """All names in a project starting with a prefix."""
        db = await get_db()
        escaped = escape_like(prefix)
        cursor = await db.execute(
            """
            SELECT name FROM workflow_definitions
            WHERE project_code = ? AND name LIKE ? ESCAPE '\\'
            """,
            (project_code, f"{escaped}%"),
        )
        rows = await cursor.fetchall()
        return {row["name"] for row in rows}

    async def list_definitions(self, query: DefinitionFilter) -> DefinitionPage:
        """Query definitions with filters, newest update first.

        Ties on update time are broken by code so pages stay stable.
        """
        db = await get_db()

        where_clauses = ["project_code = ?"]
        params: list[Any] = [query.project_code]

        if query.search_val:
            where_clauses.append(
                "(name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')"
            )
            pattern = f"%{escape_like(query.search_val)}%"
            params.extend([pattern, pattern])

        if query.user_id is not None:
            where_clauses.append("user_id = ?")
            params.append(query.user_id)

        where_sql = " AND ".join(where_clauses)

        cursor = await db.execute(
            f"SELECT COUNT(*) as count FROM workflow_definitions WHERE {where_sql}",
            params,
        )
        row = await cursor.fetchone()
        total = row["count"] if row else 0

        offset = (query.page_no - 1) * query.page_size
        cursor = await db.execute(
            f"""
            SELECT {DEFINITION_COLUMNS} FROM workflow_definitions WHERE {where_sql}
            ORDER BY updated_at DESC, code DESC
            LIMIT ? OFFSET ?
            """,
            params + [query.page_size, offset],
        )
        rows = await cursor.fetchall()

        return DefinitionPage(
            items=[row_to_definition(r) for r in rows],
            total=total,
            page_no=query.page_no,
            page_size=query.page_size,
        )

    async def list_by_project(self, project_code: int) -> list[WorkflowSummary]:
        """List code/name of every definition in a project."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT code, name, project_code FROM workflow_definitions
            WHERE project_code = ? ORDER BY name, code
            """,
            (project_code,),
        )
        rows = await cursor.fetchall()
        return [
            WorkflowSummary(code=r["code"], name=r["name"], project_code=r["project_code"])
            for r in rows
        ]

    async def update_release_state(
        self, code: int, state: ReleaseState, published_version: int | None
    ) -> bool:
        """Set the release state and published version of a definition."""
        async with transaction() as db:
            cursor = await db.execute(
                """
                UPDATE workflow_definitions
                SET release_state = ?, published_version = ?, updated_at = ?
                WHERE code = ?
                """,
                (state.value, published_version, now(), code),
            )
            return cursor.rowcount > 0

    async def delete_definition(self, code: int) -> bool:
        """Delete the current row and current task rows no other definition uses.

        Holds the commit slot of `code` so no in-flight commit recreates the row.
        """
        async with code_lock(code), transaction() as db:
            cursor = await db.execute(
                "SELECT version FROM workflow_definitions WHERE code = ?", (code,)
            )
            row = await cursor.fetchone()
            if row is None:
                return False

            task_codes = await self._member_task_codes(db, code, row["version"])
            await db.execute("DELETE FROM workflow_definitions WHERE code = ?", (code,))

            for task_code in task_codes:
                if not await self._task_used_elsewhere(db, task_code, code):
                    await db.execute(
                        "DELETE FROM task_definitions WHERE code = ?", (task_code,)
                    )
            return True

    async def _member_task_codes(
        self, db: aiosqlite.Connection, code: int, version: int
    ) -> list[int]:
        cursor = await db.execute(
            "SELECT tasks_json FROM workflow_definition_logs WHERE code = ? AND version = ?",
            (code, version),
        )
        row = await cursor.fetchone()
        if row is None:
            return []
        return [task_code for task_code, _ in json.loads(row["tasks_json"])]

    async def _task_used_elsewhere(
        self, db: aiosqlite.Connection, task_code: int, workflow_code: int
    ) -> bool:
        """Check whether another current definition references a task."""
        cursor = await db.execute(
            """
            SELECT 1 FROM workflow_definitions w
            JOIN workflow_definition_logs l ON l.code = w.code AND l.version = w.version,
                 json_each(l.tasks_json) j
            WHERE w.code != ? AND json_extract(j.value, '$[0]') = ?
            LIMIT 1
            """,
            (workflow_code, task_code),
        )
        return await cursor.fetchone() is not None

    async def code_in_use(self, code: int) -> bool:
        """Check whether a code was ever assigned to a workflow or task."""
        db = await get_db()
        for table in (
            "workflow_definitions",
            "workflow_definition_logs",
            "task_definitions",
            "task_definition_logs",
        ):
            cursor = await db.execute(f"SELECT 1 FROM {table} WHERE code = ? LIMIT 1", (code,))
            if await cursor.fetchone() is not None:
                return True
        return False

    # ==================== Tasks ====================

    async def get_tasks(self, codes: list[int]) -> dict[int, TaskDefinition]:
        """Get current task definitions keyed by code."""
        if not codes:
            return {}
        db = await get_db()
        placeholders = ", ".join("?" for _ in codes)
        cursor = await db.execute(
            f"SELECT {TASK_COLUMNS} FROM task_definitions WHERE code IN ({placeholders})",
            list(codes),
        )
        rows = await cursor.fetchall()
        return {row["code"]: row_to_task(row) for row in rows}

    # ==================== Lineage ====================

    async def replace_lineage(
        self, workflow_code: int, workflow_version: int, edges: list[LineageEdge]
    ) -> None:
        """Replace the lineage edges recorded for one workflow version."""
        timestamp = now()
        async with transaction() as db:
            await db.execute(
                "DELETE FROM workflow_lineage WHERE workflow_code = ? AND workflow_version = ?",
                (workflow_code, workflow_version),
            )
            await db.executemany(
                """
                INSERT OR IGNORE INTO workflow_lineage
                (workflow_code, workflow_version, task_code, resource, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (e.workflow_code, e.workflow_version, e.task_code, e.resource, timestamp)
                    for e in edges
                ],
            )

    async def list_lineage(
        self, workflow_code: int, workflow_version: int | None = None
    ) -> list[LineageEdge]:
        """List lineage edges of a workflow, optionally for one version."""
        db = await get_db()
        sql = """
            SELECT workflow_code, workflow_version, task_code, resource
            FROM workflow_lineage WHERE workflow_code = ?
        """
        params: list[Any] = [workflow_code]
        if workflow_version is not None:
            sql += " AND workflow_version = ?"
            params.append(workflow_version)
        sql += " ORDER BY workflow_version, task_code, resource"
        cursor = await db.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_lineage(r) for r in rows]

    async def find_lineage_by_resource(self, resource: str) -> list[LineageEdge]:
        """List every lineage edge pointing at a resource."""
        db = await get_db()
        cursor = await db.execute(
            """
            SELECT workflow_code, workflow_version, task_code, resource
            FROM workflow_lineage WHERE resource = ?
            ORDER BY workflow_code, workflow_version, task_code
            """,
            (resource,),
        )
        rows = await cursor.fetchall()
        return [_row_to_lineage(r) for r in rows]


def _row_to_lineage(row: aiosqlite.Row) -> LineageEdge:
    return LineageEdge(
        workflow_code=row["workflow_code"],
        workflow_version=row["workflow_version"],
        task_code=row["task_code"],
        resource=row["resource"],
    )


# Global instance
definition_store = DefinitionStore()
