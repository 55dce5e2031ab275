"""Definition registry - the entry point for every definition mutation.

Create and update validate the draft graph, allocate codes, and commit a new
version through the VersionStore in one transaction. Lineage is recorded
afterwards as a best-effort side effect.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable

from flowdef.config import Settings
from flowdef.db.definition_store import DefinitionStore, definition_store, now
from flowdef.db.version_store import VersionStore, version_store
from flowdef.errors import (
    DeleteBlockedError,
    DuplicateNameError,
    NotFoundError,
    WorkflowDefinitionError,
)
from flowdef.models.results import (
    BatchResult,
    DefinitionResult,
    GraphCheckResult,
    GraphWarning,
    ItemOutcome,
    OutcomeStatus,
    TaskVariables,
    TreeView,
    WorkflowVariables,
)
from flowdef.models.task import (
    VIRTUAL_ROOT_CODE,
    RelationDraft,
    TaskDefinition,
    TaskRelation,
)
from flowdef.models.version import VersionPage, WorkflowSnapshot
from flowdef.models.workflow import (
    BasicInfoUpdate,
    DefinitionFilter,
    DefinitionPage,
    WorkflowDefinition,
    WorkflowDraft,
    WorkflowSummary,
)
from flowdef.services.code_allocator import CodeAllocator
from flowdef.services.collaborators import ExecutionMonitor, NullExecutionMonitor
from flowdef.services.dag import build_draft_graph, build_graph, orphan_warning
from flowdef.services.lineage import LineageRecorder

logger = logging.getLogger(__name__)


def remap_locations(locations: str | None, code_map: dict[int, int]) -> str | None:
    """Rewrite task codes in a `[{taskCode, x, y}, ...]` layout blob.

    Anything that is not such a list is returned untouched.
    """
    if not locations or not code_map:
        return locations
    try:
        entries = json.loads(locations)
    except json.JSONDecodeError:
        return locations
    if not isinstance(entries, list):
        return locations

    for entry in entries:
        if isinstance(entry, dict) and "taskCode" in entry:
            try:
                entry["taskCode"] = code_map.get(int(entry["taskCode"]), entry["taskCode"])
            except (TypeError, ValueError):
                continue
    return json.dumps(entries)


def snapshot_to_draft(snapshot: WorkflowSnapshot) -> WorkflowDraft:
    """Turn a stored snapshot back into a draft keyed by its task codes."""
    definition = snapshot.definition
    connected = {
        code
        for r in snapshot.relations
        for code in (r.pre_task_code, r.post_task_code)
    }
    return WorkflowDraft(
        name=definition.name,
        description=definition.description,
        global_params=definition.global_params,
        timeout=definition.timeout,
        execution_type=definition.execution_type,
        locations=definition.locations,
        tasks=[task.to_draft() for task in snapshot.tasks],
        relations=[r.to_draft() for r in snapshot.relations],
        standalone_task_codes=[t.code for t in snapshot.tasks if t.code not in connected],
        user_id=definition.user_id,
    )


class DefinitionRegistry:
    """CRUD façade over the version store, graph validator and allocator."""

    def __init__(
        self,
        allocator: CodeAllocator,
        lineage: LineageRecorder | None = None,
        execution_monitor: ExecutionMonitor | None = None,
        settings: Settings | None = None,
        store: DefinitionStore = definition_store,
        versions: VersionStore = version_store,
    ):
        self._allocator = allocator
        self._store = store
        self._versions = versions
        self._lineage = lineage or LineageRecorder(store)
        self._monitor = execution_monitor or NullExecutionMonitor()
        self._settings = settings or Settings.from_env()

    @property
    def versions(self) -> VersionStore:
        return self._versions

    @property
    def store(self) -> DefinitionStore:
        return self._store

    # ==================== Validation ====================

    async def verify_name(
        self, project_code: int, name: str, exclude_code: int | None = None
    ) -> None:
        """Raise DuplicateNameError if `name` is taken in the project."""
        if await self._store.name_exists(project_code, name, exclude_code):
            raise DuplicateNameError(project_code, name)

    def check_graph(self, draft: WorkflowDraft) -> GraphCheckResult:
        """Validate a draft graph without persisting anything."""
        graph = build_draft_graph(draft)
        return GraphCheckResult(valid=True, warnings=graph.warnings)

    async def unique_name(self, project_code: int, name: str, suffix: str | None = None) -> str:
        """Return `name`, or the first free `name<suffix>`, `name<suffix>_2`, ..."""
        if not await self._store.name_exists(project_code, name):
            return name
        suffix = suffix if suffix is not None else self._settings.copy_suffix
        base = f"{name}{suffix}"
        taken = await self._store.names_with_prefix(project_code, base)
        if base not in taken:
            return base
        counter = 2
        while f"{base}_{counter}" in taken:
            counter += 1
        return f"{base}_{counter}"

    # ==================== Create / Update ====================

    async def create(self, project_code: int, draft: WorkflowDraft) -> DefinitionResult:
        """Create a definition at version 1 with freshly allocated codes.

        Raises:
            DuplicateNameError: the name is taken in the project.
            GraphValidationError: the draft graph is invalid.
        """
        await self.verify_name(project_code, draft.name)
        graph = build_draft_graph(draft)

        code = await self._allocator.allocate()
        timestamp = now()
        definition = WorkflowDefinition(
            code=code,
            version=1,
            project_code=project_code,
            name=draft.name,
            description=draft.description,
            global_params=draft.global_params,
            timeout=draft.timeout,
            execution_type=draft.execution_type,
            user_id=draft.user_id,
            created_at=timestamp,
            updated_at=timestamp,
        )
        snapshot, code_map = await self._materialize(definition, draft, keep_codes=set())
        committed = await self._versions.commit(snapshot)
        await self._lineage.record(committed)

        logger.info(f"Created workflow {code} '{draft.name}' in project {project_code}")
        return await self._result(committed, graph.warnings, code_map)

    async def update(self, code: int, draft: WorkflowDraft) -> DefinitionResult:
        """Commit the draft as the next version of `code`.

        Task keys that already belong to the current version keep their
        codes; all others are allocated. Status is never changed here: an
        online definition stays published at its old version until the next
        `go_online`.
        """
        current = await self._require(code)
        await self.verify_name(current.project_code, draft.name, exclude_code=code)
        graph = build_draft_graph(draft)

        existing = await self._versions.get(code, current.version)
        keep_codes = {t.code for t in existing.tasks}

        definition = current.model_copy(
            update={
                "name": draft.name,
                "description": draft.description,
                "global_params": draft.global_params,
                "timeout": draft.timeout,
                "execution_type": draft.execution_type,
                "user_id": draft.user_id if draft.user_id is not None else current.user_id,
            }
        )
        snapshot, code_map = await self._materialize(definition, draft, keep_codes)
        committed = await self._versions.commit(snapshot)
        await self._lineage.record(committed)

        if current.is_online:
            logger.info(
                f"Workflow {code} is online at version {current.published_version}; "
                f"version {committed.version} is published on the next go_online"
            )
        else:
            logger.info(f"Updated workflow {code} to version {committed.version}")
        return await self._result(committed, graph.warnings, code_map)

    async def update_basic_info(self, code: int, patch: BasicInfoUpdate) -> DefinitionResult:
        """Commit a new version changing metadata only."""
        current = await self._require(code)
        existing = await self._versions.get(code, current.version)

        changes = patch.model_dump(exclude_none=True)
        if "name" in changes:
            await self.verify_name(current.project_code, changes["name"], exclude_code=code)
        if "global_params" in changes:
            changes["global_params"] = patch.global_params

        snapshot = existing.model_copy(
            update={"definition": existing.definition.model_copy(update=changes)}
        )
        committed = await self._versions.commit(snapshot)
        await self._lineage.record(committed)
        return await self._result(committed, [], {t.code: t.code for t in committed.tasks})

    async def _materialize(
        self,
        definition: WorkflowDefinition,
        draft: WorkflowDraft,
        keep_codes: set[int],
    ) -> tuple[WorkflowSnapshot, dict[int, int]]:
        """Assign final task codes and build the snapshot to commit."""
        code_map: dict[int, int] = {}
        for task in draft.tasks:
            if task.code in keep_codes:
                code_map[task.code] = task.code
            else:
                code_map[task.code] = await self._allocator.allocate()

        tasks = [
            TaskDefinition(
                code=code_map[t.code],
                project_code=definition.project_code,
                name=t.name,
                description=t.description,
                task_type=t.task_type,
                task_params=t.task_params,
                timeout=t.timeout,
                fail_retry_times=t.fail_retry_times,
                fail_retry_interval=t.fail_retry_interval,
            )
            for t in draft.tasks
        ]
        relations = [
            TaskRelation(
                pre_task_code=(
                    VIRTUAL_ROOT_CODE
                    if r.pre_task_code == VIRTUAL_ROOT_CODE
                    else code_map[r.pre_task_code]
                ),
                post_task_code=code_map[r.post_task_code],
            )
            for r in _dedupe(draft.relations)
        ]
        moved = {k: v for k, v in code_map.items() if k != v}
        definition = definition.model_copy(
            update={"locations": remap_locations(draft.locations, moved)}
        )
        return WorkflowSnapshot(definition=definition, tasks=tasks, relations=relations), code_map

    async def _result(
        self, snapshot: WorkflowSnapshot, warnings: list[GraphWarning], code_map: dict[int, int]
    ) -> DefinitionResult:
        current = await self._require(snapshot.code)
        # Warnings were raised against draft keys
        warnings = [orphan_warning(code_map.get(w.task_code, w.task_code)) for w in warnings]
        return DefinitionResult(
            definition=current, tasks=snapshot.tasks, warnings=warnings, code_map=code_map
        )

    # ==================== Queries ====================

    async def query_by_code(self, code: int) -> WorkflowSnapshot:
        """Current snapshot of a definition."""
        return await self._versions.get_current(code)

    async def query_by_name(self, project_code: int, name: str) -> WorkflowSnapshot:
        definition = await self._store.get_definition_by_name(project_code, name)
        if definition is None:
            raise NotFoundError(f"Workflow '{name}' not found in project {project_code}")
        return await self._versions.get(definition.code, definition.version)

    async def list_paged(self, query: DefinitionFilter) -> DefinitionPage:
        return await self._store.list_definitions(query)

    async def list_simple(self, project_code: int) -> list[WorkflowSummary]:
        return await self._store.list_by_project(project_code)

    async def list_tasks(self, code: int) -> list[TaskDefinition]:
        """Task definitions of the current version."""
        snapshot = await self._versions.get_current(code)
        return snapshot.tasks

    async def list_tasks_by_codes(self, codes: Iterable[int]) -> dict[int, list[TaskDefinition]]:
        """Task definitions of several current versions; unknown codes are omitted."""
        result: dict[int, list[TaskDefinition]] = {}
        for definition in await self._store.get_definitions(list(codes)):
            snapshot = await self._versions.get(definition.code, definition.version)
            result[definition.code] = snapshot.tasks
        return result

    async def view_tree(self, code: int, limit: int | None = None) -> TreeView:
        """Layered tree view of the current version."""
        snapshot = await self._versions.get_current(code)
        graph = build_graph(snapshot.relations, [t.code for t in snapshot.tasks])
        return graph.tree_view(
            snapshot.task_by_code(),
            limit if limit is not None else self._settings.tree_view_limit,
            workflow_code=code,
        )

    async def view_variables(self, code: int) -> WorkflowVariables:
        """Global parameters and each task's local parameters."""
        snapshot = await self._versions.get_current(code)
        local_params = [
            TaskVariables(
                task_code=task.code,
                task_name=task.name,
                local_params=list(task.task_params.get("localParams") or []),
            )
            for task in snapshot.tasks
            if task.task_params.get("localParams")
        ]
        return WorkflowVariables(
            code=code,
            global_params=snapshot.definition.global_params,
            local_params=local_params,
        )

    # ==================== Versions ====================

    async def list_versions(self, code: int, page_no: int = 1, page_size: int = 10) -> VersionPage:
        await self._require(code)
        return await self._versions.list_versions(code, page_no, page_size)

    async def switch_version(self, code: int, version: int) -> WorkflowDefinition:
        """Make an existing version the active one."""
        await self._require(code)
        return await self._versions.switch_active(code, version)

    async def delete_version(self, code: int, version: int) -> None:
        running = await self._monitor.running_versions(code)
        await self._versions.delete_version(code, version, running)

    # ==================== Delete ====================

    async def delete(self, code: int, versions: Iterable[int] | None = None) -> None:
        """Delete a definition and, optionally, selected historical versions.

        Raises:
            NotFoundError: unknown code.
            DeleteBlockedError: the definition is online or running.
        """
        definition = await self._require(code)
        if definition.is_online:
            raise DeleteBlockedError(f"Workflow {code} is online", code=code)
        running = await self._monitor.running_versions(code)
        if running:
            raise DeleteBlockedError(
                f"Workflow {code} has running executions of version(s) {sorted(running)}",
                code=code,
            )

        await self._store.delete_definition(code)
        if versions:
            await self._versions.delete_versions(code, sorted(set(versions)))
        logger.info(f"Deleted workflow {code}")

    async def batch_delete(
        self, codes: Iterable[int], cancel_event: asyncio.Event | None = None
    ) -> BatchResult:
        """Delete each code independently; blocked codes are skipped."""
        result = BatchResult()
        pending = list(dict.fromkeys(codes))
        for index, code in enumerate(pending):
            if cancel_event is not None and cancel_event.is_set():
                for remaining in pending[index:]:
                    result.add(ItemOutcome(code=remaining, status=OutcomeStatus.CANCELLED))
                break
            try:
                await self.delete(code)
                result.add(ItemOutcome(code=code, status=OutcomeStatus.SUCCESS))
            except DeleteBlockedError as e:
                logger.warning(f"Skipped delete of workflow {code}: {e}")
                result.add(
                    ItemOutcome(
                        code=code,
                        status=OutcomeStatus.SKIPPED,
                        error_type=type(e).__name__,
                        message=str(e),
                    )
                )
            except WorkflowDefinitionError as e:
                result.add(ItemOutcome.failure(code, e))
            except Exception as e:
                logger.exception(f"Unexpected error deleting workflow {code}")
                result.add(ItemOutcome.failure(code, e))
        return result

    async def _require(self, code: int) -> WorkflowDefinition:
        definition = await self._store.get_definition(code)
        if definition is None:
            raise NotFoundError(f"Workflow {code} not found", code=code)
        return definition


def _dedupe(relations: list[RelationDraft]) -> list[RelationDraft]:
    seen: set[tuple[int, int]] = set()
    unique = []
    for r in relations:
        key = (r.pre_task_code, r.post_task_code)
        if key not in seen:
            seen.add(key)
            unique.append(r)
    return unique
