"""Lifecycle manager for the online/offline state of definitions.

Going online validates the current version's graph and requires every
sub-workflow reachable through sub-workflow tasks to be online itself. The
scheduler collaborator is notified after the state change is stored.
"""

from __future__ import annotations

import logging

from flowdef.db.definition_store import DefinitionStore, definition_store
from flowdef.db.version_store import VersionStore, version_store
from flowdef.errors import CyclicGraphError, NotFoundError, SubWorkflowNotOnlineError
from flowdef.models.version import WorkflowSnapshot
from flowdef.models.workflow import ReleaseState, WorkflowDefinition
from flowdef.services.collaborators import NullScheduler, Scheduler
from flowdef.services.dag import build_graph

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Moves definitions between OFFLINE (draft) and ONLINE."""

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        store: DefinitionStore = definition_store,
        versions: VersionStore = version_store,
    ):
        self._scheduler = scheduler or NullScheduler()
        self._store = store
        self._versions = versions

    async def go_online(self, code: int) -> WorkflowDefinition:
        """Publish the current version.

        A definition that is already online with its current version
        published is returned unchanged. An online definition whose current
        version was edited since publishing is republished.

        Raises:
            NotFoundError: unknown code.
            GraphValidationError: the current graph is invalid.
            SubWorkflowNotOnlineError: a referenced sub-workflow is offline.
            CyclicGraphError: sub-workflow references loop back on themselves.
        """
        definition = await self._require(code)
        if definition.is_online and definition.published_version == definition.version:
            return definition

        snapshot = await self._versions.get(code, definition.version)
        build_graph(snapshot.relations, [t.code for t in snapshot.tasks])
        await self.check_sub_workflows(snapshot)

        previous_state = definition.release_state
        previous_published = definition.published_version
        await self._store.update_release_state(code, ReleaseState.ONLINE, definition.version)
        online = await self._require(code)
        try:
            await self._scheduler.register(online)
        except Exception:
            await self._store.update_release_state(code, previous_state, previous_published)
            raise

        logger.info(f"Workflow {code} online at version {online.version}")
        return online

    async def go_offline(self, code: int) -> WorkflowDefinition:
        """Take a definition offline; offline definitions are returned unchanged."""
        definition = await self._require(code)
        if not definition.is_online:
            return definition

        await self._store.update_release_state(code, ReleaseState.OFFLINE, None)
        try:
            await self._scheduler.deregister(code)
        except Exception:
            await self._store.update_release_state(
                code, definition.release_state, definition.published_version
            )
            raise

        logger.info(f"Workflow {code} offline")
        return await self._require(code)

    async def check_sub_workflows(self, snapshot: WorkflowSnapshot) -> None:
        """Require every transitively referenced sub-workflow to be online.

        Depth-first over an explicit stack; a sub-workflow reached again
        while it is still on the current path is a reference cycle.
        """
        on_path: set[int] = {snapshot.code}
        done: set[int] = set()
        stack: list[tuple[int, list[int]]] = [(snapshot.code, _sub_workflow_codes(snapshot))]

        while stack:
            workflow_code, pending = stack[-1]
            if not pending:
                stack.pop()
                on_path.discard(workflow_code)
                done.add(workflow_code)
                continue

            sub_code = pending.pop(0)
            if sub_code in on_path:
                raise CyclicGraphError(
                    sub_code,
                    f"Sub-workflow {sub_code} is referenced from within itself "
                    f"(via workflow {workflow_code})",
                )
            if sub_code in done:
                continue

            sub = await self._store.get_definition(sub_code)
            if sub is None or not sub.is_online:
                raise SubWorkflowNotOnlineError(sub_code, code=snapshot.code)

            sub_snapshot = await self._versions.get(
                sub_code, sub.published_version or sub.version
            )
            on_path.add(sub_code)
            stack.append((sub_code, _sub_workflow_codes(sub_snapshot)))

    async def _require(self, code: int) -> WorkflowDefinition:
        definition = await self._store.get_definition(code)
        if definition is None:
            raise NotFoundError(f"Workflow {code} not found", code=code)
        return definition


def _sub_workflow_codes(snapshot: WorkflowSnapshot) -> list[int]:
    codes = []
    for task in sorted(snapshot.tasks, key=lambda t: t.code):
        sub_code = task.sub_workflow_code
        if sub_code is not None and sub_code not in codes:
            codes.append(sub_code)
    return codes
