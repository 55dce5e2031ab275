"""Lineage recording for task-to-resource data flow.

Lineage is advisory metadata: recording runs after a definition commit and
never fails it.
"""

import logging
from typing import Any

from flowdef.db.definition_store import DefinitionStore, definition_store
from flowdef.models.results import LineageEdge
from flowdef.models.task import TaskDefinition
from flowdef.models.version import WorkflowSnapshot

logger = logging.getLogger(__name__)


def extract_resources(task: TaskDefinition) -> list[str]:
    """Resource identifiers referenced by a task's parameters."""
    params: dict[str, Any] = task.task_params
    resources: list[str] = []

    for item in params.get("resourceList") or []:
        name = item.get("resourceName") if isinstance(item, dict) else item
        if name:
            resources.append(f"resource:{name}")

    datasource = params.get("datasource")
    if datasource not in (None, ""):
        resources.append(f"datasource:{datasource}")

    if task.sub_workflow_code is not None:
        resources.append(f"workflow:{task.sub_workflow_code}")

    return sorted(set(resources))


class LineageRecorder:
    """Records lineage edges for committed definition versions."""

    def __init__(self, store: DefinitionStore = definition_store):
        self._store = store

    async def record(self, snapshot: WorkflowSnapshot) -> None:
        """Record lineage for a committed snapshot; errors are logged, not raised."""
        try:
            edges = [
                LineageEdge(
                    workflow_code=snapshot.code,
                    workflow_version=snapshot.version,
                    task_code=task.code,
                    resource=resource,
                )
                for task in snapshot.tasks
                for resource in extract_resources(task)
            ]
            await self._store.replace_lineage(snapshot.code, snapshot.version, edges)
        except Exception:
            logger.exception(
                f"Failed to record lineage for workflow {snapshot.code} version {snapshot.version}"
            )

    async def list_for_workflow(
        self, workflow_code: int, workflow_version: int | None = None
    ) -> list[LineageEdge]:
        return await self._store.list_lineage(workflow_code, workflow_version)

    async def find_by_resource(self, resource: str) -> list[LineageEdge]:
        """Every task that reads or writes a resource."""
        return await self._store.find_lineage_by_resource(resource)
