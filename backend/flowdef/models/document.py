"""Portable import/export document.

Codes are authoritative on export and advisory on import.
"""

from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from flowdef.models.task import RelationDraft, TaskDraft
from flowdef.models.workflow import ExecutionType, Property, WorkflowDraft

DOCUMENT_FORMAT_VERSION = 1


class ExportedTask(BaseModel):
    """A task entry in the document."""

    code: int | None = None
    name: str = PydanticField(min_length=1)
    description: str = ""
    type: str = PydanticField(min_length=1)
    parameters: dict[str, Any] = {}
    timeout: int = PydanticField(default=0, ge=0)
    fail_retry_times: int = PydanticField(default=0, ge=0, alias="failRetryTimes")
    fail_retry_interval: int = PydanticField(default=1, ge=0, alias="failRetryInterval")

    model_config = {"populate_by_name": True}


class ExportedRelation(BaseModel):
    """An edge entry; 0 as pre-task code marks an entry task."""

    pre_task_code: int = PydanticField(ge=0, alias="preTaskCode")
    post_task_code: int = PydanticField(gt=0, alias="postTaskCode")

    model_config = {"populate_by_name": True}


class ExportedWorkflow(BaseModel):
    """A complete definition bundle."""

    code: int | None = None
    name: str = PydanticField(min_length=1)
    description: str = ""
    global_params: list[Property] = PydanticField(default_factory=list, alias="globalParams")
    timeout: int = PydanticField(default=0, ge=0)
    execution_type: ExecutionType = PydanticField(
        default=ExecutionType.PARALLEL, alias="executionType"
    )
    locations: str | None = None
    tasks: list[ExportedTask] = []
    relations: list[ExportedRelation] = []

    model_config = {"populate_by_name": True}

    def to_draft(self) -> WorkflowDraft:
        """Build a draft keyed by the document's task codes.

        Tasks without a code get positional keys after the largest code used.
        """
        next_key = max([t.code or 0 for t in self.tasks] + [0]) + 1
        tasks = []
        for task in self.tasks:
            key = task.code
            if key is None:
                key = next_key
                next_key += 1
            tasks.append(
                TaskDraft(
                    code=key,
                    name=task.name,
                    description=task.description,
                    task_type=task.type,
                    task_params=task.parameters,
                    timeout=task.timeout,
                    fail_retry_times=task.fail_retry_times,
                    fail_retry_interval=task.fail_retry_interval,
                )
            )
        return WorkflowDraft(
            name=self.name,
            description=self.description,
            global_params=self.global_params,
            timeout=self.timeout,
            execution_type=self.execution_type,
            locations=self.locations,
            tasks=tasks,
            relations=[
                RelationDraft(pre_task_code=r.pre_task_code, post_task_code=r.post_task_code)
                for r in self.relations
            ],
        )


class ExportDocument(BaseModel):
    """Top-level interchange document."""

    format_version: int = PydanticField(default=DOCUMENT_FORMAT_VERSION, alias="formatVersion")
    exported_at: str | None = PydanticField(default=None, alias="exportedAt")
    workflows: list[ExportedWorkflow]

    model_config = {"populate_by_name": True}
