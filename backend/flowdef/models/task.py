"""Pydantic models for task definitions and task relations."""

from typing import Any

from pydantic import BaseModel, model_validator
from pydantic import Field as PydanticField

# Task type whose parameters point at another workflow definition
SUB_WORKFLOW_TASK_TYPE = "SUB_WORKFLOW"

# Pre-task code of the virtual start node
VIRTUAL_ROOT_CODE = 0


def parse_sub_workflow_code(task_type: str, task_params: dict[str, Any]) -> int | None:
    """Read the workflow code a sub-workflow task invokes.

    Raises:
        ValueError: `workflowDefinitionCode` is not a positive integer.
    """
    if task_type.upper() != SUB_WORKFLOW_TASK_TYPE:
        return None
    value = task_params.get("workflowDefinitionCode")
    if value is None:
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(
            f"workflowDefinitionCode must be a positive integer, got {value!r}"
        )
    return value


class TaskDraft(BaseModel):
    """A task as submitted by a caller.

    `code` is a draft-local key: relations in the same draft refer to it, and
    the registry decides whether it is kept or replaced by a fresh code.
    """

    code: int = PydanticField(gt=0)
    name: str = PydanticField(min_length=1)
    description: str = ""
    task_type: str = PydanticField(alias="taskType", min_length=1)
    task_params: dict[str, Any] = PydanticField(default_factory=dict, alias="taskParams")
    timeout: int = PydanticField(default=0, ge=0)
    fail_retry_times: int = PydanticField(default=0, ge=0, alias="failRetryTimes")
    fail_retry_interval: int = PydanticField(default=1, ge=0, alias="failRetryInterval")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_sub_workflow_code(self) -> "TaskDraft":
        parse_sub_workflow_code(self.task_type, self.task_params)
        return self

    def content_key(self) -> tuple[Any, ...]:
        """Fields whose change produces a new task version."""
        return (
            self.name,
            self.description,
            self.task_type,
            self.task_params,
            self.timeout,
            self.fail_retry_times,
            self.fail_retry_interval,
        )


class TaskDefinition(BaseModel):
    """A versioned task definition owned by a project."""

    code: int
    version: int = 1
    project_code: int = PydanticField(alias="projectCode")
    name: str
    description: str = ""
    task_type: str = PydanticField(alias="taskType")
    task_params: dict[str, Any] = PydanticField(default_factory=dict, alias="taskParams")
    timeout: int = 0
    fail_retry_times: int = PydanticField(default=0, alias="failRetryTimes")
    fail_retry_interval: int = PydanticField(default=1, alias="failRetryInterval")
    created_at: str | None = PydanticField(default=None, alias="createdAt")
    updated_at: str | None = PydanticField(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def check_sub_workflow_code(self) -> "TaskDefinition":
        parse_sub_workflow_code(self.task_type, self.task_params)
        return self

    @property
    def is_sub_workflow(self) -> bool:
        return self.task_type.upper() == SUB_WORKFLOW_TASK_TYPE

    @property
    def sub_workflow_code(self) -> int | None:
        """Code of the workflow invoked by a sub-workflow task."""
        return parse_sub_workflow_code(self.task_type, self.task_params)

    def content_key(self) -> tuple[Any, ...]:
        return (
            self.name,
            self.description,
            self.task_type,
            self.task_params,
            self.timeout,
            self.fail_retry_times,
            self.fail_retry_interval,
        )

    def to_draft(self) -> TaskDraft:
        """Convert back into a draft keyed by this task's code."""
        return TaskDraft(
            code=self.code,
            name=self.name,
            description=self.description,
            task_type=self.task_type,
            task_params=self.task_params,
            timeout=self.timeout,
            fail_retry_times=self.fail_retry_times,
            fail_retry_interval=self.fail_retry_interval,
        )


class RelationDraft(BaseModel):
    """A directed edge between draft task keys (0 = virtual start)."""

    pre_task_code: int = PydanticField(default=VIRTUAL_ROOT_CODE, ge=0, alias="preTaskCode")
    post_task_code: int = PydanticField(gt=0, alias="postTaskCode")

    model_config = {"populate_by_name": True}


class TaskRelation(BaseModel):
    """A directed edge scoped to one workflow version."""

    pre_task_code: int = PydanticField(alias="preTaskCode")
    pre_task_version: int = PydanticField(default=0, alias="preTaskVersion")
    post_task_code: int = PydanticField(alias="postTaskCode")
    post_task_version: int = PydanticField(default=0, alias="postTaskVersion")

    model_config = {"populate_by_name": True}

    def to_draft(self) -> RelationDraft:
        return RelationDraft(
            pre_task_code=self.pre_task_code, post_task_code=self.post_task_code
        )
