"""Typed results returned by registry, transfer and codec operations."""

from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from flowdef.models.task import TaskDefinition
from flowdef.models.workflow import Property, WorkflowDefinition


class GraphWarning(BaseModel):
    """A non-fatal graph finding (e.g. an orphan task)."""

    task_code: int = PydanticField(alias="taskCode")
    message: str

    model_config = {"populate_by_name": True}


class GraphCheckResult(BaseModel):
    """Outcome of validating a draft graph without persisting it."""

    valid: bool = True
    warnings: list[GraphWarning] = []


class DefinitionResult(BaseModel):
    """Result of create / update / copy / import of one definition."""

    definition: WorkflowDefinition
    tasks: list[TaskDefinition] = []
    warnings: list[GraphWarning] = []
    # Draft task key -> assigned task code
    code_map: dict[int, int] = PydanticField(default_factory=dict, alias="codeMap")

    model_config = {"populate_by_name": True}


class OutcomeStatus(str, Enum):
    """Per-item status in a batch operation."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ItemOutcome(BaseModel):
    """Outcome for one code in a batch."""

    code: int
    status: OutcomeStatus
    new_code: int | None = PydanticField(default=None, alias="newCode")
    error_type: str | None = PydanticField(default=None, alias="errorType")
    message: str | None = None

    model_config = {"populate_by_name": True}

    @classmethod
    def failure(cls, code: int, exc: Exception, new_code: int | None = None) -> "ItemOutcome":
        return cls(
            code=code,
            status=OutcomeStatus.FAILED,
            new_code=new_code,
            error_type=type(exc).__name__,
            message=str(exc),
        )


class BatchResult(BaseModel):
    """Per-item outcome map for batch delete / copy / move."""

    outcomes: dict[int, ItemOutcome] = {}

    def add(self, outcome: ItemOutcome) -> None:
        self.outcomes[outcome.code] = outcome

    @property
    def succeeded(self) -> list[int]:
        return [c for c, o in self.outcomes.items() if o.status == OutcomeStatus.SUCCESS]

    @property
    def failed(self) -> list[int]:
        return [c for c, o in self.outcomes.items() if o.status == OutcomeStatus.FAILED]


class TreeNode(BaseModel):
    """A task positioned in the layered tree view."""

    code: int
    name: str
    task_type: str = PydanticField(alias="taskType")
    depth: int
    children: list[int] = []

    model_config = {"populate_by_name": True}


class TreeView(BaseModel):
    """Breadth-first layering of a workflow graph from its roots."""

    workflow_code: int | None = PydanticField(default=None, alias="workflowCode")
    limit: int
    layers: list[list[TreeNode]] = []

    model_config = {"populate_by_name": True}

    @property
    def task_codes(self) -> set[int]:
        return {node.code for layer in self.layers for node in layer}


class TaskVariables(BaseModel):
    """Local parameters declared by one task."""

    task_code: int = PydanticField(alias="taskCode")
    task_name: str = PydanticField(alias="taskName")
    local_params: list[dict[str, Any]] = PydanticField(default_factory=list, alias="localParams")

    model_config = {"populate_by_name": True}


class WorkflowVariables(BaseModel):
    """Global parameters plus per-task local parameters."""

    code: int
    global_params: list[Property] = PydanticField(default_factory=list, alias="globalParams")
    local_params: list[TaskVariables] = PydanticField(default_factory=list, alias="localParams")

    model_config = {"populate_by_name": True}


class LineageEdge(BaseModel):
    """Task-to-resource data-flow edge."""

    workflow_code: int = PydanticField(alias="workflowCode")
    workflow_version: int = PydanticField(alias="workflowVersion")
    task_code: int = PydanticField(alias="taskCode")
    resource: str

    model_config = {"populate_by_name": True}
