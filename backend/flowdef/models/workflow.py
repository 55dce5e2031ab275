"""Pydantic models for WorkflowDefinition and its drafts."""

from enum import Enum

from pydantic import BaseModel
from pydantic import Field as PydanticField

from flowdef.models.task import RelationDraft, TaskDraft


class ExecutionType(str, Enum):
    """How concurrent runs of one definition are handled."""

    PARALLEL = "PARALLEL"
    SERIAL_WAIT = "SERIAL_WAIT"
    SERIAL_DISCARD = "SERIAL_DISCARD"
    SERIAL_PRIORITY = "SERIAL_PRIORITY"


class ReleaseState(str, Enum):
    """Activation status of a definition."""

    OFFLINE = "OFFLINE"  # Draft
    ONLINE = "ONLINE"


class Property(BaseModel):
    """An ordered key/value parameter."""

    prop: str
    value: str = ""


class WorkflowDraft(BaseModel):
    """Full structural input for create and update."""

    name: str = PydanticField(min_length=1)
    description: str = ""
    global_params: list[Property] = PydanticField(default_factory=list, alias="globalParams")
    timeout: int = PydanticField(default=0, ge=0)
    execution_type: ExecutionType = PydanticField(
        default=ExecutionType.PARALLEL, alias="executionType"
    )
    locations: str | None = None
    tasks: list[TaskDraft] = []
    relations: list[RelationDraft] = []
    # Tasks allowed to sit outside the graph without a warning
    standalone_task_codes: list[int] = PydanticField(
        default_factory=list, alias="standaloneTaskCodes"
    )
    user_id: int | None = PydanticField(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class BasicInfoUpdate(BaseModel):
    """Metadata-only edit; the graph of the current version is reused."""

    name: str | None = None
    description: str | None = None
    global_params: list[Property] | None = PydanticField(default=None, alias="globalParams")
    timeout: int | None = PydanticField(default=None, ge=0)
    execution_type: ExecutionType | None = PydanticField(default=None, alias="executionType")
    user_id: int | None = PydanticField(default=None, alias="userId")

    model_config = {"populate_by_name": True}


class WorkflowDefinition(BaseModel):
    """The current (or a historical) state of a workflow definition."""

    code: int
    version: int
    project_code: int = PydanticField(alias="projectCode")
    name: str
    description: str = ""
    global_params: list[Property] = PydanticField(default_factory=list, alias="globalParams")
    timeout: int = 0
    execution_type: ExecutionType = PydanticField(
        default=ExecutionType.PARALLEL, alias="executionType"
    )
    locations: str | None = None
    release_state: ReleaseState = PydanticField(
        default=ReleaseState.OFFLINE, alias="releaseState"
    )
    # Version registered with the scheduler by the last goOnline
    published_version: int | None = PydanticField(default=None, alias="publishedVersion")
    user_id: int | None = PydanticField(default=None, alias="userId")
    created_at: str = PydanticField(alias="createdAt")
    updated_at: str = PydanticField(alias="updatedAt")

    model_config = {"populate_by_name": True}

    @property
    def is_online(self) -> bool:
        return self.release_state == ReleaseState.ONLINE


class WorkflowSummary(BaseModel):
    """Code/name listing entry."""

    code: int
    name: str
    project_code: int = PydanticField(alias="projectCode")

    model_config = {"populate_by_name": True}


class DefinitionFilter(BaseModel):
    """Filters for paged listing."""

    project_code: int = PydanticField(alias="projectCode")
    search_val: str | None = PydanticField(default=None, alias="searchVal")
    user_id: int | None = PydanticField(default=None, alias="userId")
    page_no: int = PydanticField(default=1, ge=1, alias="pageNo")
    page_size: int = PydanticField(default=10, ge=1, le=1000, alias="pageSize")

    model_config = {"populate_by_name": True}


class DefinitionPage(BaseModel):
    """One page of definitions."""

    items: list[WorkflowDefinition]
    total: int
    page_no: int = PydanticField(alias="pageNo")
    page_size: int = PydanticField(alias="pageSize")

    model_config = {"populate_by_name": True}
