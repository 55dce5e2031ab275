"""Pydantic models for immutable version snapshots."""

from pydantic import BaseModel
from pydantic import Field as PydanticField

from flowdef.models.task import TaskDefinition, TaskRelation
from flowdef.models.workflow import WorkflowDefinition


class WorkflowSnapshot(BaseModel):
    """Metadata, task set and relations of one `(code, version)`."""

    definition: WorkflowDefinition
    tasks: list[TaskDefinition] = []
    relations: list[TaskRelation] = []

    @property
    def code(self) -> int:
        return self.definition.code

    @property
    def version(self) -> int:
        return self.definition.version

    def task_by_code(self) -> dict[int, TaskDefinition]:
        return {t.code: t for t in self.tasks}


class VersionSummary(BaseModel):
    """A row in the version history listing."""

    code: int
    version: int
    name: str
    description: str = ""
    user_id: int | None = PydanticField(default=None, alias="userId")
    is_active: bool = PydanticField(default=False, alias="isActive")
    created_at: str = PydanticField(alias="createdAt")

    model_config = {"populate_by_name": True}


class VersionPage(BaseModel):
    """One page of version history, newest first."""

    items: list[VersionSummary]
    total: int
    page_no: int = PydanticField(alias="pageNo")
    page_size: int = PydanticField(alias="pageSize")

    model_config = {"populate_by_name": True}
