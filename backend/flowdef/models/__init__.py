"""Pydantic models for workflow definition management."""

from flowdef.models.document import (
    ExportDocument,
    ExportedRelation,
    ExportedTask,
    ExportedWorkflow,
)
from flowdef.models.results import (
    BatchResult,
    DefinitionResult,
    GraphCheckResult,
    GraphWarning,
    ItemOutcome,
    LineageEdge,
    OutcomeStatus,
    TaskVariables,
    TreeNode,
    TreeView,
    WorkflowVariables,
)
from flowdef.models.task import (
    SUB_WORKFLOW_TASK_TYPE,
    VIRTUAL_ROOT_CODE,
    RelationDraft,
    TaskDefinition,
    TaskDraft,
    TaskRelation,
)
from flowdef.models.version import VersionPage, VersionSummary, WorkflowSnapshot
from flowdef.models.workflow import (
    BasicInfoUpdate,
    DefinitionFilter,
    DefinitionPage,
    ExecutionType,
    Property,
    ReleaseState,
    WorkflowDefinition,
    WorkflowDraft,
    WorkflowSummary,
)

__all__ = [
    # Workflow Definition
    "WorkflowDefinition",
    "WorkflowDraft",
    "WorkflowSummary",
    "BasicInfoUpdate",
    "DefinitionFilter",
    "DefinitionPage",
    "ExecutionType",
    "ReleaseState",
    "Property",
    # Tasks & Relations
    "TaskDefinition",
    "TaskDraft",
    "TaskRelation",
    "RelationDraft",
    "SUB_WORKFLOW_TASK_TYPE",
    "VIRTUAL_ROOT_CODE",
    # Versions
    "WorkflowSnapshot",
    "VersionSummary",
    "VersionPage",
    # Results
    "DefinitionResult",
    "GraphCheckResult",
    "GraphWarning",
    "BatchResult",
    "ItemOutcome",
    "OutcomeStatus",
    "TreeNode",
    "TreeView",
    "TaskVariables",
    "WorkflowVariables",
    "LineageEdge",
    # Import / Export
    "ExportDocument",
    "ExportedWorkflow",
    "ExportedTask",
    "ExportedRelation",
]
