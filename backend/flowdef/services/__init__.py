"""Services for workflow definition management."""

from flowdef.services.code_allocator import (
    CodeAllocator,
    CodeGenerator,
    SequentialCodeGenerator,
    SnowflakeCodeGenerator,
)
from flowdef.services.codec import DefinitionCodec, parse_document
from flowdef.services.collaborators import (
    ExecutionMonitor,
    NullExecutionMonitor,
    NullScheduler,
    Scheduler,
)
from flowdef.services.dag import TaskGraph, build_draft_graph, build_graph
from flowdef.services.lifecycle import LifecycleManager
from flowdef.services.lineage import LineageRecorder, extract_resources
from flowdef.services.registry import DefinitionRegistry
from flowdef.services.transfer import TransferService

__all__ = [
    "CodeAllocator",
    "CodeGenerator",
    "SequentialCodeGenerator",
    "SnowflakeCodeGenerator",
    "DefinitionCodec",
    "parse_document",
    "ExecutionMonitor",
    "NullExecutionMonitor",
    "NullScheduler",
    "Scheduler",
    "TaskGraph",
    "build_graph",
    "build_draft_graph",
    "LifecycleManager",
    "LineageRecorder",
    "extract_resources",
    "DefinitionRegistry",
    "TransferService",
]
