"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import Callable

import pytest

from flowdef.config import Settings
from flowdef.db.database import close_database, init_database
from flowdef.models import RelationDraft, TaskDraft, WorkflowDefinition, WorkflowDraft
from flowdef.services import (
    CodeAllocator,
    DefinitionCodec,
    DefinitionRegistry,
    ExecutionMonitor,
    LifecycleManager,
    Scheduler,
    SequentialCodeGenerator,
    TransferService,
)


class RecordingScheduler(Scheduler):
    """Scheduler that records notifications."""

    def __init__(self) -> None:
        self.registered: list[int] = []
        self.deregistered: list[int] = []

    async def register(self, definition: WorkflowDefinition) -> None:
        self.registered.append(definition.code)

    async def deregister(self, code: int) -> None:
        self.deregistered.append(code)


class FakeExecutionMonitor(ExecutionMonitor):
    """Monitor with a settable set of running versions per code."""

    def __init__(self) -> None:
        self.running: dict[int, set[int]] = {}

    async def running_versions(self, code: int) -> set[int]:
        return set(self.running.get(code, set()))


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    # Initialize the database
    await init_database(db_path)

    yield

    # Clean up
    await close_database()
    os.unlink(db_path)


@pytest.fixture
def settings() -> Settings:
    return Settings(database_path=":memory:", tree_view_limit=50)


@pytest.fixture
def allocator() -> CodeAllocator:
    return CodeAllocator(SequentialCodeGenerator(start=1000))


@pytest.fixture
def execution_monitor() -> FakeExecutionMonitor:
    return FakeExecutionMonitor()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def registry(allocator, execution_monitor, settings) -> DefinitionRegistry:
    return DefinitionRegistry(
        allocator, execution_monitor=execution_monitor, settings=settings
    )


@pytest.fixture
def lifecycle(scheduler) -> LifecycleManager:
    return LifecycleManager(scheduler)


@pytest.fixture
def transfer(registry) -> TransferService:
    return TransferService(registry)


@pytest.fixture
def codec(registry) -> DefinitionCodec:
    return DefinitionCodec(registry)


@pytest.fixture
def make_draft() -> Callable[..., WorkflowDraft]:
    """Build a draft from task names and (pre, post) name edges.

    Tasks get draft keys 1..n in order; "start" as pre-task means the
    virtual root.
    """

    def _make(
        name: str = "etl",
        tasks: list[str] | None = None,
        edges: list[tuple[str, str]] | None = None,
        task_types: dict[str, str] | None = None,
        task_params: dict[str, dict] | None = None,
        **kwargs,
    ) -> WorkflowDraft:
        tasks = tasks if tasks is not None else ["A", "B", "C"]
        edges = edges if edges is not None else [("start", "A"), ("A", "B"), ("A", "C")]
        keys = {task: index + 1 for index, task in enumerate(tasks)}
        keys["start"] = 0
        return WorkflowDraft(
            name=name,
            tasks=[
                TaskDraft(
                    code=keys[task],
                    name=task,
                    task_type=(task_types or {}).get(task, "SHELL"),
                    task_params=(task_params or {}).get(task, {"rawScript": f"echo {task}"}),
                )
                for task in tasks
            ],
            relations=[
                RelationDraft(pre_task_code=keys[pre], post_task_code=keys[post])
                for pre, post in edges
            ],
            **kwargs,
        )

    return _make
