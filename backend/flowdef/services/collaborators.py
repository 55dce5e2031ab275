"""Interfaces of the external collaborators this subsystem notifies or consults."""

import logging
from abc import ABC, abstractmethod

from flowdef.models.workflow import WorkflowDefinition

logger = logging.getLogger(__name__)


class Scheduler(ABC):
    """Scheduling collaborator notified on status transitions."""

    @abstractmethod
    async def register(self, definition: WorkflowDefinition) -> None:
        """Register the active schedule of an online definition."""
        ...

    @abstractmethod
    async def deregister(self, code: int) -> None:
        """Remove the active schedule of a definition going offline."""
        ...


class ExecutionMonitor(ABC):
    """Execution engine view used to block deletion of running versions."""

    @abstractmethod
    async def running_versions(self, code: int) -> set[int]:
        """Versions of `code` referenced by a running execution."""
        ...


class NullScheduler(Scheduler):
    """Scheduler that only logs notifications."""

    async def register(self, definition: WorkflowDefinition) -> None:
        logger.debug(f"No scheduler configured; skip register of {definition.code}")

    async def deregister(self, code: int) -> None:
        logger.debug(f"No scheduler configured; skip deregister of {code}")


class NullExecutionMonitor(ExecutionMonitor):
    """Monitor reporting that nothing is running."""

    async def running_versions(self, code: int) -> set[int]:
        return set()
