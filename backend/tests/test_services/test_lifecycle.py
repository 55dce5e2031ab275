"""Tests for online/offline transitions."""

import pytest

from flowdef.errors import CyclicGraphError, NotFoundError, SubWorkflowNotOnlineError
from flowdef.models import ReleaseState, WorkflowDefinition
from flowdef.services import LifecycleManager, Scheduler
from flowdef.services.registry import snapshot_to_draft

PROJECT = 1


class FailingScheduler(Scheduler):
    """Scheduler that rejects every registration."""

    async def register(self, definition: WorkflowDefinition) -> None:
        raise RuntimeError("scheduler unavailable")

    async def deregister(self, code: int) -> None:
        pass


class StickyScheduler(Scheduler):
    """Scheduler that accepts registrations but cannot remove them."""

    def __init__(self):
        self.registered: list[int] = []

    async def register(self, definition: WorkflowDefinition) -> None:
        self.registered.append(definition.code)

    async def deregister(self, code: int) -> None:
        raise RuntimeError("scheduler unavailable")


@pytest.fixture
def make_parent(make_draft):
    """Draft whose task B invokes another workflow."""

    def _make(sub_code: int, name: str = "parent"):
        return make_draft(
            name=name,
            task_types={"B": "SUB_WORKFLOW"},
            task_params={"B": {"workflowDefinitionCode": sub_code}},
        )

    return _make


class TestGoOnline:
    """Tests for publishing definitions."""

    async def test_go_online(self, registry, lifecycle, scheduler, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code

        definition = await lifecycle.go_online(code)

        assert definition.release_state == ReleaseState.ONLINE
        assert definition.published_version == 1
        assert scheduler.registered == [code]

    async def test_go_online_is_idempotent(self, registry, lifecycle, scheduler, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code
        await lifecycle.go_online(code)

        definition = await lifecycle.go_online(code)

        assert definition.is_online
        assert scheduler.registered == [code]

    async def test_republish_after_edit(self, registry, lifecycle, scheduler, make_draft):
        """Test that an edited online definition publishes its new version."""
        code = (await registry.create(PROJECT, make_draft())).definition.code
        await lifecycle.go_online(code)
        await registry.update(code, make_draft(description="edited"))

        definition = await lifecycle.go_online(code)

        assert definition.published_version == 2
        assert scheduler.registered == [code, code]

    async def test_unknown_code(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.go_online(8080)

    async def test_scheduler_failure_reverts_state(self, registry, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code
        lifecycle = LifecycleManager(FailingScheduler())

        with pytest.raises(RuntimeError):
            await lifecycle.go_online(code)

        definition = await registry.store.get_definition(code)
        assert definition.release_state == ReleaseState.OFFLINE
        assert definition.published_version is None


class TestSubWorkflows:
    """Tests for sub-workflow activation rules."""

    async def test_offline_sub_workflow_blocks(self, registry, lifecycle, scheduler, make_draft, make_parent):
        child = (await registry.create(PROJECT, make_draft(name="child"))).definition.code
        parent = (await registry.create(PROJECT, make_parent(child))).definition.code

        with pytest.raises(SubWorkflowNotOnlineError) as exc_info:
            await lifecycle.go_online(parent)

        assert exc_info.value.sub_workflow_code == child
        definition = await registry.store.get_definition(parent)
        assert definition.release_state == ReleaseState.OFFLINE
        assert scheduler.registered == []

    async def test_online_sub_workflow(self, registry, lifecycle, make_draft, make_parent):
        child = (await registry.create(PROJECT, make_draft(name="child"))).definition.code
        parent = (await registry.create(PROJECT, make_parent(child))).definition.code
        await lifecycle.go_online(child)

        definition = await lifecycle.go_online(parent)

        assert definition.is_online

    async def test_missing_sub_workflow(self, registry, lifecycle, make_parent):
        parent = (await registry.create(PROJECT, make_parent(999999))).definition.code

        with pytest.raises(SubWorkflowNotOnlineError) as exc_info:
            await lifecycle.go_online(parent)

        assert exc_info.value.sub_workflow_code == 999999

    async def test_transitive_sub_workflow_checked(self, registry, lifecycle, make_draft, make_parent):
        """Test that a sub-workflow's own sub-workflows must be online too."""
        leaf = (await registry.create(PROJECT, make_draft(name="leaf"))).definition.code
        middle = (await registry.create(PROJECT, make_parent(leaf, name="middle"))).definition.code
        top = (await registry.create(PROJECT, make_parent(middle, name="top"))).definition.code
        await lifecycle.go_online(leaf)
        await lifecycle.go_online(middle)
        await lifecycle.go_offline(leaf)

        with pytest.raises(SubWorkflowNotOnlineError) as exc_info:
            await lifecycle.go_online(top)

        assert exc_info.value.sub_workflow_code == leaf

    async def test_self_reference_is_a_cycle(self, registry, lifecycle, make_parent):
        code = (await registry.create(PROJECT, make_parent(1))).definition.code
        await registry.update(code, make_parent(code))

        with pytest.raises(CyclicGraphError) as exc_info:
            await lifecycle.go_online(code)

        assert exc_info.value.task_code == code

    async def test_mutual_reference_is_a_cycle(self, registry, lifecycle, make_draft, make_parent):
        first = (await registry.create(PROJECT, make_draft(name="first"))).definition.code
        await lifecycle.go_online(first)
        second = (await registry.create(PROJECT, make_parent(first, name="second"))).definition.code
        await lifecycle.go_online(second)

        draft = snapshot_to_draft(await registry.query_by_code(first))
        draft.tasks[0].task_type = "SUB_WORKFLOW"
        draft.tasks[0].task_params = {"workflowDefinitionCode": second}
        await registry.update(first, draft)

        with pytest.raises(CyclicGraphError):
            await lifecycle.go_online(first)


class TestGoOffline:
    """Tests for taking definitions offline."""

    async def test_go_offline(self, registry, lifecycle, scheduler, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code
        await lifecycle.go_online(code)

        definition = await lifecycle.go_offline(code)

        assert definition.release_state == ReleaseState.OFFLINE
        assert definition.published_version is None
        assert scheduler.deregistered == [code]

    async def test_go_offline_is_idempotent(self, registry, lifecycle, scheduler, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code

        definition = await lifecycle.go_offline(code)

        assert definition.release_state == ReleaseState.OFFLINE
        assert scheduler.deregistered == []

    async def test_scheduler_failure_keeps_online(self, registry, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code
        lifecycle = LifecycleManager(StickyScheduler())
        await lifecycle.go_online(code)

        with pytest.raises(RuntimeError):
            await lifecycle.go_offline(code)

        definition = await registry.store.get_definition(code)
        assert definition.release_state == ReleaseState.ONLINE
        assert definition.published_version == 1

    async def test_offline_then_online_again(self, registry, lifecycle, scheduler, make_draft):
        code = (await registry.create(PROJECT, make_draft())).definition.code
        await lifecycle.go_online(code)
        await lifecycle.go_offline(code)

        definition = await lifecycle.go_online(code)

        assert definition.is_online
        assert scheduler.registered == [code, code]
