"""Tests for definition models."""

import pytest
from pydantic import ValidationError

from flowdef.errors import InvalidImportFormatError
from flowdef.models import (
    BatchResult,
    DefinitionFilter,
    ExecutionType,
    ExportedWorkflow,
    ItemOutcome,
    OutcomeStatus,
    RelationDraft,
    TaskDefinition,
    TaskDraft,
    WorkflowDraft,
)


class TestDraftModels:
    """Tests for caller-facing draft models."""

    def test_aliases(self):
        """Test that drafts accept the camelCase wire names."""
        draft = WorkflowDraft.model_validate(
            {
                "name": "wf",
                "executionType": "SERIAL_WAIT",
                "globalParams": [{"prop": "dt", "value": "1"}],
                "tasks": [{"code": 1, "name": "a", "taskType": "SHELL", "failRetryTimes": 2}],
                "relations": [{"preTaskCode": 0, "postTaskCode": 1}],
            }
        )

        assert draft.execution_type == ExecutionType.SERIAL_WAIT
        assert draft.tasks[0].fail_retry_times == 2
        assert draft.relations[0].post_task_code == 1

    def test_defaults(self):
        draft = WorkflowDraft(name="wf")

        assert draft.execution_type == ExecutionType.PARALLEL
        assert draft.timeout == 0
        assert draft.tasks == []

    def test_relation_defaults_to_virtual_root(self):
        assert RelationDraft(post_task_code=5).pre_task_code == 0

    def test_rejects_invalid_values(self):
        with pytest.raises(ValidationError):
            TaskDraft(code=0, name="a", task_type="SHELL")
        with pytest.raises(ValidationError):
            WorkflowDraft(name="")
        with pytest.raises(ValidationError):
            RelationDraft(pre_task_code=-1, post_task_code=1)
        with pytest.raises(ValidationError):
            DefinitionFilter(project_code=1, page_size=0)

    def test_sub_workflow_code_must_be_positive_integer(self):
        for value in ("abc", "", 0, -3, True, 1.5):
            with pytest.raises(ValidationError):
                TaskDraft(
                    code=1,
                    name="call",
                    task_type="SUB_WORKFLOW",
                    task_params={"workflowDefinitionCode": value},
                )

    def test_sub_workflow_code_only_checked_on_sub_workflow_tasks(self):
        draft = TaskDraft(
            code=1, name="sh", task_type="SHELL", task_params={"workflowDefinitionCode": "abc"}
        )

        assert draft.task_params["workflowDefinitionCode"] == "abc"


class TestTaskDefinition:
    """Tests for task definition helpers."""

    def test_sub_workflow_code(self):
        task = TaskDefinition(
            code=1,
            project_code=1,
            name="call",
            task_type="SUB_WORKFLOW",
            task_params={"workflowDefinitionCode": "77"},
        )

        assert task.is_sub_workflow
        assert task.sub_workflow_code == 77

    def test_plain_task_has_no_sub_workflow(self):
        task = TaskDefinition(
            code=1,
            project_code=1,
            name="sh",
            task_type="SHELL",
            task_params={"workflowDefinitionCode": 77},
        )

        assert task.sub_workflow_code is None

    def test_content_key_ignores_version(self):
        task = TaskDefinition(code=1, project_code=1, name="sh", task_type="SHELL")

        assert task.content_key() == task.model_copy(update={"version": 4}).content_key()
        assert task.content_key() == task.to_draft().content_key()


class TestExportedWorkflow:
    def test_to_draft_assigns_missing_keys(self):
        workflow = ExportedWorkflow.model_validate(
            {
                "name": "wf",
                "tasks": [
                    {"code": 5, "name": "a", "type": "SHELL"},
                    {"name": "b", "type": "SHELL"},
                    {"name": "c", "type": "SHELL"},
                ],
                "relations": [{"preTaskCode": 0, "postTaskCode": 5}],
            }
        )

        draft = workflow.to_draft()

        assert [t.code for t in draft.tasks] == [5, 6, 7]
        assert draft.tasks[0].task_type == "SHELL"


class TestBatchResult:
    def test_partitions_outcomes(self):
        result = BatchResult()
        result.add(ItemOutcome(code=1, status=OutcomeStatus.SUCCESS, new_code=10))
        result.add(ItemOutcome.failure(2, InvalidImportFormatError("bad", location="x")))
        result.add(ItemOutcome(code=3, status=OutcomeStatus.SKIPPED))

        assert result.succeeded == [1]
        assert result.failed == [2]
        assert result.outcomes[2].error_type == "InvalidImportFormatError"
        assert result.outcomes[2].message == "x: bad"
