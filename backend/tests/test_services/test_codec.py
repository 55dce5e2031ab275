"""Tests for the import/export document codec."""

import asyncio
import json

import pytest

from flowdef.errors import InvalidImportFormatError, NotFoundError
from flowdef.services import parse_document

SOURCE = 1
TARGET = 2


def named_edges(snapshot) -> set[tuple[str, str]]:
    names = {t.code: t.name for t in snapshot.tasks}
    names[0] = "start"
    return {(names[r.pre_task_code], names[r.post_task_code]) for r in snapshot.relations}


def document(*workflows, format_version=1) -> str:
    return json.dumps({"formatVersion": format_version, "workflows": list(workflows)})


def workflow(name="imported", tasks=None, relations=None) -> dict:
    return {
        "name": name,
        "tasks": tasks
        if tasks is not None
        else [
            {"code": 11, "name": "extract", "type": "SHELL", "parameters": {"rawScript": "x"}},
            {"code": 12, "name": "load", "type": "SQL", "parameters": {"datasource": 3}},
        ],
        "relations": relations
        if relations is not None
        else [
            {"preTaskCode": 0, "postTaskCode": 11},
            {"preTaskCode": 11, "postTaskCode": 12},
        ],
    }


class TestExport:
    """Tests for exporting definitions."""

    async def test_export_bytes(self, registry, codec, make_draft):
        code = (await registry.create(SOURCE, make_draft(name="etl"))).definition.code

        data = json.loads(await codec.export_bytes([code]))

        assert data["formatVersion"] == 1
        assert data["exportedAt"]
        [exported] = data["workflows"]
        assert exported["code"] == code
        assert exported["name"] == "etl"
        assert {t["name"] for t in exported["tasks"]} == {"A", "B", "C"}
        assert all(t["type"] == "SHELL" for t in exported["tasks"])
        assert len(exported["relations"]) == 3

    async def test_export_unknown_code(self, codec):
        with pytest.raises(NotFoundError):
            await codec.export_document([123])


class TestImport:
    """Tests for importing documents."""

    async def test_round_trip_into_other_project(self, registry, codec, make_draft):
        """Test that an exported definition imports as an isomorphic copy."""
        code = (await registry.create(SOURCE, make_draft(name="etl"))).definition.code
        data = await codec.export_bytes([code])

        [result] = await codec.import_document(TARGET, data)

        imported = await registry.query_by_code(result.definition.code)
        original = await registry.query_by_code(code)
        assert imported.code != code
        assert imported.definition.project_code == TARGET
        assert imported.definition.name == "etl"
        assert named_edges(imported) == named_edges(original)
        assert not {t.code for t in imported.tasks} & {t.code for t in original.tasks}
        params = {t.name: t.task_params for t in imported.tasks}
        assert params["A"] == {"rawScript": "echo A"}

    async def test_import_into_same_project_renames(self, registry, codec, make_draft):
        code = (await registry.create(SOURCE, make_draft(name="etl"))).definition.code
        data = await codec.export_bytes([code])

        first = await codec.import_document(SOURCE, data)
        second = await codec.import_document(SOURCE, data)

        assert first[0].definition.name == "etl_copy"
        assert second[0].definition.name == "etl_copy_2"

    async def test_import_document(self, registry, codec):
        [result] = await codec.import_document(TARGET, document(workflow()))

        snapshot = await registry.query_by_code(result.definition.code)
        assert named_edges(snapshot) == {("start", "extract"), ("extract", "load")}
        assert 11 not in result.code_map.values()

    async def test_tasks_without_codes(self, registry, codec):
        doc = document(
            workflow(
                tasks=[
                    {"code": 1, "name": "first", "type": "SHELL"},
                    {"name": "second", "type": "SHELL"},
                ],
                relations=[
                    {"preTaskCode": 0, "postTaskCode": 1},
                    {"preTaskCode": 1, "postTaskCode": 2},
                ],
            )
        )

        [result] = await codec.import_document(TARGET, doc)

        snapshot = await registry.query_by_code(result.definition.code)
        assert named_edges(snapshot) == {("start", "first"), ("first", "second")}

    async def test_malformed_json(self, registry, codec):
        with pytest.raises(InvalidImportFormatError):
            await codec.import_document(TARGET, b"{not json")

        assert await registry.list_simple(TARGET) == []

    async def test_missing_required_field(self, codec):
        bad = workflow()
        del bad["name"]

        with pytest.raises(InvalidImportFormatError) as exc_info:
            await codec.import_document(TARGET, document(bad))

        assert exc_info.value.location == "workflows.0.name"

    async def test_unsupported_format_version(self, codec):
        with pytest.raises(InvalidImportFormatError) as exc_info:
            await codec.import_document(TARGET, document(workflow(), format_version=99))

        assert exc_info.value.location == "formatVersion"

    async def test_dangling_relation(self, codec):
        bad = workflow(relations=[{"preTaskCode": 0, "postTaskCode": 11}, {"preTaskCode": 11, "postTaskCode": 99}])

        with pytest.raises(InvalidImportFormatError) as exc_info:
            await codec.import_document(TARGET, document(bad))

        assert exc_info.value.location == "workflows.0"

    async def test_non_numeric_sub_workflow_code(self, registry, codec):
        bad = workflow(
            tasks=[
                {"code": 11, "name": "call", "type": "SUB_WORKFLOW", "parameters": {"workflowDefinitionCode": "abc"}},
                {"code": 12, "name": "load", "type": "SQL", "parameters": {"datasource": 3}},
            ]
        )

        with pytest.raises(InvalidImportFormatError) as exc_info:
            await codec.import_document(TARGET, document(bad))

        assert exc_info.value.location == "workflows.0"
        assert await registry.list_simple(TARGET) == []

    async def test_cyclic_relations(self, codec):
        bad = workflow(
            relations=[
                {"preTaskCode": 0, "postTaskCode": 11},
                {"preTaskCode": 11, "postTaskCode": 12},
                {"preTaskCode": 12, "postTaskCode": 11},
            ]
        )

        with pytest.raises(InvalidImportFormatError):
            await codec.import_document(TARGET, document(bad))

    async def test_invalid_workflow_rejects_whole_document(self, registry, codec):
        """Test that nothing is created when any workflow is invalid."""
        bad = workflow(name="bad", relations=[])

        with pytest.raises(InvalidImportFormatError) as exc_info:
            await codec.import_document(TARGET, document(workflow(name="good"), bad))

        assert exc_info.value.location == "workflows.1"
        assert await registry.list_simple(TARGET) == []

    async def test_import_cancelled(self, registry, codec):
        cancel = asyncio.Event()
        cancel.set()

        results = await codec.import_document(TARGET, document(workflow()), cancel_event=cancel)

        assert results == []
        assert await registry.list_simple(TARGET) == []


class TestParseDocument:
    def test_returns_drafts(self):
        doc, drafts = parse_document(document(workflow(name="a"), workflow(name="b")))

        assert len(doc.workflows) == 2
        assert [d.name for d in drafts] == ["a", "b"]
        assert [t.code for t in drafts[0].tasks] == [11, 12]

    def test_not_an_object(self):
        with pytest.raises(InvalidImportFormatError):
            parse_document("[1, 2, 3]")
