"""Import/export codec for the portable definition document.

Export writes metadata, tasks, relations and layout of current versions; no
execution state. Import validates the whole document first, then creates
every workflow as new, so importing twice never touches earlier imports.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable

from pydantic import ValidationError

from flowdef.db.definition_store import now
from flowdef.errors import GraphValidationError, InvalidImportFormatError
from flowdef.models.document import (
    DOCUMENT_FORMAT_VERSION,
    ExportDocument,
    ExportedRelation,
    ExportedTask,
    ExportedWorkflow,
)
from flowdef.models.results import DefinitionResult
from flowdef.models.version import WorkflowSnapshot
from flowdef.models.workflow import WorkflowDraft
from flowdef.services.dag import build_draft_graph
from flowdef.services.registry import DefinitionRegistry

logger = logging.getLogger(__name__)


def snapshot_to_exported(snapshot: WorkflowSnapshot) -> ExportedWorkflow:
    """Convert a stored snapshot into its document form."""
    definition = snapshot.definition
    return ExportedWorkflow(
        code=definition.code,
        name=definition.name,
        description=definition.description,
        global_params=definition.global_params,
        timeout=definition.timeout,
        execution_type=definition.execution_type,
        locations=definition.locations,
        tasks=[
            ExportedTask(
                code=task.code,
                name=task.name,
                description=task.description,
                type=task.task_type,
                parameters=task.task_params,
                timeout=task.timeout,
                fail_retry_times=task.fail_retry_times,
                fail_retry_interval=task.fail_retry_interval,
            )
            for task in snapshot.tasks
        ],
        relations=[
            ExportedRelation(pre_task_code=r.pre_task_code, post_task_code=r.post_task_code)
            for r in snapshot.relations
        ],
    )


def parse_document(data: bytes | str) -> tuple[ExportDocument, list[WorkflowDraft]]:
    """Parse and structurally validate a document.

    Raises:
        InvalidImportFormatError: identifying the first problem found.
    """
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidImportFormatError(f"Document is not valid JSON: {e}") from e

    try:
        document = ExportDocument.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or None
        raise InvalidImportFormatError(first["msg"], location=location) from e

    if document.format_version > DOCUMENT_FORMAT_VERSION:
        raise InvalidImportFormatError(
            f"Unsupported format version {document.format_version}", location="formatVersion"
        )

    drafts = []
    for index, workflow in enumerate(document.workflows):
        location = f"workflows.{index}"
        try:
            draft = workflow.to_draft()
            build_draft_graph(draft)
        except ValidationError as e:
            first = e.errors()[0]
            raise InvalidImportFormatError(first["msg"], location=location) from e
        except GraphValidationError as e:
            raise InvalidImportFormatError(str(e), location=location) from e
        drafts.append(draft)
    return document, drafts


class DefinitionCodec:
    """Export to and import from the portable document."""

    def __init__(self, registry: DefinitionRegistry):
        self._registry = registry

    async def export_document(self, codes: Iterable[int]) -> ExportDocument:
        """Export the current versions of `codes`.

        Raises:
            NotFoundError: a code does not exist.
        """
        workflows = []
        for code in dict.fromkeys(codes):
            snapshot = await self._registry.query_by_code(code)
            workflows.append(snapshot_to_exported(snapshot))
        return ExportDocument(exported_at=now(), workflows=workflows)

    async def export_bytes(self, codes: Iterable[int]) -> bytes:
        """Export as UTF-8 JSON for the file transport."""
        document = await self.export_document(codes)
        return document.model_dump_json(by_alias=True, indent=2).encode("utf-8")

    async def import_document(
        self,
        project_code: int,
        data: bytes | str,
        cancel_event: asyncio.Event | None = None,
    ) -> list[DefinitionResult]:
        """Create every workflow in the document as a new definition.

        Names colliding in the target project are de-duplicated. On
        cancellation the workflows already created are kept and returned.
        """
        _, drafts = parse_document(data)

        results = []
        for index, draft in enumerate(drafts):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Import cancelled after {index} of {len(drafts)} workflow(s)"
                )
                break
            draft.name = await self._registry.unique_name(project_code, draft.name)
            results.append(await self._registry.create(project_code, draft))

        logger.info(f"Imported {len(results)} workflow(s) into project {project_code}")
        return results
