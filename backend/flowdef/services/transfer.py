"""Copy and move of definitions across projects.

Both run every source through `DefinitionRegistry.create`, so the copy gets
a fresh workflow code, fresh task codes, rewritten relations and a
re-validated graph. Each item commits on its own; failures are collected
per code.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from flowdef.errors import DeleteBlockedError, WorkflowDefinitionError
from flowdef.models.results import BatchResult, DefinitionResult, ItemOutcome, OutcomeStatus
from flowdef.services.registry import DefinitionRegistry, snapshot_to_draft

logger = logging.getLogger(__name__)


class TransferService:
    """Batch copy / move into a target project."""

    def __init__(self, registry: DefinitionRegistry):
        self._registry = registry

    async def copy_one(self, code: int, target_project_code: int) -> DefinitionResult:
        """Copy the current version of `code` into the target project."""
        snapshot = await self._registry.query_by_code(code)
        draft = snapshot_to_draft(snapshot)
        draft.name = await self._registry.unique_name(target_project_code, draft.name)
        return await self._registry.create(target_project_code, draft)

    async def copy(
        self,
        codes: Iterable[int],
        target_project_code: int,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Copy each definition; never overwrites an existing name."""
        result = BatchResult()
        pending = list(dict.fromkeys(codes))
        for index, code in enumerate(pending):
            if _cancelled(cancel_event, result, pending[index:]):
                break
            try:
                copied = await self.copy_one(code, target_project_code)
                result.add(
                    ItemOutcome(
                        code=code,
                        status=OutcomeStatus.SUCCESS,
                        new_code=copied.definition.code,
                    )
                )
            except Exception as e:
                _log_failure("copy", code, e)
                result.add(ItemOutcome.failure(code, e))

        logger.info(
            f"Copied {len(result.succeeded)}/{len(pending)} workflow(s) "
            f"into project {target_project_code}"
        )
        return result

    async def move(
        self,
        codes: Iterable[int],
        target_project_code: int,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult:
        """Copy each definition, then delete the source once the copy is committed.

        If the source delete fails the copy stays in place and the item is
        reported as failed with `new_code` set.
        """
        result = BatchResult()
        pending = list(dict.fromkeys(codes))
        for index, code in enumerate(pending):
            if _cancelled(cancel_event, result, pending[index:]):
                break
            try:
                source = await self._registry.store.get_definition(code)
                if source is not None and source.project_code == target_project_code:
                    raise ValueError(f"Workflow {code} is already in project {target_project_code}")
                if source is not None and source.is_online:
                    raise DeleteBlockedError(
                        f"Workflow {code} is online and cannot be moved", code=code
                    )
                copied = await self.copy_one(code, target_project_code)
            except Exception as e:
                _log_failure("move", code, e)
                result.add(ItemOutcome.failure(code, e))
                continue

            new_code = copied.definition.code
            try:
                await self._registry.delete(code)
            except Exception as e:
                logger.warning(
                    f"Moved workflow {code} to {new_code} but could not delete the source: {e}"
                )
                result.add(ItemOutcome.failure(code, e, new_code=new_code))
                continue

            result.add(ItemOutcome(code=code, status=OutcomeStatus.SUCCESS, new_code=new_code))

        logger.info(
            f"Moved {len(result.succeeded)}/{len(pending)} workflow(s) "
            f"into project {target_project_code}"
        )
        return result


def _cancelled(
    cancel_event: asyncio.Event | None, result: BatchResult, remaining: list[int]
) -> bool:
    if cancel_event is None or not cancel_event.is_set():
        return False
    for code in remaining:
        result.add(ItemOutcome(code=code, status=OutcomeStatus.CANCELLED))
    logger.info(f"Transfer cancelled with {len(remaining)} item(s) pending")
    return True


def _log_failure(operation: str, code: int, error: Exception) -> None:
    if isinstance(error, (WorkflowDefinitionError, ValueError)):
        logger.warning(f"Failed to {operation} workflow {code}: {error}")
    else:
        logger.exception(f"Unexpected error during {operation} of workflow {code}")
