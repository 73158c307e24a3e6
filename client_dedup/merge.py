"""
Safe pairwise client merge.

Within one unit of work: reassign every policy, appointment and claim from
the secondary client to the primary, apply the planned field values to the
primary, then retire the secondary. Atomic sinks roll back natively; for
non-atomic sinks every applied step is undone in reverse order. A failure
that cannot be undone is reported as ``partial`` and must be treated as
fatal.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable, Dict, List, Sequence

from client_dedup.errors import MergeError, PreconditionError
from client_dedup.models import RELATIONSHIP_CATEGORIES, ClientRecord, FieldDecision, MergeResult
from client_dedup.planner import merged_values
from client_dedup.store import MutationSink, UnitOfWork

log = logging.getLogger(__name__)


def check_preconditions(
    primary: ClientRecord,
    secondary: ClientRecord,
    decisions: Sequence[FieldDecision],
) -> None:
    """Reject logic errors before any I/O."""
    _check_participants(primary, secondary)
    merged_values(decisions)


def _check_participants(primary: ClientRecord, secondary: ClientRecord) -> None:
    if primary.client_id == secondary.client_id:
        raise PreconditionError(f"Cannot merge client {primary.client_id} with itself")
    if primary.retired:
        raise PreconditionError(f"Primary client {primary.client_id} was already merged into {primary.merged_into}")


class SafeMergeExecutor:
    def __init__(self, sink: MutationSink) -> None:
        self._sink = sink

    async def merge(
        self,
        primary: ClientRecord,
        secondary: ClientRecord,
        decisions: Sequence[FieldDecision],
    ) -> MergeResult:
        _check_participants(primary, secondary)
        if secondary.retired:
            log.warning("Client %s already retired; merge is a no-op.", secondary.client_id)
            return MergeResult(success=True, already_merged=True)
        values = merged_values(decisions)
        return await asyncio.to_thread(self._merge, primary.client_id, secondary.client_id, values)

    def _merge(self, primary_id: str, secondary_id: str, values: Dict[str, object]) -> MergeResult:
        log.info("Merging client %s into %s (%d field updates)…", secondary_id, primary_id, len(values))
        moved: Dict[str, int] = {}
        try:
            with self._sink.unit_of_work() as uow:
                undo: List[Callable[[], object]] = []
                try:
                    if uow.merged_into(secondary_id) is not None:
                        log.warning("Client %s already retired; merge is a no-op.", secondary_id)
                        return MergeResult(success=True, already_merged=True)
                    if uow.merged_into(primary_id) is not None:
                        raise MergeError(f"Primary client {primary_id} is retired")
                    self._apply(uow, primary_id, secondary_id, values, moved, undo)
                except Exception:
                    if not self._sink.atomic:
                        self._compensate(undo)
                    raise
        except MergeError as exc:
            if exc.partial:
                log.critical("Merge %s -> %s left an inconsistent state: %s", secondary_id, primary_id, exc)
            else:
                log.error("Merge %s -> %s failed, nothing applied: %s", secondary_id, primary_id, exc)
            return MergeResult(success=False, error=str(exc), partial=exc.partial)
        except Exception as exc:
            log.exception("Merge %s -> %s failed, nothing applied.", secondary_id, primary_id)
            return MergeResult(success=False, error=str(exc) or exc.__class__.__name__)

        log.info(
            "Merged client %s into %s (moved %s).",
            secondary_id,
            primary_id,
            ", ".join(f"{n} {c}" for c, n in moved.items()),
        )
        return MergeResult(success=True, moved=moved)

    @staticmethod
    def _apply(
        uow: UnitOfWork,
        primary_id: str,
        secondary_id: str,
        values: Dict[str, object],
        moved: Dict[str, int],
        undo: List[Callable[[], object]],
    ) -> None:
        for category in RELATIONSHIP_CATEGORIES:
            record_ids = uow.reassign(category, secondary_id, primary_id)
            undo.append(partial(uow.reassign_records, category, record_ids, secondary_id))
            moved[category] = len(record_ids)

        if values:
            previous = uow.update_client(primary_id, values)
            undo.append(partial(uow.update_client, primary_id, previous))

        uow.retire_client(secondary_id, primary_id)
        undo.append(partial(uow.restore_client, secondary_id))

    @staticmethod
    def _compensate(undo: List[Callable[[], object]]) -> None:
        while undo:
            step = undo.pop()
            try:
                step()
            except Exception as exc:
                raise MergeError(f"Rollback failed, {len(undo) + 1} step(s) not undone: {exc}", partial=True) from exc
        log.info("Compensating rollback complete.")
