"""
Per-operator merge review session over one duplicate group.

    Idle -> PairSelected -> RelationshipsLoading -> RelationshipsReady
         -> FieldsPlanned -> AwaitingConfirmation -> Merging -> Merged | Failed

``swap`` re-plans with roles exchanged, ``cancel`` returns to Idle from any
non-terminal state and ``retry`` takes Failed back to AwaitingConfirmation.
The session is owned by a single caller and is discarded with the review
screen; nothing here is persisted.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Dict, List

from client_dedup.config import Settings
from client_dedup.errors import DedupError, InvalidTransitionError, PreconditionError, RelationshipFetchError
from client_dedup.merge import SafeMergeExecutor, check_preconditions
from client_dedup.models import (
    ClientRecord,
    Decision,
    DuplicateGroup,
    FieldDecision,
    FieldPreview,
    MergeResult,
    RelationshipSnapshot,
)
from client_dedup.planner import merged_values, override, plan_fields, preview_merge, unresolved_fields
from client_dedup.relationships import RelationshipAggregator

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    PAIR_SELECTED = "pair-selected"
    RELATIONSHIPS_LOADING = "relationships-loading"
    RELATIONSHIPS_READY = "relationships-ready"
    FIELDS_PLANNED = "fields-planned"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    MERGING = "merging"
    MERGED = "merged"
    FAILED = "failed"


SWAPPABLE = {
    SessionState.RELATIONSHIPS_READY,
    SessionState.FIELDS_PLANNED,
    SessionState.AWAITING_CONFIRMATION,
}


class MergeSession:
    def __init__(
        self,
        aggregator: RelationshipAggregator,
        executor: SafeMergeExecutor,
        group: DuplicateGroup | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._executor = executor
        self._settings = settings or Settings()
        self.members: List[ClientRecord] = list(group.clients) if group else []
        self._grouped = group is not None
        self.state = SessionState.IDLE
        self.primary: ClientRecord | None = None
        self.secondary: ClientRecord | None = None
        self.relationships: Dict[str, RelationshipSnapshot] | None = None
        self.relationship_error: str | None = None
        self.decisions: List[FieldDecision] = []
        self.last_result: MergeResult | None = None

    # ── helpers ─────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self.state in (SessionState.RELATIONSHIPS_LOADING, SessionState.MERGING)

    @property
    def dissolved(self) -> bool:
        return len(self.members) < 2

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(f"Cannot do this in state {self.state.value!r} (allowed: {allowed})")

    def _reset_pair(self) -> None:
        self.primary = None
        self.secondary = None
        self.relationships = None
        self.relationship_error = None
        self.decisions = []

    # ── transitions ─────────────────────────────────────────────────

    def select_pair(self, primary: ClientRecord, secondary: ClientRecord) -> None:
        self._require(SessionState.IDLE, SessionState.MERGED)
        if primary.client_id == secondary.client_id:
            raise PreconditionError("Primary and secondary must be different clients")
        for client in (primary, secondary):
            if client.retired:
                raise PreconditionError(f"Client {client.client_id} has been merged and cannot be selected")
        if self._grouped:
            if self.dissolved:
                raise PreconditionError("This group has no duplicates left to merge")
            ids = {member.client_id for member in self.members}
            missing = [c.client_id for c in (primary, secondary) if c.client_id not in ids]
            if missing:
                raise PreconditionError(f"Clients not in this group: {', '.join(missing)}")
        self._reset_pair()
        self.primary = primary
        self.secondary = secondary
        self.last_result = None
        self.state = SessionState.PAIR_SELECTED

    async def load_relationships(self) -> Dict[str, RelationshipSnapshot]:
        self._require(SessionState.PAIR_SELECTED)
        self.state = SessionState.RELATIONSHIPS_LOADING
        ids = [member.client_id for member in self.members] or [self.primary.client_id, self.secondary.client_id]
        try:
            snapshots = await self._aggregator.relationships_for(ids)
        except RelationshipFetchError as exc:
            self.relationships = None
            self.relationship_error = str(exc)
            self.state = SessionState.PAIR_SELECTED
            raise
        self.relationships = {snapshot.client_id: snapshot for snapshot in snapshots}
        self.relationship_error = None
        self.state = SessionState.RELATIONSHIPS_READY
        return self.relationships

    def plan(self) -> List[FieldDecision]:
        self._require(SessionState.RELATIONSHIPS_READY, SessionState.FIELDS_PLANNED)
        self.decisions = plan_fields(self.primary, self.secondary, self._settings)
        self.state = SessionState.FIELDS_PLANNED
        return self.decisions

    def override(self, field: str, decision: Decision, value: Any = None) -> FieldDecision:
        self._require(SessionState.FIELDS_PLANNED, SessionState.AWAITING_CONFIRMATION)
        item = override(self.decisions, field, decision, value)
        self.state = SessionState.FIELDS_PLANNED
        return item

    def preview(self) -> List[FieldPreview]:
        return preview_merge(self.decisions)

    def swap(self) -> List[FieldDecision]:
        self._require(*SWAPPABLE)
        self.primary, self.secondary = self.secondary, self.primary
        self.decisions = plan_fields(self.primary, self.secondary, self._settings)
        self.state = SessionState.FIELDS_PLANNED
        return self.decisions

    def request_confirmation(self) -> None:
        self._require(SessionState.FIELDS_PLANNED)
        if self.relationships is None:
            raise PreconditionError("Relationship counts are unknown; reload them before merging")
        pending = unresolved_fields(self.decisions)
        if pending:
            raise PreconditionError(f"Resolve manual decisions first: {', '.join(pending)}")
        check_preconditions(self.primary, self.secondary, self.decisions)
        self.state = SessionState.AWAITING_CONFIRMATION

    async def confirm(self) -> MergeResult:
        self._require(SessionState.AWAITING_CONFIRMATION)
        self.state = SessionState.MERGING
        try:
            result = await self._executor.merge(self.primary, self.secondary, self.decisions)
        except DedupError as exc:
            result = MergeResult(success=False, error=str(exc))
        self.last_result = result

        if not result.success:
            self.state = SessionState.FAILED
            return result

        secondary_id = self.secondary.client_id
        merged_primary = replace(self.primary, **merged_values(self.decisions))
        self.members = [
            merged_primary if member.client_id == merged_primary.client_id else member
            for member in self.members
            if member.client_id != secondary_id
        ]
        if self.dissolved:
            self.members = []
        # Counts changed: they must be fetched again before another merge
        self._reset_pair()
        self.state = SessionState.MERGED
        log.info("Session merge done; %d clients left in group.", len(self.members))
        return result

    def retry(self) -> None:
        self._require(SessionState.FAILED)
        if self.last_result is not None and self.last_result.partial:
            raise InvalidTransitionError("Merge left an inconsistent state; retry is blocked until it is repaired")
        self.state = SessionState.AWAITING_CONFIRMATION

    def cancel(self) -> None:
        if self.state in (SessionState.MERGING, SessionState.MERGED):
            raise InvalidTransitionError(f"Cannot cancel in state {self.state.value!r}")
        self._reset_pair()
        self.state = SessionState.IDLE
