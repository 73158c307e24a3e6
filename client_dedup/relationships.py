from __future__ import annotations

import asyncio
import logging
from typing import List, Sequence

from client_dedup.config import Settings
from client_dedup.errors import RelationshipFetchError
from client_dedup.models import RelationshipSnapshot
from client_dedup.store import RelationshipSource

log = logging.getLogger(__name__)


class RelationshipAggregator:
    """Read-only policy/appointment/claim counts for a set of clients.

    A failed or timed-out fetch raises ``RelationshipFetchError``; callers
    must treat the counts as unknown and block merge confirmation.
    """

    def __init__(self, source: RelationshipSource, timeout: float | None = None) -> None:
        self._source = source
        self._timeout = Settings().relationship_timeout if timeout is None else timeout

    async def relationships_for(self, client_ids: Sequence[str]) -> List[RelationshipSnapshot]:
        ids = list(client_ids)
        if not ids:
            return []
        try:
            counts = await asyncio.wait_for(
                asyncio.to_thread(self._source.count_relationships, ids),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            log.warning("Relationship fetch timed out after %.1fs for %d clients.", self._timeout, len(ids))
            raise RelationshipFetchError(f"Relationship fetch timed out after {self._timeout}s") from exc
        except Exception as exc:
            log.warning("Relationship fetch failed: %s", exc)
            raise RelationshipFetchError(f"Relationship fetch failed: {exc}") from exc

        snapshots = []
        for client_id in ids:
            bucket = counts.get(client_id) or {}
            snapshots.append(
                RelationshipSnapshot(
                    client_id=client_id,
                    policies=int(bucket.get("policies", 0)),
                    appointments=int(bucket.get("appointments", 0)),
                    claims=int(bucket.get("claims", 0)),
                )
            )
        return snapshots
