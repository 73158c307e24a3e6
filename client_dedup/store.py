from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import Any, ContextManager, Dict, Iterator, List, Mapping, Protocol, Sequence

from client_dedup.errors import ClientNotFoundError
from client_dedup.models import RELATIONSHIP_CATEGORIES, ClientRecord

log = logging.getLogger(__name__)

CLIENT_FIELDS = frozenset(f.name for f in fields(ClientRecord)) - {"client_id"}


class ClientSource(Protocol):
    """All active clients owned by one brokerage account."""

    def fetch_clients(self, account_id: str) -> List[ClientRecord]:
        ...


class RelationshipSource(Protocol):
    """Per-client dependent record counts, keyed by client id then category.

    Must raise on retrieval failure rather than report zero.
    """

    def count_relationships(self, client_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
        ...


class UnitOfWork(Protocol):
    def merged_into(self, client_id: str) -> str | None:
        ...

    def reassign(self, category: str, from_id: str, to_id: str) -> List[str]:
        ...

    def reassign_records(self, category: str, record_ids: Sequence[str], to_id: str) -> None:
        ...

    def update_client(self, client_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def retire_client(self, client_id: str, merged_into: str) -> None:
        ...

    def restore_client(self, client_id: str) -> None:
        ...


class MutationSink(Protocol):
    """Storage boundary for merges.

    ``atomic`` sinks roll every step of a unit of work back on error; other
    sinks leave rollback to the caller's compensating actions.
    """

    atomic: bool

    def unit_of_work(self) -> ContextManager[UnitOfWork]:
        ...


class InMemoryClientStore:
    """Dict-backed client store implementing all three boundary contracts."""

    def __init__(self, clients: Sequence[ClientRecord] = (), atomic: bool = True) -> None:
        self.atomic = atomic
        self.clients: Dict[str, ClientRecord] = {c.client_id: replace(c) for c in clients}
        # category -> record id -> client id
        self.relationships: Dict[str, Dict[str, str]] = {c: {} for c in RELATIONSHIP_CATEGORIES}

    def add_relationship(self, category: str, record_id: str, client_id: str) -> None:
        _check_category(category)
        self.relationships[category][record_id] = client_id

    def fetch_clients(self, account_id: str | None = None) -> List[ClientRecord]:
        return [
            replace(client)
            for client in self.clients.values()
            if not client.retired and (account_id is None or client.account_id == account_id)
        ]

    def count_relationships(self, client_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
        wanted = set(client_ids)
        counts: Dict[str, Dict[str, int]] = {}
        for category, records in self.relationships.items():
            for client_id in records.values():
                if client_id in wanted:
                    bucket = counts.setdefault(client_id, {})
                    bucket[category] = bucket.get(category, 0) + 1
        return counts

    @contextmanager
    def unit_of_work(self) -> Iterator["_InMemoryUnitOfWork"]:
        snapshot = None
        if self.atomic:
            snapshot = (copy.deepcopy(self.clients), copy.deepcopy(self.relationships))
        try:
            yield _InMemoryUnitOfWork(self)
        except BaseException:
            if snapshot is not None:
                self.clients, self.relationships = snapshot
                log.debug("In-memory unit of work rolled back.")
            raise


class _InMemoryUnitOfWork:
    def __init__(self, store: InMemoryClientStore) -> None:
        self._store = store

    def _client(self, client_id: str) -> ClientRecord:
        try:
            return self._store.clients[client_id]
        except KeyError:
            raise ClientNotFoundError(client_id) from None

    def merged_into(self, client_id: str) -> str | None:
        return self._client(client_id).merged_into

    def reassign(self, category: str, from_id: str, to_id: str) -> List[str]:
        _check_category(category)
        records = self._store.relationships[category]
        moved = [record_id for record_id, owner in records.items() if owner == from_id]
        for record_id in moved:
            records[record_id] = to_id
        return moved

    def reassign_records(self, category: str, record_ids: Sequence[str], to_id: str) -> None:
        _check_category(category)
        records = self._store.relationships[category]
        for record_id in record_ids:
            records[record_id] = to_id

    def update_client(self, client_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        client = self._client(client_id)
        unknown = set(values) - CLIENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown client attributes: {sorted(unknown)}")
        previous = {name: getattr(client, name) for name in values}
        for name, value in values.items():
            setattr(client, name, value)
        return previous

    def retire_client(self, client_id: str, merged_into: str) -> None:
        client = self._client(client_id)
        client.merged_into = merged_into

    def restore_client(self, client_id: str) -> None:
        self._client(client_id).merged_into = None


def _check_category(category: str) -> None:
    if category not in RELATIONSHIP_CATEGORIES:
        raise ValueError(f"Unknown relationship category: {category!r}")
