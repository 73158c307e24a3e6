from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Tuple


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class Decision(str, Enum):
    KEEP_PRIMARY = "keep-primary"
    TAKE_SECONDARY = "take-secondary"
    MANUAL = "manual"


class FieldStatus(str, Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    CHANGED = "changed"


RELATIONSHIP_CATEGORIES: Tuple[str, ...] = ("policies", "appointments", "claims")


@dataclass
class ClientRecord:
    client_id: str
    name: str = ""
    phone: str | None = None
    email: str | None = None
    tax_id: str | None = None
    birth_date: date | None = None
    marital_status: str | None = None
    profession: str | None = None
    postal_code: str | None = None
    address: str | None = None
    address_number: str | None = None
    complement: str | None = None
    neighborhood: str | None = None
    city: str | None = None
    state: str | None = None
    notes: str | None = None
    status: str = "active"
    created_at: datetime | None = None
    account_id: str | None = None
    merged_into: str | None = None

    @property
    def retired(self) -> bool:
        return self.merged_into is not None


@dataclass(frozen=True)
class SimilarityResult:
    score: float
    confidence: Confidence
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PairSimilarity:
    left_id: str
    right_id: str
    similarity: SimilarityResult


@dataclass(frozen=True)
class DuplicateGroup:
    group_id: str
    clients: Tuple[ClientRecord, ...]
    similarity: SimilarityResult
    details: Tuple[PairSimilarity, ...] = ()

    @property
    def client_ids(self) -> List[str]:
        return [client.client_id for client in self.clients]

    @property
    def confidence(self) -> Confidence:
        return self.similarity.confidence

    @property
    def score(self) -> float:
        return self.similarity.score


@dataclass(frozen=True)
class DuplicateSummary:
    group_count: int
    client_count: int
    high: int
    medium: int
    low: int
    total_clients: int | None = None

    @property
    def priority(self) -> int:
        return self.high + self.medium

    @property
    def share_of_base(self) -> float | None:
        if not self.total_clients:
            return None
        return round(self.client_count / self.total_clients * 100, 1)


@dataclass(frozen=True)
class RelationshipSnapshot:
    client_id: str
    policies: int = 0
    appointments: int = 0
    claims: int = 0

    @property
    def total(self) -> int:
        return self.policies + self.appointments + self.claims


@dataclass
class FieldDecision:
    field: str
    decision: Decision
    primary_value: Any = None
    secondary_value: Any = None
    resolved_value: Any = None

    @property
    def resolved(self) -> bool:
        return self.decision is not Decision.MANUAL or self.resolved_value is not None

    def resolve(self, value: Any) -> None:
        self.decision = Decision.MANUAL
        self.resolved_value = value


@dataclass(frozen=True)
class FieldPreview:
    field: str
    current: Any
    merged: Any
    status: FieldStatus


@dataclass
class MergeResult:
    success: bool
    error: str | None = None
    already_merged: bool = False
    partial: bool = False
    moved: Dict[str, int] = field(default_factory=dict)


class UnionFind:
    def __init__(self) -> None:
        self.parent: Dict[str, str] = {}

    def find(self, item: str) -> str:
        if item not in self.parent:
            self.parent[item] = item
            return item
        if self.parent[item] != item:
            self.parent[item] = self.find(self.parent[item])
        return self.parent[item]

    def union(self, a: str, b: str) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a != root_b:
            self.parent[root_b] = root_a

    def groups(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {}
        for item in list(self.parent.keys()):
            root = self.find(item)
            result.setdefault(root, []).append(item)
        return result
