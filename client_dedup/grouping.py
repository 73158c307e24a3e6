"""
Partition a client collection into groups of probable duplicates.

The default strategy is a greedy single pass: the first unclaimed client
anchors a group with every other unclaimed client that clears its tier's
inclusion floor. A client that could match two anchors only joins the first
one scanned. ``strategy="components"`` instead takes connected components
of the above-floor similarity graph.
"""

from __future__ import annotations

import logging
from itertools import combinations
from typing import Dict, Iterable, List, Sequence, Tuple

from client_dedup.config import Settings
from client_dedup.models import (
    ClientRecord,
    Confidence,
    DuplicateGroup,
    DuplicateSummary,
    PairSimilarity,
    SimilarityResult,
    UnionFind,
)
from client_dedup.scoring import score_pair

log = logging.getLogger(__name__)

STRATEGIES = ("greedy", "components")


def inclusion_floor(confidence: Confidence, settings: Settings) -> float:
    return {
        Confidence.HIGH: settings.high_floor,
        Confidence.MEDIUM: settings.medium_floor,
        Confidence.LOW: settings.low_floor,
    }[confidence]


def clears_floor(similarity: SimilarityResult, settings: Settings) -> bool:
    return similarity.score >= inclusion_floor(similarity.confidence, settings)


def group_clients(
    clients: Sequence[ClientRecord],
    settings: Settings | None = None,
    strategy: str = "greedy",
) -> List[DuplicateGroup]:
    """Return duplicate groups sorted by confidence tier, then score (both descending)."""
    settings = settings or Settings()
    active = [client for client in clients if not client.retired]

    if strategy == "greedy":
        groups = _greedy_groups(active, settings)
    elif strategy == "components":
        groups = _component_groups(active, settings)
    else:
        raise ValueError(f"Unknown grouping strategy: {strategy!r} (expected one of {STRATEGIES})")

    groups.sort(key=lambda g: (-g.confidence.rank, -g.score))
    log.debug("Grouped %d clients into %d groups (%s).", len(active), len(groups), strategy)
    return groups


def _greedy_groups(clients: Sequence[ClientRecord], settings: Settings) -> List[DuplicateGroup]:
    groups: List[DuplicateGroup] = []
    claimed: set[str] = set()

    for anchor in clients:
        if anchor.client_id in claimed:
            continue

        matches: List[Tuple[ClientRecord, SimilarityResult]] = []
        for other in clients:
            if other.client_id == anchor.client_id or other.client_id in claimed:
                continue
            similarity = score_pair(anchor, other, settings)
            if clears_floor(similarity, settings):
                matches.append((other, similarity))

        if not matches:
            continue

        members = [anchor, *(other for other, _ in matches)]
        claimed.update(member.client_id for member in members)

        known = {
            _pair_key(anchor.client_id, other.client_id): PairSimilarity(anchor.client_id, other.client_id, sim)
            for other, sim in matches
        }
        groups.append(
            DuplicateGroup(
                group_id=f"group-{len(groups)}",
                clients=tuple(members),
                similarity=_best(sim for _, sim in matches),
                details=_pairwise(members, known, settings),
            )
        )
    return groups


def _component_groups(clients: Sequence[ClientRecord], settings: Settings) -> List[DuplicateGroup]:
    uf = UnionFind()
    edges: Dict[Tuple[str, str], PairSimilarity] = {}

    for left, right in combinations(clients, 2):
        similarity = score_pair(left, right, settings)
        if clears_floor(similarity, settings):
            uf.union(left.client_id, right.client_id)
            edges[_pair_key(left.client_id, right.client_id)] = PairSimilarity(
                left.client_id, right.client_id, similarity
            )

    by_id = {client.client_id: client for client in clients}
    order = {client.client_id: idx for idx, client in enumerate(clients)}
    components = sorted(
        (sorted(ids, key=order.__getitem__) for ids in uf.groups().values() if len(ids) > 1),
        key=lambda ids: order[ids[0]],
    )

    groups: List[DuplicateGroup] = []
    for ids in components:
        members = [by_id[client_id] for client_id in ids]
        member_ids = set(ids)
        component_edges = [
            pair.similarity
            for key, pair in edges.items()
            if key[0] in member_ids and key[1] in member_ids
        ]
        groups.append(
            DuplicateGroup(
                group_id=f"group-{len(groups)}",
                clients=tuple(members),
                similarity=_best(component_edges),
                details=_pairwise(members, edges, settings),
            )
        )
    return groups


def _pairwise(
    members: Sequence[ClientRecord],
    known: Dict[Tuple[str, str], PairSimilarity],
    settings: Settings,
) -> Tuple[PairSimilarity, ...]:
    details: List[PairSimilarity] = []
    for left, right in combinations(members, 2):
        pair = known.get(_pair_key(left.client_id, right.client_id))
        if pair is None:
            pair = PairSimilarity(left.client_id, right.client_id, score_pair(left, right, settings))
        details.append(pair)
    return tuple(details)


def _best(similarities: Iterable[SimilarityResult]) -> SimilarityResult:
    best = SimilarityResult(score=0.0, confidence=Confidence.LOW)
    for similarity in similarities:
        if similarity.score > best.score:
            best = similarity
    return best


def _pair_key(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def summarize_groups(groups: Sequence[DuplicateGroup], total_clients: int | None = None) -> DuplicateSummary:
    """Per-tier counts for the duplicate banner."""
    tiers = {tier: 0 for tier in Confidence}
    for group in groups:
        tiers[group.confidence] += 1
    return DuplicateSummary(
        group_count=len(groups),
        client_count=sum(len(group.clients) for group in groups),
        high=tiers[Confidence.HIGH],
        medium=tiers[Confidence.MEDIUM],
        low=tiers[Confidence.LOW],
        total_clients=total_clients,
    )
