#!/usr/bin/env python3
"""
Client Deduplication Workflow
=============================
Finds probable duplicate clients of one brokerage account in the `clients`
table, scores each candidate pair (tax ID, email, phone, name, birth date),
and optionally merges one pair, moving its policies, appointments and claims
to the surviving client inside a single transaction.

Dry run by default: nothing is written unless --apply is given.

Usage:
    python3 dedup.py ACCOUNT_ID
    python3 dedup.py ACCOUNT_ID --strategy components --show 20
    python3 dedup.py ACCOUNT_ID --merge PRIMARY_ID SECONDARY_ID --take email --apply
"""

import argparse
import asyncio
import logging
import sys
import time

from client_dedup.config import get_settings
from client_dedup.db import MySQLClientStore
from client_dedup.errors import RelationshipFetchError
from client_dedup.grouping import STRATEGIES, group_clients, summarize_groups
from client_dedup.merge import SafeMergeExecutor
from client_dedup.models import Decision, FieldStatus
from client_dedup.planner import override, plan_fields, preview_merge
from client_dedup.relationships import RelationshipAggregator

# ────────────────────────────────────────────────────────────────────
# Logging
# ────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("dedup")


def build_parser():
    parser = argparse.ArgumentParser(prog="dedup", description="Detect and merge duplicate clients")
    parser.add_argument("account_id")
    parser.add_argument("--strategy", choices=STRATEGIES, default="greedy")
    parser.add_argument("--show", type=int, default=10, help="number of groups to log")
    parser.add_argument("--merge", nargs=2, metavar=("PRIMARY", "SECONDARY"))
    parser.add_argument(
        "--take",
        action="append",
        default=[],
        metavar="FIELD",
        help="on conflict, use the secondary's value for FIELD (repeatable)",
    )
    parser.add_argument("--apply", action="store_true", help="write the merge (default: dry run)")
    return parser


def report_groups(clients, strategy, show):
    groups = group_clients(clients, strategy=strategy)
    summary = summarize_groups(groups, total_clients=len(clients))
    log.info(
        "Found %d groups involving %d clients (high=%d, medium=%d, low=%d, %s%% of base).",
        summary.group_count,
        summary.client_count,
        summary.high,
        summary.medium,
        summary.low,
        summary.share_of_base if summary.share_of_base is not None else 0,
    )
    for group in groups[:show]:
        log.info(
            "  %s [%s %.0f%%] %s",
            group.group_id,
            group.confidence.value,
            group.score,
            ", ".join(group.similarity.reasons) or "-",
        )
        for client in group.clients:
            log.info("      %s  %s", client.client_id, client.name)
    return groups


async def run_merge(store, clients, primary_id, secondary_id, take, apply):
    by_id = {client.client_id: client for client in clients}
    missing = [cid for cid in (primary_id, secondary_id) if cid not in by_id]
    if missing:
        log.error("Unknown or already merged client(s): %s", ", ".join(missing))
        return 1
    primary, secondary = by_id[primary_id], by_id[secondary_id]

    try:
        snapshots = await RelationshipAggregator(store).relationships_for([primary_id, secondary_id])
    except RelationshipFetchError as exc:
        log.error("Relationship counts unavailable, merge blocked: %s", exc)
        return 3
    for snap in snapshots:
        log.info(
            "  %s: %d policies, %d appointments, %d claims",
            snap.client_id,
            snap.policies,
            snap.appointments,
            snap.claims,
        )

    decisions = plan_fields(primary, secondary)
    for decision in decisions:
        if decision.decision is not Decision.MANUAL:
            continue
        if decision.field in take:
            override(decisions, decision.field, Decision.TAKE_SECONDARY)
        elif not decision.resolved:
            override(decisions, decision.field, Decision.KEEP_PRIMARY)

    for preview in preview_merge(decisions):
        if preview.status is not FieldStatus.UNCHANGED:
            log.info("  %-15s %s: %r -> %r", preview.field, preview.status.value, preview.current, preview.merged)

    if not apply:
        log.info("Dry run: pass --apply to merge %s into %s.", secondary_id, primary_id)
        return 0

    result = await SafeMergeExecutor(store).merge(primary, secondary, decisions)
    if not result.success:
        log.error("Merge failed%s: %s", " (INCONSISTENT STATE)" if result.partial else "", result.error)
        return 2
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    t_start = time.time()
    log.info("=== Client Deduplication Workflow ===")

    settings = get_settings()
    store = MySQLClientStore(settings)
    store.ensure_schema()

    log.info("Loading clients for account %s…", args.account_id)
    clients = store.fetch_clients(args.account_id)
    log.info("Loaded %d active clients.", len(clients))

    report_groups(clients, args.strategy, args.show)

    status = 0
    if args.merge:
        status = asyncio.run(run_merge(store, clients, *args.merge, take=set(args.take), apply=args.apply))

    log.info("=== Done in %.1f seconds ===", time.time() - t_start)
    return status


if __name__ == "__main__":
    sys.exit(main())
