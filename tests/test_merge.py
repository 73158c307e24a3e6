import asyncio

import pytest

from client_dedup.errors import PreconditionError, UnresolvedDecisionError
from client_dedup.grouping import group_clients
from client_dedup.merge import SafeMergeExecutor
from client_dedup.models import ClientRecord, Decision
from client_dedup.planner import override, plan_fields
from client_dedup.store import InMemoryClientStore, _InMemoryUnitOfWork


def _seed(store: InMemoryClientStore) -> InMemoryClientStore:
    store.add_relationship("policies", "p1", "c1")
    store.add_relationship("policies", "p2", "c1")
    store.add_relationship("appointments", "a1", "c1")
    store.add_relationship("policies", "p3", "c2")
    store.add_relationship("claims", "s1", "c2")
    store.add_relationship("claims", "s2", "c2")
    store.add_relationship("claims", "s3", "c2")
    return store


def _merge(store, primary, secondary, decisions):
    return asyncio.run(SafeMergeExecutor(store).merge(primary, secondary, decisions))


def _boom(*args, **kwargs):
    raise RuntimeError("disk full")


def test_merge_moves_every_relationship_and_retires_secondary(populated_store, maria_pair, settings) -> None:
    first, second = maria_pair
    decisions = plan_fields(first, second, settings)

    result = _merge(populated_store, first, second, decisions)

    assert result.success and not result.already_merged
    assert result.moved == {"policies": 1, "appointments": 0, "claims": 3}
    assert populated_store.count_relationships(["c1", "c2"]) == {
        "c1": {"policies": 3, "appointments": 1, "claims": 3},
    }
    assert populated_store.clients["c2"].merged_into == "c1"
    assert populated_store.clients["c1"].email == "maria@example.com"
    assert populated_store.clients["c1"].notes == "Prefers WhatsApp\n\n=== MERGED ===\n\nOld intake form"
    assert [c.client_id for c in populated_store.fetch_clients("acc-1")] == ["c1"]


def test_merged_pair_is_not_detected_again(populated_store, maria_pair, settings) -> None:
    first, second = maria_pair
    assert group_clients(populated_store.fetch_clients("acc-1"), settings)

    _merge(populated_store, first, second, plan_fields(first, second, settings))

    assert group_clients(populated_store.fetch_clients("acc-1"), settings) == []


def test_repeating_a_merge_is_a_no_op(populated_store, maria_pair, settings) -> None:
    first, second = maria_pair
    decisions = plan_fields(first, second, settings)
    _merge(populated_store, first, second, decisions)

    again = _merge(populated_store, first, second, decisions)

    assert again.success and again.already_merged
    assert again.moved == {}
    assert populated_store.count_relationships(["c1"])["c1"] == {"policies": 3, "appointments": 1, "claims": 3}


def test_secondary_known_to_be_retired_skips_the_store(maria_pair, settings) -> None:
    first, second = maria_pair
    second.merged_into = "c1"

    result = _merge(InMemoryClientStore(), first, second, plan_fields(first, second, settings))

    assert result.success and result.already_merged


def test_logic_errors_are_rejected_before_any_io(populated_store, maria_pair, settings) -> None:
    first, second = maria_pair

    with pytest.raises(PreconditionError):
        _merge(populated_store, first, first, plan_fields(first, first, settings))

    retired = ClientRecord(client_id="c0", name="Maria Silva", merged_into="c9")
    with pytest.raises(PreconditionError):
        _merge(populated_store, retired, second, plan_fields(retired, second, settings))

    third = ClientRecord(client_id="c3", name="Maria Silva", email="other@example.com")
    with pytest.raises(UnresolvedDecisionError):
        _merge(populated_store, second, third, plan_fields(second, third, settings))

    assert populated_store.clients["c2"].merged_into is None


def test_failure_on_atomic_store_rolls_back_everything(populated_store, maria_pair, settings, monkeypatch) -> None:
    first, second = maria_pair
    before = populated_store.count_relationships(["c1", "c2"])
    monkeypatch.setattr(_InMemoryUnitOfWork, "retire_client", _boom)

    result = _merge(populated_store, first, second, plan_fields(first, second, settings))

    assert not result.success and not result.partial
    assert result.error == "disk full"
    assert populated_store.count_relationships(["c1", "c2"]) == before
    assert populated_store.clients["c1"].email is None
    assert populated_store.clients["c2"].merged_into is None


def test_failure_on_non_atomic_store_is_compensated(maria_pair, settings, monkeypatch) -> None:
    first, second = maria_pair
    store = _seed(InMemoryClientStore(maria_pair, atomic=False))
    before = store.count_relationships(["c1", "c2"])
    monkeypatch.setattr(_InMemoryUnitOfWork, "retire_client", _boom)

    result = _merge(store, first, second, plan_fields(first, second, settings))

    assert not result.success and not result.partial
    assert store.count_relationships(["c1", "c2"]) == before
    assert store.clients["c1"].email is None
    assert store.clients["c1"].notes == "Prefers WhatsApp"


def test_failed_compensation_is_reported_as_partial(maria_pair, settings, monkeypatch) -> None:
    first, second = maria_pair
    store = _seed(InMemoryClientStore(maria_pair, atomic=False))
    monkeypatch.setattr(_InMemoryUnitOfWork, "retire_client", _boom)
    monkeypatch.setattr(_InMemoryUnitOfWork, "reassign_records", _boom)

    result = _merge(store, first, second, plan_fields(first, second, settings))

    assert not result.success
    assert result.partial
    assert "Rollback failed" in result.error


def test_unknown_client_fails_without_changes(populated_store, maria_pair, settings) -> None:
    first, _ = maria_pair
    ghost = ClientRecord(client_id="ghost", name="Maria Da Silva")
    decisions = plan_fields(first, ghost, settings)

    result = _merge(populated_store, first, ghost, decisions)

    assert not result.success and not result.partial
    assert populated_store.count_relationships(["c1"])["c1"] == {"policies": 2, "appointments": 1}


def test_operator_choice_is_applied(populated_store, maria_pair, settings) -> None:
    first, second = maria_pair
    decisions = plan_fields(first, second, settings)
    override(decisions, "notes", Decision.MANUAL, "WhatsApp only")
    override(decisions, "email", Decision.KEEP_PRIMARY)

    _merge(populated_store, first, second, decisions)

    assert populated_store.clients["c1"].notes == "WhatsApp only"
    assert populated_store.clients["c1"].email is None


def test_retired_secondary_short_circuits_unresolved_plan(maria_pair, settings) -> None:
    first, _ = maria_pair
    retired = ClientRecord(client_id="c3", name="Maria Silva", email="other@example.com", merged_into="c1")
    first.email = "maria@example.com"
    decisions = plan_fields(first, retired, settings)

    result = _merge(InMemoryClientStore(), first, retired, decisions)

    assert result.success and result.already_merged
