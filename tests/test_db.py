from datetime import date

import pytest

from client_dedup import db
from client_dedup.errors import ClientNotFoundError


class FakeCursor:
    def __init__(self, connection) -> None:
        self._connection = connection
        self.rowcount = connection.rowcount

    def execute(self, sql, params=None) -> None:
        self._connection.executed.append((" ".join(sql.split()), params))

    def fetchall(self):
        return self._connection.results.pop(0)

    def fetchone(self):
        rows = self._connection.results.pop(0)
        return rows[0] if rows else None

    def close(self) -> None:
        pass


class FakeConnection:
    def __init__(self, results=(), rowcount=1) -> None:
        self.results = list(results)
        self.rowcount = rowcount
        self.executed = []
        self.events = []

    def cursor(self, dictionary=False):
        return FakeCursor(self)

    def start_transaction(self, isolation_level=None) -> None:
        self.events.append(("begin", isolation_level))

    def commit(self) -> None:
        self.events.append("commit")

    def rollback(self) -> None:
        self.events.append("rollback")

    def close(self) -> None:
        self.events.append("close")


@pytest.fixture
def connection(monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(db.mysql.connector, "connect", lambda **kwargs: conn)
    return conn


def test_count_relationships_groups_per_table() -> None:
    conn = FakeConnection(results=[[("c1", 2), (7, 1)], [], [("c1", 4)]])

    counts = db.count_relationships(conn, ["c1", "7"])

    assert counts == {"c1": {"policies": 2, "claims": 4}, "7": {"policies": 1}}
    assert [sql.split(" FROM ")[1].split()[0] for sql, _ in conn.executed] == ["policies", "appointments", "claims"]
    assert conn.executed[0][1] == ("c1", "7")


def test_fetch_clients_maps_rows_and_skips_retired() -> None:
    conn = FakeConnection(
        results=[[{"id": 12, "name": "Ana Costa", "birth_date": date(1990, 1, 1), "account_id": "acc-1"}]]
    )

    clients = db.fetch_clients(conn, "acc-1")

    assert clients[0].client_id == "12"
    assert clients[0].birth_date == date(1990, 1, 1)
    assert "merged_into IS NULL" in conn.executed[0][0]


def test_schema_migration_only_adds_missing_columns() -> None:
    conn = FakeConnection(results=[[{"COLUMN_NAME": "id"}, {"COLUMN_NAME": "merged_into"}]])

    db.ensure_schema_changes(conn, "brokerage")

    alter = conn.executed[-1][0]
    assert alter.startswith("ALTER TABLE brokerage.clients")
    assert "retired_at" in alter and "merged_into" not in alter
    assert conn.events == ["commit"]


def test_unit_of_work_commits_on_success(connection, settings) -> None:
    store = db.MySQLClientStore(settings)

    with store.unit_of_work() as uow:
        uow.retire_client("c2", "c1")

    assert connection.events == [("begin", "SERIALIZABLE"), "commit", "close"]


def test_unit_of_work_rolls_back_on_error(connection, settings) -> None:
    store = db.MySQLClientStore(settings)

    with pytest.raises(RuntimeError):
        with store.unit_of_work():
            raise RuntimeError("boom")

    assert connection.events == [("begin", "SERIALIZABLE"), "rollback", "close"]


def test_retire_requires_an_active_client() -> None:
    uow = db.MySQLUnitOfWork(FakeConnection(rowcount=0))

    with pytest.raises(ClientNotFoundError):
        uow.retire_client("c2", "c1")


def test_update_client_returns_previous_values() -> None:
    conn = FakeConnection(results=[[{"email": None, "notes": "VIP"}]])
    uow = db.MySQLUnitOfWork(conn)

    previous = uow.update_client("c1", {"email": "a@b.com", "notes": "VIP, met at fair"})

    assert previous == {"email": None, "notes": "VIP"}
    assert conn.executed[-1] == ("UPDATE clients SET email = %s, notes = %s WHERE id = %s", ("a@b.com", "VIP, met at fair", "c1"))


def test_update_client_rejects_unknown_columns() -> None:
    uow = db.MySQLUnitOfWork(FakeConnection())

    with pytest.raises(ValueError):
        uow.update_client("c1", {"id": "c9"})


def test_reassign_returns_moved_record_ids() -> None:
    conn = FakeConnection(results=[[(101,), (102,)]])
    uow = db.MySQLUnitOfWork(conn)

    assert uow.reassign("claims", "c2", "c1") == ["101", "102"]
    assert conn.executed[-1] == ("UPDATE claims SET client_id = %s WHERE client_id = %s", ("c1", "c2"))
