from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Sequence

import mysql.connector
from mysql.connector import MySQLConnection

from client_dedup.config import Settings
from client_dedup.errors import ClientNotFoundError
from client_dedup.models import RELATIONSHIP_CATEGORIES, ClientRecord

log = logging.getLogger(__name__)

CLIENT_TABLE = "clients"
RELATIONSHIP_TABLES = {
    "policies": "policies",
    "appointments": "appointments",
    "claims": "claims",
}
# ClientRecord attribute -> clients column; also the whitelist for updates
CLIENT_COLUMNS = {
    "name": "name",
    "phone": "phone",
    "email": "email",
    "tax_id": "tax_id",
    "birth_date": "birth_date",
    "marital_status": "marital_status",
    "profession": "profession",
    "postal_code": "postal_code",
    "address": "address",
    "address_number": "address_number",
    "complement": "complement",
    "neighborhood": "neighborhood",
    "city": "city",
    "state": "state",
    "notes": "notes",
    "status": "status",
    "created_at": "created_at",
    "account_id": "account_id",
    "merged_into": "merged_into",
}


@contextmanager
def db_connection(settings: Settings):
    connection = mysql.connector.connect(
        host=settings.db_host,
        port=settings.db_port,
        user=settings.db_user,
        password=settings.db_password,
        database=settings.db_name,
        connection_timeout=settings.db_connection_timeout,
        autocommit=False,
    )
    try:
        yield connection
    finally:
        connection.close()


def ensure_schema_changes(connection: MySQLConnection, db_name: str) -> None:
    cursor = connection.cursor(dictionary=True)
    cursor.execute(
        """
        SELECT COLUMN_NAME
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
        """,
        (db_name, CLIENT_TABLE),
    )
    existing = {row["COLUMN_NAME"] for row in cursor.fetchall()}
    required_sql = {
        "merged_into": "ADD COLUMN merged_into VARCHAR(64) NULL",
        "retired_at": "ADD COLUMN retired_at TIMESTAMP NULL",
    }

    alter_parts = [sql for col, sql in required_sql.items() if col not in existing]
    if alter_parts:
        log.info("Running schema migration on %s…", CLIENT_TABLE)
        alter_stmt = f"ALTER TABLE {db_name}.{CLIENT_TABLE}\n" + ",\n".join(alter_parts)
        cursor.execute(alter_stmt)
        connection.commit()
    cursor.close()


def _row_to_client(row: Mapping[str, Any]) -> ClientRecord:
    values = {attr: row.get(column) for attr, column in CLIENT_COLUMNS.items() if column in row}
    return ClientRecord(client_id=str(row["id"]), **values)


def fetch_clients(connection: MySQLConnection, account_id: str) -> List[ClientRecord]:
    columns = ", ".join(["id", *CLIENT_COLUMNS.values()])
    cursor = connection.cursor(dictionary=True)
    cursor.execute(
        f"""
        SELECT {columns}
        FROM {CLIENT_TABLE}
        WHERE account_id = %s AND merged_into IS NULL
        ORDER BY created_at, id
        """,
        (account_id,),
    )
    rows = cursor.fetchall()
    cursor.close()
    return [_row_to_client(row) for row in rows]


def count_relationships(connection: MySQLConnection, client_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
    counts: Dict[str, Dict[str, int]] = {}
    if not client_ids:
        return counts
    placeholders = ",".join(["%s"] * len(client_ids))
    cursor = connection.cursor()
    for category, table in RELATIONSHIP_TABLES.items():
        cursor.execute(
            f"SELECT client_id, COUNT(*) FROM {table} WHERE client_id IN ({placeholders}) GROUP BY client_id",
            tuple(client_ids),
        )
        for client_id, count in cursor.fetchall():
            counts.setdefault(str(client_id), {})[category] = int(count)
    cursor.close()
    return counts


class MySQLUnitOfWork:
    """Merge steps over one open transaction; rows are locked as they are read."""

    def __init__(self, connection: MySQLConnection) -> None:
        self._connection = connection

    def merged_into(self, client_id: str) -> str | None:
        cursor = self._connection.cursor()
        cursor.execute(f"SELECT merged_into FROM {CLIENT_TABLE} WHERE id = %s FOR UPDATE", (client_id,))
        row = cursor.fetchone()
        cursor.close()
        if row is None:
            raise ClientNotFoundError(client_id)
        return None if row[0] is None else str(row[0])

    def reassign(self, category: str, from_id: str, to_id: str) -> List[str]:
        table = _table_for(category)
        cursor = self._connection.cursor()
        cursor.execute(f"SELECT id FROM {table} WHERE client_id = %s FOR UPDATE", (from_id,))
        record_ids = [str(row[0]) for row in cursor.fetchall()]
        if record_ids:
            cursor.execute(f"UPDATE {table} SET client_id = %s WHERE client_id = %s", (to_id, from_id))
        cursor.close()
        return record_ids

    def reassign_records(self, category: str, record_ids: Sequence[str], to_id: str) -> None:
        if not record_ids:
            return
        table = _table_for(category)
        placeholders = ",".join(["%s"] * len(record_ids))
        cursor = self._connection.cursor()
        cursor.execute(
            f"UPDATE {table} SET client_id = %s WHERE id IN ({placeholders})",
            (to_id, *record_ids),
        )
        cursor.close()

    def update_client(self, client_id: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = set(values) - set(CLIENT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown client attributes: {sorted(unknown)}")
        if not values:
            return {}
        columns = [CLIENT_COLUMNS[name] for name in values]
        cursor = self._connection.cursor(dictionary=True)
        cursor.execute(
            f"SELECT {', '.join(columns)} FROM {CLIENT_TABLE} WHERE id = %s FOR UPDATE",
            (client_id,),
        )
        row = cursor.fetchone()
        if row is None:
            cursor.close()
            raise ClientNotFoundError(client_id)
        previous = {name: row[CLIENT_COLUMNS[name]] for name in values}
        assignments = ", ".join(f"{column} = %s" for column in columns)
        cursor.execute(
            f"UPDATE {CLIENT_TABLE} SET {assignments} WHERE id = %s",
            (*values.values(), client_id),
        )
        cursor.close()
        return previous

    def retire_client(self, client_id: str, merged_into: str) -> None:
        cursor = self._connection.cursor()
        cursor.execute(
            f"UPDATE {CLIENT_TABLE} SET merged_into = %s, retired_at = CURRENT_TIMESTAMP "
            "WHERE id = %s AND merged_into IS NULL",
            (merged_into, client_id),
        )
        updated = cursor.rowcount
        cursor.close()
        if updated != 1:
            raise ClientNotFoundError(f"{client_id} (missing or already retired)")

    def restore_client(self, client_id: str) -> None:
        cursor = self._connection.cursor()
        cursor.execute(
            f"UPDATE {CLIENT_TABLE} SET merged_into = NULL, retired_at = NULL WHERE id = %s",
            (client_id,),
        )
        cursor.close()


class MySQLClientStore:
    """Client source, relationship source and transactional mutation sink over MySQL."""

    atomic = True

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def fetch_clients(self, account_id: str) -> List[ClientRecord]:
        with db_connection(self._settings) as connection:
            return fetch_clients(connection, account_id)

    def count_relationships(self, client_ids: Sequence[str]) -> Dict[str, Dict[str, int]]:
        with db_connection(self._settings) as connection:
            return count_relationships(connection, client_ids)

    def ensure_schema(self) -> None:
        with db_connection(self._settings) as connection:
            ensure_schema_changes(connection, self._settings.db_name)

    @contextmanager
    def unit_of_work(self) -> Iterator[MySQLUnitOfWork]:
        with db_connection(self._settings) as connection:
            connection.start_transaction(isolation_level="SERIALIZABLE")
            try:
                yield MySQLUnitOfWork(connection)
            except BaseException:
                connection.rollback()
                log.info("Transaction rolled back.")
                raise
            connection.commit()


def _table_for(category: str) -> str:
    if category not in RELATIONSHIP_CATEGORIES:
        raise ValueError(f"Unknown relationship category: {category!r}")
    return RELATIONSHIP_TABLES[category]
