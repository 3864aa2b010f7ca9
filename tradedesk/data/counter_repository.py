from __future__ import annotations

import sqlite3
from typing import Dict

from .database import connect

# Documents counted to seed a counter the first time an owner uses it.
_DOCUMENT_TABLES: Dict[str, str] = {
    "order": "orders",
    "invoice": "invoices",
}
_NUMBER_COLUMNS: Dict[str, str] = {
    "order": "order_number",
    "invoice": "invoice_number",
}


def increment(connection: sqlite3.Connection, owner_id: str, kind: str) -> int:
    """Bump the (owner, kind) counter inside the caller's write transaction."""
    table = _DOCUMENT_TABLES[kind]
    connection.execute(
        f"""
        INSERT INTO document_counters (owner_id, kind, value)
        VALUES (?, ?, (SELECT COUNT(*) FROM {table} WHERE owner_id = ?))
        ON CONFLICT(owner_id, kind) DO NOTHING
        """,
        (owner_id, kind, owner_id),
    )
    connection.execute(
        "UPDATE document_counters SET value = value + 1 WHERE owner_id = ? AND kind = ?",
        (owner_id, kind),
    )
    row = connection.execute(
        "SELECT value FROM document_counters WHERE owner_id = ? AND kind = ?",
        (owner_id, kind),
    ).fetchone()
    return int(row["value"])


def peek(owner_id: str, kind: str) -> int:
    table = _DOCUMENT_TABLES[kind]
    with connect() as connection:
        row = connection.execute(
            "SELECT value FROM document_counters WHERE owner_id = ? AND kind = ?",
            (owner_id, kind),
        ).fetchone()
        if row is not None:
            return int(row["value"])
        counted = connection.execute(
            f"SELECT COUNT(*) AS total FROM {table} WHERE owner_id = ?",
            (owner_id,),
        ).fetchone()
        return int(counted["total"])


def number_exists(connection: sqlite3.Connection, owner_id: str, kind: str, number: str) -> bool:
    table = _DOCUMENT_TABLES[kind]
    column = _NUMBER_COLUMNS[kind]
    row = connection.execute(
        f"SELECT 1 FROM {table} WHERE owner_id = ? AND {column} = ? LIMIT 1",
        (owner_id, number),
    ).fetchone()
    return row is not None


def list_numbers(connection: sqlite3.Connection, owner_id: str, kind: str) -> list[str]:
    table = _DOCUMENT_TABLES[kind]
    column = _NUMBER_COLUMNS[kind]
    rows = connection.execute(
        f"SELECT {column} AS number FROM {table} WHERE owner_id = ?",
        (owner_id,),
    ).fetchall()
    return [row["number"] for row in rows]


def raise_to(connection: sqlite3.Connection, owner_id: str, kind: str, value: int) -> None:
    connection.execute(
        """
        INSERT INTO document_counters (owner_id, kind, value)
        VALUES (?, ?, ?)
        ON CONFLICT(owner_id, kind) DO UPDATE SET value = MAX(value, excluded.value)
        """,
        (owner_id, kind, int(value)),
    )
