from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import List, Optional

from ..models.order_models import Customer
from .database import connect

_COLUMNS = """
    id,
    owner_id,
    name,
    phone,
    email,
    street,
    city,
    state,
    postal_code,
    country,
    gstin,
    is_active,
    total_orders,
    total_spent,
    average_order_value,
    last_order_date
"""


def create_customer(
    connection: sqlite3.Connection,
    owner_id: str,
    name: str,
    phone: str,
    *,
    email: str = "",
    street: str = "",
    city: str = "",
    state: str = "",
    postal_code: str = "",
    country: str = "India",
    gstin: str = "",
    is_active: bool = True,
) -> Customer:
    name = name.strip()
    if not name:
        raise ValueError("Customer name is required")

    cursor = connection.execute(
        """
        INSERT INTO customers (
            owner_id,
            name,
            phone,
            email,
            street,
            city,
            state,
            postal_code,
            country,
            gstin,
            is_active
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            owner_id,
            name,
            phone.strip(),
            email.strip().lower(),
            street.strip(),
            city.strip(),
            state.strip(),
            postal_code.strip(),
            country.strip() or "India",
            gstin.strip().upper(),
            int(is_active),
        ),
    )
    return find_customer(connection, owner_id, int(cursor.lastrowid))


def find_customer(connection: sqlite3.Connection, owner_id: str, customer_id: int) -> Optional[Customer]:
    row = connection.execute(
        f"SELECT {_COLUMNS} FROM customers WHERE id = ? AND owner_id = ?",
        (int(customer_id), owner_id),
    ).fetchone()
    return _row_to_customer(row) if row is not None else None


def find_active_customer(connection: sqlite3.Connection, owner_id: str, customer_id: int) -> Optional[Customer]:
    customer = find_customer(connection, owner_id, customer_id)
    if customer is None or not customer.is_active:
        return None
    return customer


def get_customer(owner_id: str, customer_id: int) -> Optional[Customer]:
    with connect() as connection:
        return find_customer(connection, owner_id, customer_id)


def list_customers(owner_id: str, *, include_inactive: bool = False) -> List[Customer]:
    sql = f"SELECT {_COLUMNS} FROM customers WHERE owner_id = ?"
    if not include_inactive:
        sql += " AND is_active = 1"
    sql += " ORDER BY name ASC"
    with connect() as connection:
        rows = connection.execute(sql, (owner_id,)).fetchall()
    return [_row_to_customer(row) for row in rows]


def set_active(connection: sqlite3.Connection, owner_id: str, customer_id: int, is_active: bool) -> None:
    connection.execute(
        "UPDATE customers SET is_active = ? WHERE id = ? AND owner_id = ?",
        (int(is_active), int(customer_id), owner_id),
    )


def record_order(
    connection: sqlite3.Connection,
    customer_id: int,
    order_total: int,
    ordered_at: datetime,
    average_order_value: int,
) -> None:
    connection.execute(
        """
        UPDATE customers
        SET total_orders = total_orders + 1,
            total_spent = total_spent + ?,
            average_order_value = ?,
            last_order_date = ?
        WHERE id = ?
        """,
        (int(order_total), int(average_order_value), ordered_at.isoformat(), int(customer_id)),
    )


def _row_to_customer(row: sqlite3.Row) -> Customer:
    return Customer(
        id=int(row["id"]),
        owner_id=row["owner_id"],
        name=row["name"],
        phone=row["phone"] or "",
        email=row["email"] or "",
        street=row["street"] or "",
        city=row["city"] or "",
        state=row["state"] or "",
        postal_code=row["postal_code"] or "",
        country=row["country"] or "India",
        gstin=row["gstin"] or "",
        is_active=bool(row["is_active"]),
        total_orders=int(row["total_orders"]),
        total_spent=int(row["total_spent"]),
        average_order_value=int(row["average_order_value"]),
        last_order_date=datetime.fromisoformat(row["last_order_date"]) if row["last_order_date"] else None,
    )
