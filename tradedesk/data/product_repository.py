from __future__ import annotations

import sqlite3
from typing import List, Optional

from ..models.order_models import ProductRef
from .database import connect

_COLUMNS = """
    id,
    owner_id,
    sku,
    name,
    description,
    unit,
    cost_price,
    selling_price,
    tax_rate,
    quantity,
    minimum_stock,
    track_inventory,
    is_active
"""


def create_product(
    connection: sqlite3.Connection,
    owner_id: str,
    sku: str,
    name: str,
    *,
    cost_price: int,
    selling_price: int,
    tax_rate: float = 0.0,
    quantity: int = 0,
    minimum_stock: int = 10,
    track_inventory: bool = True,
    description: str = "",
    unit: str = "piece",
) -> ProductRef:
    sku = sku.strip().upper()
    if not sku:
        raise ValueError("SKU is required")

    try:
        cursor = connection.execute(
            """
            INSERT INTO products (
                owner_id,
                sku,
                name,
                description,
                unit,
                cost_price,
                selling_price,
                tax_rate,
                quantity,
                minimum_stock,
                track_inventory
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_id,
                sku,
                name.strip() or sku,
                description.strip(),
                unit.strip() or "piece",
                int(cost_price),
                int(selling_price),
                float(tax_rate),
                max(0, int(quantity)),
                max(0, int(minimum_stock)),
                int(track_inventory),
            ),
        )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"SKU '{sku}' already exists.") from exc

    return find_product(connection, owner_id, int(cursor.lastrowid))


def find_product(connection: sqlite3.Connection, owner_id: str, product_id: int) -> Optional[ProductRef]:
    row = connection.execute(
        f"SELECT {_COLUMNS} FROM products WHERE id = ? AND owner_id = ?",
        (int(product_id), owner_id),
    ).fetchone()
    return _row_to_product(row) if row is not None else None


def find_product_by_id(connection: sqlite3.Connection, product_id: int) -> Optional[ProductRef]:
    row = connection.execute(
        f"SELECT {_COLUMNS} FROM products WHERE id = ?",
        (int(product_id),),
    ).fetchone()
    return _row_to_product(row) if row is not None else None


def get_product(owner_id: str, product_id: int) -> Optional[ProductRef]:
    with connect() as connection:
        return find_product(connection, owner_id, product_id)


def list_products(owner_id: str) -> List[ProductRef]:
    with connect() as connection:
        rows = connection.execute(
            f"SELECT {_COLUMNS} FROM products WHERE owner_id = ? ORDER BY sku ASC",
            (owner_id,),
        ).fetchall()
    return [_row_to_product(row) for row in rows]


def list_low_stock(owner_id: str) -> List[ProductRef]:
    with connect() as connection:
        rows = connection.execute(
            f"""
            SELECT {_COLUMNS}
            FROM products
            WHERE owner_id = ?
              AND is_active = 1
              AND track_inventory = 1
              AND quantity <= minimum_stock
            ORDER BY quantity ASC, sku ASC
            """,
            (owner_id,),
        ).fetchall()
    return [_row_to_product(row) for row in rows]


def decrement_if_available(connection: sqlite3.Connection, product_id: int, quantity: int) -> bool:
    cursor = connection.execute(
        """
        UPDATE products
        SET quantity = quantity - ?
        WHERE id = ?
          AND track_inventory = 1
          AND quantity >= ?
        """,
        (int(quantity), int(product_id), int(quantity)),
    )
    return cursor.rowcount == 1


def increment(connection: sqlite3.Connection, product_id: int, quantity: int) -> bool:
    cursor = connection.execute(
        "UPDATE products SET quantity = quantity + ? WHERE id = ? AND track_inventory = 1",
        (int(quantity), int(product_id)),
    )
    return cursor.rowcount == 1


def apply_delta(connection: sqlite3.Connection, product_id: int, delta: int) -> bool:
    cursor = connection.execute(
        """
        UPDATE products
        SET quantity = MAX(0, quantity + ?)
        WHERE id = ?
          AND track_inventory = 1
        """,
        (int(delta), int(product_id)),
    )
    return cursor.rowcount == 1


def set_quantity(connection: sqlite3.Connection, product_id: int, quantity: int) -> bool:
    cursor = connection.execute(
        "UPDATE products SET quantity = ? WHERE id = ? AND track_inventory = 1",
        (max(0, int(quantity)), int(product_id)),
    )
    return cursor.rowcount == 1


def set_minimum_stock(connection: sqlite3.Connection, product_id: int, minimum_stock: int) -> None:
    connection.execute(
        "UPDATE products SET minimum_stock = ? WHERE id = ?",
        (max(0, int(minimum_stock)), int(product_id)),
    )


def set_tracking(connection: sqlite3.Connection, product_id: int, track_inventory: bool) -> None:
    connection.execute(
        "UPDATE products SET track_inventory = ? WHERE id = ?",
        (int(track_inventory), int(product_id)),
    )


def set_active(connection: sqlite3.Connection, product_id: int, is_active: bool) -> None:
    connection.execute(
        "UPDATE products SET is_active = ? WHERE id = ?",
        (int(is_active), int(product_id)),
    )


def _row_to_product(row: sqlite3.Row) -> ProductRef:
    return ProductRef(
        id=int(row["id"]),
        owner_id=row["owner_id"],
        sku=row["sku"],
        name=row["name"],
        description=row["description"] or "",
        unit=row["unit"] or "piece",
        cost_price=int(row["cost_price"]),
        selling_price=int(row["selling_price"]),
        tax_rate=float(row["tax_rate"] or 0.0),
        quantity=int(row["quantity"]),
        minimum_stock=int(row["minimum_stock"]),
        track_inventory=bool(row["track_inventory"]),
        is_active=bool(row["is_active"]),
    )
