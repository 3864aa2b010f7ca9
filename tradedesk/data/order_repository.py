from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import date, datetime
from typing import Dict, List, Optional

from ..errors import NumberingConflict
from ..models.order_models import (
    TERMINAL_ORDER_STATUSES,
    Address,
    LineItemSnapshot,
    Order,
    OrderHistoryEvent,
    OrderPricing,
    TrackingEvent,
)
from .database import connect

_DATE_FORMAT = "%Y-%m-%d"

_ORDER_COLUMNS = """
    id,
    owner_id,
    customer_id,
    order_number,
    status,
    payment_status,
    payment_method,
    subtotal,
    total_discount,
    total_tax,
    shipping,
    packaging,
    total,
    amount_paid,
    currency,
    carrier,
    tracking_number,
    tracking_url,
    estimated_delivery,
    actual_delivery,
    shipping_address,
    internal_notes,
    customer_notes,
    source,
    cancelled_at,
    cancellation_reason,
    created_at,
    updated_at
"""

_TERMINAL_PLACEHOLDERS = ",".join("?" for _ in TERMINAL_ORDER_STATUSES)
_TERMINAL_VALUES = tuple(sorted(TERMINAL_ORDER_STATUSES))


def insert_order(connection: sqlite3.Connection, order: Order) -> int:
    now = _timestamp(order.created_at)
    pricing = order.pricing
    try:
        cursor = connection.execute(
            """
            INSERT INTO orders (
                owner_id,
                customer_id,
                order_number,
                status,
                payment_status,
                payment_method,
                subtotal,
                total_discount,
                total_tax,
                shipping,
                packaging,
                total,
                amount_paid,
                amount_due,
                currency,
                shipping_address,
                internal_notes,
                customer_notes,
                source,
                created_at,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                order.owner_id,
                int(order.customer_id),
                order.order_number,
                order.status,
                order.payment_status,
                order.payment_method,
                pricing.subtotal,
                pricing.total_discount,
                pricing.total_tax,
                pricing.shipping,
                pricing.packaging,
                pricing.total,
                pricing.amount_paid,
                pricing.amount_due,
                pricing.currency,
                json.dumps(asdict(order.shipping_address)),
                order.internal_notes.strip(),
                order.customer_notes.strip(),
                order.source,
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError as exc:
        if "order_number" in str(exc):
            raise NumberingConflict(order.owner_id, "order", order.order_number) from exc
        raise
    order_id = int(cursor.lastrowid)

    connection.executemany(
        """
        INSERT INTO order_items (
            order_id,
            product_id,
            product_name,
            sku,
            quantity,
            unit_price,
            discount,
            tax_rate,
            tax_amount,
            total,
            notes,
            stock_reserved
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                order_id,
                item.product_id,
                item.product_name,
                item.sku,
                item.quantity,
                item.unit_price,
                item.discount,
                item.tax_rate,
                item.tax_amount,
                item.total,
                item.notes.strip(),
                int(item.stock_reserved),
            )
            for item in order.items
        ],
    )
    return order_id


def find_order(connection: sqlite3.Connection, order_id: int) -> Optional[Order]:
    row = connection.execute(
        f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ? LIMIT 1",
        (int(order_id),),
    ).fetchone()
    if row is None:
        return None

    item_rows = connection.execute(
        """
        SELECT
            product_id,
            product_name,
            sku,
            quantity,
            unit_price,
            discount,
            tax_rate,
            tax_amount,
            total,
            notes,
            stock_reserved
        FROM order_items
        WHERE order_id = ?
        ORDER BY id
        """,
        (int(order_id),),
    ).fetchall()

    tracking_rows = connection.execute(
        """
        SELECT status, location, notes, timestamp
        FROM order_tracking
        WHERE order_id = ?
        ORDER BY id
        """,
        (int(order_id),),
    ).fetchall()

    order = _row_to_order(row)
    order.items = [_row_to_item(item_row) for item_row in item_rows]
    order.tracking_history = [
        TrackingEvent(
            status=tracking_row["status"],
            timestamp=_parse_timestamp(tracking_row["timestamp"]),
            location=tracking_row["location"] or "",
            notes=tracking_row["notes"] or "",
        )
        for tracking_row in tracking_rows
    ]
    return order


def fetch_order(order_id: int) -> Optional[Order]:
    with connect() as connection:
        return find_order(connection, order_id)


def list_orders(
    owner_id: str,
    *,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Order]:
    sql = [f"SELECT {_ORDER_COLUMNS} FROM orders WHERE owner_id = ?"]
    params: List[object] = [owner_id]

    if status:
        sql.append("AND status = ?")
        params.append(status.strip().lower())

    if customer_id is not None:
        sql.append("AND customer_id = ?")
        params.append(int(customer_id))

    if search:
        sql.append("AND UPPER(order_number) LIKE UPPER(?)")
        params.append(f"%{search.strip()}%")

    sql.append("ORDER BY datetime(created_at) DESC, id DESC")
    sql.append("LIMIT ?")
    params.append(int(limit))

    with connect() as connection:
        rows = connection.execute("\n".join(sql), params).fetchall()
        orders = [_row_to_order(row) for row in rows]
        if orders:
            items = _items_for(connection, [order.id for order in orders])
            for order in orders:
                order.items = items.get(order.id, [])
    return orders


def update_status(connection: sqlite3.Connection, order_id: int, status: str, updated_at: datetime) -> bool:
    """Move a non-terminal order to ``status``; False when it was already terminal."""
    cursor = connection.execute(
        f"""
        UPDATE orders
        SET status = ?,
            updated_at = ?
        WHERE id = ?
          AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
        """,
        (status, _timestamp(updated_at), int(order_id), *_TERMINAL_VALUES),
    )
    return cursor.rowcount == 1


def mark_cancelled(connection: sqlite3.Connection, order_id: int, reason: str, cancelled_at: datetime) -> bool:
    cursor = connection.execute(
        f"""
        UPDATE orders
        SET status = 'cancelled',
            cancellation_reason = ?,
            cancelled_at = ?,
            updated_at = ?
        WHERE id = ?
          AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
        """,
        (
            reason.strip(),
            _timestamp(cancelled_at),
            _timestamp(cancelled_at),
            int(order_id),
            *_TERMINAL_VALUES,
        ),
    )
    return cursor.rowcount == 1


def update_tracking(
    connection: sqlite3.Connection,
    order_id: int,
    *,
    carrier: Optional[str] = None,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
    estimated_delivery: Optional[date] = None,
    actual_delivery: Optional[datetime] = None,
) -> None:
    assignments: List[str] = []
    params: List[object] = []
    for column, value in (
        ("carrier", carrier),
        ("tracking_number", tracking_number),
        ("tracking_url", tracking_url),
    ):
        if value is not None:
            assignments.append(f"{column} = ?")
            params.append(value.strip())
    if estimated_delivery is not None:
        assignments.append("estimated_delivery = ?")
        params.append(estimated_delivery.strftime(_DATE_FORMAT))
    if actual_delivery is not None:
        assignments.append("actual_delivery = ?")
        params.append(_timestamp(actual_delivery))
    if not assignments:
        return

    params.append(int(order_id))
    connection.execute(
        f"UPDATE orders SET {', '.join(assignments)} WHERE id = ?",
        params,
    )


def update_payment(
    connection: sqlite3.Connection,
    order_id: int,
    *,
    amount_paid: int,
    amount_due: int,
    payment_status: str,
    updated_at: datetime,
) -> None:
    connection.execute(
        """
        UPDATE orders
        SET amount_paid = ?,
            amount_due = ?,
            payment_status = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (int(amount_paid), int(amount_due), payment_status, _timestamp(updated_at), int(order_id)),
    )


def set_payment_status(connection: sqlite3.Connection, order_id: int, payment_status: str) -> None:
    connection.execute(
        "UPDATE orders SET payment_status = ? WHERE id = ?",
        (payment_status, int(order_id)),
    )


def append_tracking(connection: sqlite3.Connection, order_id: int, event: TrackingEvent) -> None:
    connection.execute(
        """
        INSERT INTO order_tracking (order_id, status, location, notes, timestamp)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            int(order_id),
            event.status,
            event.location.strip(),
            event.notes.strip(),
            _timestamp(event.timestamp),
        ),
    )


def log_order_event(
    connection: sqlite3.Connection,
    owner_id: str,
    order_id: Optional[int],
    order_number: str,
    event_type: str,
    description: str,
    amount_delta: int,
    created_at: Optional[datetime] = None,
) -> None:
    connection.execute(
        """
        INSERT INTO order_history (
            owner_id,
            order_id,
            order_number,
            event_type,
            description,
            amount_delta,
            created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            owner_id,
            int(order_id) if order_id is not None else None,
            order_number.strip(),
            event_type.strip(),
            description.strip(),
            int(amount_delta),
            _timestamp(created_at),
        ),
    )


def fetch_order_history(
    owner_id: str,
    order_number: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 200,
) -> List[OrderHistoryEvent]:
    sql = [
        """
        SELECT
            id,
            order_id,
            order_number,
            event_type,
            description,
            amount_delta,
            created_at
        FROM order_history
        WHERE owner_id = ?
        """
    ]
    params: List[object] = [owner_id]

    if order_number:
        sql.append("AND UPPER(order_number) LIKE UPPER(?)")
        params.append(f"%{order_number.strip()}%")

    if start_date:
        sql.append("AND DATE(created_at) >= ?")
        params.append(start_date.strftime(_DATE_FORMAT))

    if end_date:
        sql.append("AND DATE(created_at) <= ?")
        params.append(end_date.strftime(_DATE_FORMAT))

    sql.append("ORDER BY datetime(created_at) DESC, id DESC")
    sql.append("LIMIT ?")
    params.append(int(limit))

    with connect() as connection:
        rows = connection.execute("\n".join(sql), params).fetchall()

    return [
        OrderHistoryEvent(
            id=int(row["id"]),
            order_id=(int(row["order_id"]) if row["order_id"] is not None else None),
            order_number=row["order_number"],
            event_type=row["event_type"],
            description=row["description"],
            amount_delta=int(row["amount_delta"] or 0),
            created_at=_parse_timestamp(row["created_at"]),
        )
        for row in rows
    ]


def _items_for(connection: sqlite3.Connection, order_ids: List[int]) -> Dict[int, List[LineItemSnapshot]]:
    placeholder = ",".join("?" for _ in order_ids)
    rows = connection.execute(
        f"""
        SELECT
            order_id,
            product_id,
            product_name,
            sku,
            quantity,
            unit_price,
            discount,
            tax_rate,
            tax_amount,
            total,
            notes,
            stock_reserved
        FROM order_items
        WHERE order_id IN ({placeholder})
        ORDER BY id
        """,
        order_ids,
    ).fetchall()
    grouped: Dict[int, List[LineItemSnapshot]] = {order_id: [] for order_id in order_ids}
    for row in rows:
        grouped[int(row["order_id"])].append(_row_to_item(row))
    return grouped


def _row_to_item(row: sqlite3.Row) -> LineItemSnapshot:
    return LineItemSnapshot(
        product_id=int(row["product_id"]) if row["product_id"] is not None else None,
        product_name=row["product_name"],
        sku=row["sku"] or "",
        quantity=int(row["quantity"]),
        unit_price=int(row["unit_price"]),
        discount=int(row["discount"]),
        tax_rate=float(row["tax_rate"] or 0.0),
        tax_amount=int(row["tax_amount"]),
        total=int(row["total"]),
        notes=row["notes"] or "",
        stock_reserved=bool(row["stock_reserved"]),
    )


def _row_to_order(row: sqlite3.Row) -> Order:
    try:
        address = Address(**json.loads(row["shipping_address"] or "{}"))
    except (TypeError, ValueError):
        address = Address()

    return Order(
        id=int(row["id"]),
        owner_id=row["owner_id"],
        customer_id=int(row["customer_id"]),
        order_number=row["order_number"],
        status=row["status"],
        payment_status=row["payment_status"],
        payment_method=row["payment_method"],
        pricing=OrderPricing(
            subtotal=int(row["subtotal"]),
            total_discount=int(row["total_discount"]),
            total_tax=int(row["total_tax"]),
            shipping=int(row["shipping"]),
            packaging=int(row["packaging"]),
            total=int(row["total"]),
            amount_paid=int(row["amount_paid"]),
            currency=row["currency"] or "INR",
        ),
        carrier=row["carrier"] or "",
        tracking_number=row["tracking_number"] or "",
        tracking_url=row["tracking_url"] or "",
        estimated_delivery=_parse_date(row["estimated_delivery"]) if row["estimated_delivery"] else None,
        actual_delivery=_parse_timestamp(row["actual_delivery"]) if row["actual_delivery"] else None,
        shipping_address=address,
        internal_notes=row["internal_notes"] or "",
        customer_notes=row["customer_notes"] or "",
        source=row["source"] or "manual",
        cancelled_at=_parse_timestamp(row["cancelled_at"]) if row["cancelled_at"] else None,
        cancellation_reason=row["cancellation_reason"] or "",
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _timestamp(value: Optional[datetime]) -> str:
    return (value or datetime.now()).isoformat(sep=" ")


def _parse_date(raw: str) -> date:
    return datetime.strptime(raw, _DATE_FORMAT).date()


def _parse_timestamp(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return datetime.strptime(raw, "%Y-%m-%d %H:%M:%S")
