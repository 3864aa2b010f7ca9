from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import date, datetime
from typing import Dict, List, Optional

from ..errors import NumberingConflict
from ..models.invoice_models import (
    Invoice,
    InvoiceLineItem,
    InvoicePricing,
    PartyDetails,
    PaymentDetails,
    PaymentRecord,
    TaxBreakupEntry,
)
from .database import connect

_DATE_FORMAT = "%Y-%m-%d"

_INVOICE_COLUMNS = """
    id,
    owner_id,
    order_id,
    customer_id,
    invoice_number,
    invoice_type,
    status,
    business_details,
    customer_details,
    subtotal,
    total_discount,
    total_tax,
    tax_breakup,
    shipping,
    packaging,
    adjustment,
    total,
    amount_in_words,
    currency,
    payment_status,
    payment_method,
    paid_amount,
    paid_date,
    due_date,
    reminder_sent_at,
    issue_date,
    terms,
    footer,
    source,
    sent_at,
    cancellation_reason,
    created_at,
    updated_at
"""


def insert_invoice(connection: sqlite3.Connection, invoice: Invoice) -> int:
    now = _timestamp(invoice.created_at)
    pricing = invoice.pricing
    payment = invoice.payment_details
    try:
        cursor = connection.execute(
            """
            INSERT INTO invoices (
                owner_id,
                order_id,
                customer_id,
                invoice_number,
                invoice_type,
                status,
                business_details,
                customer_details,
                subtotal,
                total_discount,
                total_tax,
                tax_breakup,
                shipping,
                packaging,
                adjustment,
                total,
                amount_in_words,
                currency,
                payment_status,
                payment_method,
                paid_amount,
                due_date,
                issue_date,
                terms,
                footer,
                source,
                created_at,
                updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                invoice.owner_id,
                invoice.order_id,
                int(invoice.customer_id),
                invoice.invoice_number,
                invoice.invoice_type,
                invoice.status,
                json.dumps(asdict(invoice.business_details)),
                json.dumps(asdict(invoice.customer_details)),
                pricing.subtotal,
                pricing.total_discount,
                pricing.total_tax,
                json.dumps([asdict(entry) for entry in pricing.tax_breakup]),
                pricing.shipping,
                pricing.packaging,
                pricing.adjustment,
                pricing.total,
                pricing.amount_in_words,
                pricing.currency,
                payment.status,
                payment.method,
                payment.paid_amount,
                payment.due_date.strftime(_DATE_FORMAT),
                invoice.issue_date.strftime(_DATE_FORMAT),
                invoice.terms,
                invoice.footer,
                invoice.source,
                now,
                now,
            ),
        )
    except sqlite3.IntegrityError as exc:
        if "invoice_number" in str(exc):
            raise NumberingConflict(invoice.owner_id, "invoice", invoice.invoice_number) from exc
        raise
    invoice_id = int(cursor.lastrowid)

    connection.executemany(
        """
        INSERT INTO invoice_items (
            invoice_id,
            product_id,
            description,
            sku,
            quantity,
            unit,
            unit_price,
            discount,
            tax_rate,
            tax_amount,
            total
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                invoice_id,
                item.product_id,
                item.description,
                item.sku,
                item.quantity,
                item.unit,
                item.unit_price,
                item.discount,
                item.tax_rate,
                item.tax_amount,
                item.total,
            )
            for item in invoice.items
        ],
    )
    return invoice_id


def find_invoice(connection: sqlite3.Connection, invoice_id: int) -> Optional[Invoice]:
    row = connection.execute(
        f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE id = ? LIMIT 1",
        (int(invoice_id),),
    ).fetchone()
    if row is None:
        return None
    invoice = _row_to_invoice(row)
    _attach_children(connection, [invoice])
    return invoice


def fetch_invoice(invoice_id: int) -> Optional[Invoice]:
    with connect() as connection:
        return find_invoice(connection, invoice_id)


def find_invoice_for_order(connection: sqlite3.Connection, order_id: int) -> Optional[Invoice]:
    row = connection.execute(
        f"""
        SELECT {_INVOICE_COLUMNS}
        FROM invoices
        WHERE order_id = ?
          AND status <> 'cancelled'
        ORDER BY id DESC
        LIMIT 1
        """,
        (int(order_id),),
    ).fetchone()
    if row is None:
        return None
    invoice = _row_to_invoice(row)
    _attach_children(connection, [invoice])
    return invoice


def list_invoices(
    owner_id: str,
    *,
    payment_status: Optional[str] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Invoice]:
    sql = [f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE owner_id = ?"]
    params: List[object] = [owner_id]

    if payment_status:
        sql.append("AND payment_status = ?")
        params.append(payment_status.strip().lower())

    if customer_id is not None:
        sql.append("AND customer_id = ?")
        params.append(int(customer_id))

    if search:
        sql.append("AND UPPER(invoice_number) LIKE UPPER(?)")
        params.append(f"%{search.strip()}%")

    sql.append("ORDER BY issue_date DESC, id DESC")
    sql.append("LIMIT ?")
    params.append(int(limit))

    with connect() as connection:
        rows = connection.execute("\n".join(sql), params).fetchall()
        invoices = [_row_to_invoice(row) for row in rows]
        _attach_children(connection, invoices)
    return invoices


def list_open_invoice_ids(connection: sqlite3.Connection, due_before: date) -> List[int]:
    """Unsettled invoices whose due date is strictly before ``due_before``."""
    rows = connection.execute(
        """
        SELECT id
        FROM invoices
        WHERE payment_status IN ('pending', 'partial', 'overdue')
          AND status <> 'cancelled'
          AND due_date < ?
        ORDER BY due_date ASC, id ASC
        """,
        (due_before.strftime(_DATE_FORMAT),),
    ).fetchall()
    return [int(row["id"]) for row in rows]


def update_status(connection: sqlite3.Connection, invoice_id: int, status: str, updated_at: datetime) -> None:
    connection.execute(
        "UPDATE invoices SET status = ?, updated_at = ? WHERE id = ?",
        (status, _timestamp(updated_at), int(invoice_id)),
    )


def mark_sent(connection: sqlite3.Connection, invoice_id: int, status: str, sent_at: datetime) -> None:
    connection.execute(
        "UPDATE invoices SET status = ?, sent_at = ?, updated_at = ? WHERE id = ?",
        (status, _timestamp(sent_at), _timestamp(sent_at), int(invoice_id)),
    )


def mark_overdue(connection: sqlite3.Connection, invoice_id: int, payment_status: str, updated_at: datetime) -> None:
    connection.execute(
        """
        UPDATE invoices
        SET status = 'overdue',
            payment_status = ?,
            updated_at = ?
        WHERE id = ?
          AND status NOT IN ('paid', 'cancelled')
        """,
        (payment_status, _timestamp(updated_at), int(invoice_id)),
    )


def mark_cancelled(connection: sqlite3.Connection, invoice_id: int, reason: str, cancelled_at: datetime) -> None:
    connection.execute(
        """
        UPDATE invoices
        SET status = 'cancelled',
            payment_status = 'cancelled',
            cancellation_reason = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (reason.strip(), _timestamp(cancelled_at), int(invoice_id)),
    )


def update_payment(
    connection: sqlite3.Connection,
    invoice_id: int,
    *,
    status: str,
    payment_status: str,
    payment_method: str,
    paid_amount: int,
    paid_date: Optional[datetime],
    updated_at: datetime,
) -> None:
    connection.execute(
        """
        UPDATE invoices
        SET status = ?,
            payment_status = ?,
            payment_method = ?,
            paid_amount = ?,
            paid_date = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            status,
            payment_status,
            payment_method,
            int(paid_amount),
            _timestamp(paid_date) if paid_date else None,
            _timestamp(updated_at),
            int(invoice_id),
        ),
    )


def update_totals(
    connection: sqlite3.Connection,
    invoice_id: int,
    *,
    adjustment: int,
    total: int,
    amount_in_words: str,
    status: str,
    payment_status: str,
    paid_date: Optional[datetime],
    updated_at: datetime,
) -> None:
    connection.execute(
        """
        UPDATE invoices
        SET adjustment = ?,
            total = ?,
            amount_in_words = ?,
            status = ?,
            payment_status = ?,
            paid_date = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            int(adjustment),
            int(total),
            amount_in_words,
            status,
            payment_status,
            _timestamp(paid_date) if paid_date else None,
            _timestamp(updated_at),
            int(invoice_id),
        ),
    )


def mark_reminder_sent(connection: sqlite3.Connection, invoice_id: int, sent_at: datetime) -> None:
    connection.execute(
        "UPDATE invoices SET reminder_sent_at = ? WHERE id = ?",
        (_timestamp(sent_at), int(invoice_id)),
    )


def insert_payment(connection: sqlite3.Connection, invoice_id: int, payment: PaymentRecord) -> None:
    connection.execute(
        """
        INSERT INTO invoice_payments (invoice_id, amount, method, reference, notes, paid_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            int(invoice_id),
            int(payment.amount),
            payment.method,
            payment.reference.strip(),
            payment.notes.strip(),
            _timestamp(payment.date),
        ),
    )


def _attach_children(connection: sqlite3.Connection, invoices: List[Invoice]) -> None:
    if not invoices:
        return
    invoice_ids = [invoice.id for invoice in invoices]
    placeholder = ",".join("?" for _ in invoice_ids)

    items: Dict[int, List[InvoiceLineItem]] = {invoice_id: [] for invoice_id in invoice_ids}
    for row in connection.execute(
        f"""
        SELECT
            invoice_id,
            product_id,
            description,
            sku,
            quantity,
            unit,
            unit_price,
            discount,
            tax_rate,
            tax_amount,
            total
        FROM invoice_items
        WHERE invoice_id IN ({placeholder})
        ORDER BY id
        """,
        invoice_ids,
    ).fetchall():
        items[int(row["invoice_id"])].append(
            InvoiceLineItem(
                description=row["description"],
                quantity=int(row["quantity"]),
                unit_price=int(row["unit_price"]),
                total=int(row["total"]),
                product_id=int(row["product_id"]) if row["product_id"] is not None else None,
                sku=row["sku"] or "",
                unit=row["unit"] or "piece",
                discount=int(row["discount"]),
                tax_rate=float(row["tax_rate"] or 0.0),
                tax_amount=int(row["tax_amount"]),
            )
        )

    payments: Dict[int, List[PaymentRecord]] = {invoice_id: [] for invoice_id in invoice_ids}
    for row in connection.execute(
        f"""
        SELECT invoice_id, amount, method, reference, notes, paid_at
        FROM invoice_payments
        WHERE invoice_id IN ({placeholder})
        ORDER BY id
        """,
        invoice_ids,
    ).fetchall():
        payments[int(row["invoice_id"])].append(
            PaymentRecord(
                amount=int(row["amount"]),
                method=row["method"],
                date=_parse_timestamp(row["paid_at"]),
                reference=row["reference"] or "",
                notes=row["notes"] or "",
            )
        )

    for invoice in invoices:
        invoice.items = items.get(invoice.id, [])
        invoice.payment_details.payments = payments.get(invoice.id, [])


def _row_to_invoice(row: sqlite3.Row) -> Invoice:
    breakup = [TaxBreakupEntry(**entry) for entry in json.loads(row["tax_breakup"] or "[]")]
    return Invoice(
        id=int(row["id"]),
        owner_id=row["owner_id"],
        order_id=int(row["order_id"]) if row["order_id"] is not None else None,
        customer_id=int(row["customer_id"]),
        invoice_number=row["invoice_number"],
        invoice_type=row["invoice_type"],
        status=row["status"],
        items=[],
        business_details=_parse_party(row["business_details"]),
        customer_details=_parse_party(row["customer_details"]),
        pricing=InvoicePricing(
            subtotal=int(row["subtotal"]),
            total_discount=int(row["total_discount"]),
            total_tax=int(row["total_tax"]),
            tax_breakup=breakup,
            shipping=int(row["shipping"]),
            packaging=int(row["packaging"]),
            adjustment=int(row["adjustment"]),
            total=int(row["total"]),
            amount_in_words=row["amount_in_words"] or "",
            currency=row["currency"] or "INR",
        ),
        payment_details=PaymentDetails(
            due_date=_parse_date(row["due_date"]),
            status=row["payment_status"],
            method=row["payment_method"] or "",
            paid_amount=int(row["paid_amount"]),
            paid_date=_parse_timestamp(row["paid_date"]) if row["paid_date"] else None,
            reminder_sent_at=_parse_timestamp(row["reminder_sent_at"]) if row["reminder_sent_at"] else None,
        ),
        issue_date=_parse_date(row["issue_date"]),
        terms=row["terms"] or "",
        footer=row["footer"] or "",
        source=row["source"] or "manual",
        sent_at=_parse_timestamp(row["sent_at"]) if row["sent_at"] else None,
        cancellation_reason=row["cancellation_reason"] or "",
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _parse_party(raw: Optional[str]) -> PartyDetails:
    try:
        values = json.loads(raw or "{}")
        return PartyDetails(**values)
    except (TypeError, ValueError):
        return PartyDetails(name="")


def _timestamp(value: Optional[datetime]) -> str:
    return (value or datetime.now()).isoformat(sep=" ")


def _parse_date(raw: str) -> date:
    return datetime.strptime(raw, _DATE_FORMAT).date()


def _parse_timestamp(raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return datetime.strptime(raw, "%Y-%m-%d %H:%M:%S")
