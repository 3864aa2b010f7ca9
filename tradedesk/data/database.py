from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..config import Config


def _get_storage_directory() -> Path:
    target = Config.storage_root()
    target.mkdir(parents=True, exist_ok=True)
    return target


def get_database_path() -> Path:
    override = Config.database_path_override()
    if override is not None:
        override.parent.mkdir(parents=True, exist_ok=True)
        return override
    return _get_storage_directory() / Config.DB_FILE


def create_connection() -> sqlite3.Connection:
    # Autocommit mode: writers open their own BEGIN IMMEDIATE via transaction().
    connection = sqlite3.connect(
        get_database_path(),
        timeout=Config.BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
    )
    connection.row_factory = sqlite3.Row
    _apply_pragmas(connection)
    return connection


def _apply_pragmas(connection: sqlite3.Connection) -> None:
    cursor = connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON;")
    cursor.execute(f"PRAGMA busy_timeout = {int(Config.BUSY_TIMEOUT_SECONDS * 1000)};")
    cursor.close()


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Read-only helper that always closes its connection."""
    connection = create_connection()
    try:
        yield connection
    finally:
        connection.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Single write transaction; takes the database write lock up front."""
    connection = create_connection()
    try:
        connection.execute("BEGIN IMMEDIATE")
        try:
            yield connection
        except BaseException:
            connection.execute("ROLLBACK")
            raise
        else:
            connection.execute("COMMIT")
    finally:
        connection.close()


def initialize() -> None:
    with connect() as connection:
        connection.execute("PRAGMA journal_mode = WAL;")
        cursor = connection.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS settings (
                owner_id TEXT NOT NULL DEFAULT '',
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (owner_id, key)
            );

            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                phone TEXT NOT NULL DEFAULT '',
                email TEXT NOT NULL DEFAULT '',
                street TEXT NOT NULL DEFAULT '',
                city TEXT NOT NULL DEFAULT '',
                state TEXT NOT NULL DEFAULT '',
                postal_code TEXT NOT NULL DEFAULT '',
                country TEXT NOT NULL DEFAULT 'India',
                is_active INTEGER NOT NULL DEFAULT 1,
                total_orders INTEGER NOT NULL DEFAULT 0,
                total_spent INTEGER NOT NULL DEFAULT 0,
                average_order_value INTEGER NOT NULL DEFAULT 0,
                last_order_date TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_customers_owner
            ON customers(owner_id);

            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                sku TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                unit TEXT NOT NULL DEFAULT 'piece',
                cost_price INTEGER NOT NULL DEFAULT 0,
                selling_price INTEGER NOT NULL DEFAULT 0,
                tax_rate REAL NOT NULL DEFAULT 0,
                quantity INTEGER NOT NULL DEFAULT 0,
                minimum_stock INTEGER NOT NULL DEFAULT 10,
                track_inventory INTEGER NOT NULL DEFAULT 1,
                is_active INTEGER NOT NULL DEFAULT 1,
                UNIQUE (owner_id, sku)
            );

            CREATE TABLE IF NOT EXISTS document_counters (
                owner_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                value INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (owner_id, kind)
            );

            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                customer_id INTEGER NOT NULL,
                order_number TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                payment_status TEXT NOT NULL DEFAULT 'pending',
                payment_method TEXT NOT NULL DEFAULT 'cod',
                subtotal INTEGER NOT NULL DEFAULT 0,
                total_discount INTEGER NOT NULL DEFAULT 0,
                total_tax INTEGER NOT NULL DEFAULT 0,
                shipping INTEGER NOT NULL DEFAULT 0,
                packaging INTEGER NOT NULL DEFAULT 0,
                total INTEGER NOT NULL DEFAULT 0,
                amount_paid INTEGER NOT NULL DEFAULT 0,
                amount_due INTEGER NOT NULL DEFAULT 0,
                currency TEXT NOT NULL DEFAULT 'INR',
                carrier TEXT NOT NULL DEFAULT '',
                tracking_number TEXT NOT NULL DEFAULT '',
                tracking_url TEXT NOT NULL DEFAULT '',
                estimated_delivery TEXT,
                actual_delivery TEXT,
                shipping_address TEXT NOT NULL DEFAULT '{}',
                internal_notes TEXT NOT NULL DEFAULT '',
                customer_notes TEXT NOT NULL DEFAULT '',
                source TEXT NOT NULL DEFAULT 'manual',
                cancelled_at TEXT,
                cancellation_reason TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (owner_id, order_number),
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            );

            CREATE INDEX IF NOT EXISTS idx_orders_owner_status
            ON orders(owner_id, status);

            CREATE TABLE IF NOT EXISTS order_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                product_id INTEGER,
                product_name TEXT NOT NULL,
                sku TEXT NOT NULL DEFAULT '',
                quantity INTEGER NOT NULL,
                unit_price INTEGER NOT NULL,
                discount INTEGER NOT NULL DEFAULT 0,
                tax_rate REAL NOT NULL DEFAULT 0,
                tax_amount INTEGER NOT NULL DEFAULT 0,
                total INTEGER NOT NULL,
                notes TEXT NOT NULL DEFAULT '',
                stock_reserved INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE SET NULL
            );

            CREATE INDEX IF NOT EXISTS idx_order_items_order_id
            ON order_items(order_id);

            CREATE TABLE IF NOT EXISTS order_tracking (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                status TEXT NOT NULL,
                location TEXT NOT NULL DEFAULT '',
                notes TEXT NOT NULL DEFAULT '',
                timestamp TEXT NOT NULL,
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_order_tracking_order_id
            ON order_tracking(order_id);

            CREATE TABLE IF NOT EXISTS order_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL DEFAULT '',
                order_id INTEGER,
                order_number TEXT NOT NULL,
                event_type TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                amount_delta INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_order_history_order_number
            ON order_history(order_number);

            CREATE INDEX IF NOT EXISTS idx_order_history_created_at
            ON order_history(created_at);

            CREATE TABLE IF NOT EXISTS invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                order_id INTEGER,
                customer_id INTEGER NOT NULL,
                invoice_number TEXT NOT NULL,
                invoice_type TEXT NOT NULL DEFAULT 'invoice',
                status TEXT NOT NULL DEFAULT 'draft',
                business_details TEXT NOT NULL DEFAULT '{}',
                customer_details TEXT NOT NULL DEFAULT '{}',
                subtotal INTEGER NOT NULL DEFAULT 0,
                total_discount INTEGER NOT NULL DEFAULT 0,
                total_tax INTEGER NOT NULL DEFAULT 0,
                tax_breakup TEXT NOT NULL DEFAULT '[]',
                shipping INTEGER NOT NULL DEFAULT 0,
                packaging INTEGER NOT NULL DEFAULT 0,
                adjustment INTEGER NOT NULL DEFAULT 0,
                total INTEGER NOT NULL DEFAULT 0,
                amount_in_words TEXT NOT NULL DEFAULT '',
                currency TEXT NOT NULL DEFAULT 'INR',
                payment_status TEXT NOT NULL DEFAULT 'pending',
                payment_method TEXT NOT NULL DEFAULT '',
                paid_amount INTEGER NOT NULL DEFAULT 0,
                paid_date TEXT,
                due_date TEXT NOT NULL,
                reminder_sent_at TEXT,
                issue_date TEXT NOT NULL,
                terms TEXT NOT NULL DEFAULT '',
                footer TEXT NOT NULL DEFAULT '',
                source TEXT NOT NULL DEFAULT 'manual',
                sent_at TEXT,
                cancellation_reason TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (owner_id, invoice_number),
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE SET NULL,
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            );

            CREATE INDEX IF NOT EXISTS idx_invoices_owner_payment_status
            ON invoices(owner_id, payment_status);

            CREATE TABLE IF NOT EXISTS invoice_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_id INTEGER NOT NULL,
                product_id INTEGER,
                description TEXT NOT NULL,
                sku TEXT NOT NULL DEFAULT '',
                quantity INTEGER NOT NULL,
                unit TEXT NOT NULL DEFAULT 'piece',
                unit_price INTEGER NOT NULL,
                discount INTEGER NOT NULL DEFAULT 0,
                tax_rate REAL NOT NULL DEFAULT 0,
                tax_amount INTEGER NOT NULL DEFAULT 0,
                total INTEGER NOT NULL,
                FOREIGN KEY(invoice_id) REFERENCES invoices(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE SET NULL
            );

            CREATE INDEX IF NOT EXISTS idx_invoice_items_invoice_id
            ON invoice_items(invoice_id);

            CREATE TABLE IF NOT EXISTS invoice_payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                invoice_id INTEGER NOT NULL,
                amount INTEGER NOT NULL,
                method TEXT NOT NULL,
                reference TEXT NOT NULL DEFAULT '',
                notes TEXT NOT NULL DEFAULT '',
                paid_at TEXT NOT NULL,
                FOREIGN KEY(invoice_id) REFERENCES invoices(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_invoice_payments_invoice_id
            ON invoice_payments(invoice_id);
            """
        )

        _ensure_column(connection, "customers", "gstin", "TEXT NOT NULL DEFAULT ''")
        _ensure_column(connection, "invoices", "cancellation_reason", "TEXT NOT NULL DEFAULT ''")

        cursor.close()


def _ensure_column(connection: sqlite3.Connection, table: str, column: str, definition: str) -> None:
    info = connection.execute(f"PRAGMA table_info({table});").fetchall()
    if not any(row[1] == column for row in info):
        connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition};")
