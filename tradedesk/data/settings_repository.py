from __future__ import annotations

import sqlite3
from typing import Dict, Mapping, Optional

from ..models.order_models import AppSettings
from .database import connect, transaction

GLOBAL_OWNER = ""
OVERPAYMENT_POLICIES = ("accept", "reject")

_DEFAULTS: Dict[str, str] = {
    "business_name": "TradeDesk",
    "business_phone": "",
    "business_email": "",
    "business_street": "",
    "business_city": "",
    "business_state": "",
    "business_postal_code": "",
    "business_country": "India",
    "business_gstin": "",
    "currency": "INR",
    "payment_terms_days": "30",
    "invoice_terms": "Payment due within 30 days of invoice date.",
    "invoice_footer": "Thank you for your business!",
    "overpayment_policy": "accept",
    "notifications_enabled": "1",
}


def get_setting(key: str, owner_id: str = GLOBAL_OWNER, *, connection: Optional[sqlite3.Connection] = None) -> str:
    """Owner value, else the global value, else the built-in default."""
    key = key.strip()
    if connection is None:
        with connect() as own_connection:
            return get_setting(key, owner_id, connection=own_connection)

    row = connection.execute(
        """
        SELECT value
        FROM settings
        WHERE key = ? AND owner_id IN (?, ?)
        ORDER BY CASE WHEN owner_id = ? THEN 0 ELSE 1 END
        LIMIT 1
        """,
        (key, owner_id, GLOBAL_OWNER, owner_id),
    ).fetchone()
    if row is None:
        return _DEFAULTS.get(key, "")
    return row["value"]


def set_setting(key: str, value: str, owner_id: str = GLOBAL_OWNER) -> None:
    update_settings({key: value}, owner_id)


def update_settings(values: Mapping[str, object], owner_id: str = GLOBAL_OWNER) -> None:
    policy = values.get("overpayment_policy")
    if policy is not None and str(policy).strip().lower() not in OVERPAYMENT_POLICIES:
        raise ValueError(f"Unknown over-payment policy: {policy!r}")

    with transaction() as connection:
        for key, value in values.items():
            if isinstance(value, bool):
                value = "1" if value else "0"
            connection.execute(
                """
                INSERT INTO settings (owner_id, key, value)
                VALUES (?, ?, ?)
                ON CONFLICT(owner_id, key) DO UPDATE SET value = excluded.value
                """,
                (owner_id, key.strip(), str(value)),
            )


def get_app_settings(owner_id: str = GLOBAL_OWNER, *, connection: Optional[sqlite3.Connection] = None) -> AppSettings:
    if connection is None:
        with connect() as own_connection:
            return get_app_settings(owner_id, connection=own_connection)

    def read(key: str) -> str:
        return get_setting(key, owner_id, connection=connection).strip() or _DEFAULTS[key]

    try:
        terms_days = int(read("payment_terms_days"))
    except ValueError:
        terms_days = int(_DEFAULTS["payment_terms_days"])

    policy = read("overpayment_policy").lower()
    if policy not in OVERPAYMENT_POLICIES:
        policy = _DEFAULTS["overpayment_policy"]

    notifications_raw = read("notifications_enabled").lower()

    return AppSettings(
        business_name=read("business_name"),
        business_phone=get_setting("business_phone", owner_id, connection=connection).strip(),
        business_email=get_setting("business_email", owner_id, connection=connection).strip(),
        business_street=get_setting("business_street", owner_id, connection=connection).strip(),
        business_city=get_setting("business_city", owner_id, connection=connection).strip(),
        business_state=get_setting("business_state", owner_id, connection=connection).strip(),
        business_postal_code=get_setting("business_postal_code", owner_id, connection=connection).strip(),
        business_country=read("business_country"),
        business_gstin=get_setting("business_gstin", owner_id, connection=connection).strip().upper(),
        currency=read("currency").upper(),
        payment_terms_days=max(0, terms_days),
        invoice_terms=read("invoice_terms"),
        invoice_footer=read("invoice_footer"),
        overpayment_policy=policy,
        notifications_enabled=notifications_raw not in {"0", "false", "no"},
    )
