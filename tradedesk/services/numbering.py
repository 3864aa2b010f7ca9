"""Per-owner document numbering.

Numbers look like ``ORD/2610/0007`` for orders and ``INV/261018/0003`` for
invoices. The trailing sequence is a persisted counter per (owner, kind); it is
cumulative and is never reset when the month or day segment changes.
"""
from __future__ import annotations

import re
import sqlite3
import time
from datetime import date
from typing import Callable, Dict, Optional, TypeVar

from ..data import counter_repository
from ..data.database import transaction
from ..errors import InternalError, NumberingConflict, ValidationError
from ..utils.logger import get_logger

DOCUMENT_KINDS = ("order", "invoice")

_PREFIXES: Dict[str, str] = {
    "order": "ORD",
    "invoice": "INV",
}
_SEQUENCE_PATTERN = re.compile(r"(\d+)(?!.*\d)")
_MAX_ATTEMPTS = 3
_BACKOFF_SECONDS = 0.05

logger = get_logger("numbering")

T = TypeVar("T")


def format_document_number(kind: str, on_date: date, sequence: int) -> str:
    prefix = _prefix_for(kind)
    period = on_date.strftime("%y%m%d" if kind == "invoice" else "%y%m")
    return f"{prefix}/{period}/{sequence:04d}"


def next_document_number(connection: sqlite3.Connection, owner_id: str, kind: str, on_date: date) -> str:
    """Allocate the next number; must run inside a write transaction."""
    _prefix_for(kind)
    sequence = counter_repository.increment(connection, owner_id, kind)
    number = format_document_number(kind, on_date, sequence)
    if counter_repository.number_exists(connection, owner_id, kind, number):
        raise NumberingConflict(owner_id, kind, number)
    return number


def preview_next_document_number(owner_id: str, kind: str, on_date: Optional[date] = None) -> str:
    _prefix_for(kind)
    current = counter_repository.peek(owner_id, kind)
    return format_document_number(kind, on_date or date.today(), current + 1)


def resync_counter(owner_id: str, kind: str) -> int:
    """Move the counter past the highest sequence already issued."""
    with transaction() as connection:
        highest = 0
        for number in counter_repository.list_numbers(connection, owner_id, kind):
            sequence = _extract_sequence_value(number)
            if sequence is not None and sequence > highest:
                highest = sequence
        counter_repository.raise_to(connection, owner_id, kind, highest)
    return highest


def run_with_numbering_retry(owner_id: str, kind: str, operation: Callable[[], T]) -> T:
    """Run a write that allocates a number, retrying numbering collisions."""
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            return operation()
        except NumberingConflict as exc:
            logger.warning("Numbering conflict on attempt %s: %s", attempt, exc)
            if attempt == _MAX_ATTEMPTS:
                raise InternalError(f"Could not allocate a unique {kind} number for {owner_id}") from exc
            resync_counter(owner_id, kind)
            time.sleep(_BACKOFF_SECONDS * (2 ** (attempt - 1)))
    raise InternalError(f"Could not allocate a unique {kind} number for {owner_id}")


def _prefix_for(kind: str) -> str:
    try:
        return _PREFIXES[kind]
    except KeyError as exc:
        raise ValidationError(f"Unknown document kind: {kind!r}") from exc


def _extract_sequence_value(number: str) -> Optional[int]:
    match = _SEQUENCE_PATTERN.search(number)
    if match:
        return int(match.group(1))
    return None
