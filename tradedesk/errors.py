from __future__ import annotations

from typing import Optional


class TradeDeskError(Exception):
    """Base class for every error raised by the settlement engine."""


class ValidationError(TradeDeskError, ValueError):
    """Bad input: negative quantities, invalid tax rates, unknown statuses."""


class NotFoundError(TradeDeskError, LookupError):
    """A referenced customer, product, order or invoice does not exist."""


class MissingReferenceError(NotFoundError, ValidationError):
    """A create request names a customer or product that cannot be used."""


class InsufficientStock(TradeDeskError):
    def __init__(self, product_id: int, requested: int, available: int, sku: str = "") -> None:
        label = sku or f"product {product_id}"
        super().__init__(f"Only {available} of {label} available; need {requested}.")
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.sku = sku


class InvalidTransitionError(TradeDeskError):
    def __init__(self, message: str, *, current: Optional[str] = None, requested: Optional[str] = None) -> None:
        super().__init__(message)
        self.current = current
        self.requested = requested


class AlreadyTerminalError(InvalidTransitionError):
    """The document already reached a state that cannot be left."""


class NumberingConflict(TradeDeskError):
    def __init__(self, owner_id: str, kind: str, number: str) -> None:
        super().__init__(f"Document number {number} already issued for {owner_id} ({kind}).")
        self.owner_id = owner_id
        self.kind = kind
        self.number = number


class InternalError(TradeDeskError):
    """Transient failure that survived the internal retry budget."""
