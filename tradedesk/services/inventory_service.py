"""Stock ledger.

Product quantity is only ever written from this module. Every operation is a
single conditional UPDATE on one product row, so it can run inside a caller's
transaction (pass ``connection``) or open a short one of its own.
"""
from __future__ import annotations

import sqlite3
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar, Union

from ..data import product_repository
from ..data.database import transaction
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models.order_models import ProductRef
from ..utils.logger import get_logger
from .pricing import to_minor_units, to_quantity, validate_tax_rate

logger = get_logger("inventory")

T = TypeVar("T")
QuantityMap = Union[Mapping[int, int], Iterable[Tuple[int, int]]]


def register_product(
    owner_id: str,
    sku: str,
    name: str,
    *,
    cost_price: object = 0,
    selling_price: object = 0,
    tax_rate: object = 0,
    quantity: int = 0,
    minimum_stock: int = 10,
    track_inventory: bool = True,
    description: str = "",
    unit: str = "piece",
) -> ProductRef:
    quantity = to_quantity(quantity, field_name="opening quantity", minimum=0)
    minimum_stock = to_quantity(minimum_stock, field_name="minimum stock", minimum=0)
    rate = validate_tax_rate(tax_rate)
    cost = to_minor_units(cost_price, field_name="cost price")
    price = to_minor_units(selling_price, field_name="selling price")
    if cost < 0 or price < 0:
        raise ValidationError("Prices cannot be negative")

    with transaction() as connection:
        try:
            product = product_repository.create_product(
                connection,
                owner_id,
                sku,
                name,
                cost_price=cost,
                selling_price=price,
                tax_rate=float(rate),
                quantity=quantity,
                minimum_stock=minimum_stock,
                track_inventory=track_inventory,
                description=description,
                unit=unit,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    logger.info("Registered product %s (%s) for %s", product.sku, product.id, owner_id)
    return product


def get_product(owner_id: str, product_id: int) -> ProductRef:
    product = product_repository.get_product(owner_id, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(owner_id: str) -> List[ProductRef]:
    return product_repository.list_products(owner_id)


def list_low_stock(owner_id: str) -> List[ProductRef]:
    return product_repository.list_low_stock(owner_id)


def reserve(product_id: int, quantity: int, *, connection: Optional[sqlite3.Connection] = None) -> None:
    """Take ``quantity`` units out of stock; never drives a tracked product negative."""
    quantity = to_quantity(quantity)

    def apply(conn: sqlite3.Connection) -> None:
        product = _load(conn, product_id)
        if not product.track_inventory:
            return
        if not product_repository.decrement_if_available(conn, product.id, quantity):
            current = _load(conn, product_id)
            raise InsufficientStock(product.id, quantity, current.quantity, product.sku)

    _run(connection, apply)


def restore(product_id: int, quantity: int, *, connection: Optional[sqlite3.Connection] = None) -> None:
    quantity = to_quantity(quantity)

    def apply(conn: sqlite3.Connection) -> None:
        product = _load(conn, product_id)
        if product.track_inventory:
            product_repository.increment(conn, product.id, quantity)

    _run(connection, apply)


def set_level(product_id: int, quantity: int, *, connection: Optional[sqlite3.Connection] = None) -> None:
    quantity = to_quantity(quantity, field_name="stock level", minimum=0)

    def apply(conn: sqlite3.Connection) -> None:
        product = _load(conn, product_id)
        if product.track_inventory:
            product_repository.set_quantity(conn, product.id, quantity)
            logger.info("Stock for %s set to %s", product.sku, quantity)

    _run(connection, apply)


def adjust(product_id: int, delta: int, *, connection: Optional[sqlite3.Connection] = None) -> None:
    """Apply a signed correction; the result is clamped at zero."""
    delta = to_quantity(delta, field_name="stock adjustment", minimum=None)

    def apply(conn: sqlite3.Connection) -> None:
        product = _load(conn, product_id)
        if product.track_inventory and delta:
            product_repository.apply_delta(conn, product.id, delta)
            logger.info("Stock for %s adjusted by %s", product.sku, delta)

    _run(connection, apply)


def set_minimum_stock(product_id: int, minimum_stock: int, *, connection: Optional[sqlite3.Connection] = None) -> None:
    minimum_stock = to_quantity(minimum_stock, field_name="minimum stock", minimum=0)

    def apply(conn: sqlite3.Connection) -> None:
        product = _load(conn, product_id)
        if product.track_inventory:
            product_repository.set_minimum_stock(conn, product.id, minimum_stock)

    _run(connection, apply)


def set_tracking(product_id: int, track_inventory: bool) -> None:
    with transaction() as connection:
        product = _load(connection, product_id)
        product_repository.set_tracking(connection, product.id, bool(track_inventory))
    logger.info("Stock tracking for %s %s", product.sku, "enabled" if track_inventory else "disabled")


def set_active(product_id: int, is_active: bool) -> None:
    """Inactive products stay on record but can no longer be ordered."""
    with transaction() as connection:
        product = _load(connection, product_id)
        product_repository.set_active(connection, product.id, bool(is_active))
    logger.info("Product %s marked %s", product.sku, "active" if is_active else "inactive")


def reserve_many(quantities: QuantityMap, *, connection: Optional[sqlite3.Connection] = None) -> None:
    plan = aggregate_quantities(quantities)

    def apply(conn: sqlite3.Connection) -> None:
        for product_id, quantity in plan.items():
            reserve(product_id, quantity, connection=conn)

    _run(connection, apply)


def restore_many(quantities: QuantityMap, *, connection: Optional[sqlite3.Connection] = None) -> None:
    plan = aggregate_quantities(quantities)

    def apply(conn: sqlite3.Connection) -> None:
        for product_id, quantity in plan.items():
            restore(product_id, quantity, connection=conn)

    _run(connection, apply)


def aggregate_quantities(quantities: QuantityMap) -> "OrderedDict[int, int]":
    """Sum quantities per product, ordered by ascending product id."""
    pairs = quantities.items() if isinstance(quantities, Mapping) else quantities
    totals: Dict[int, int] = {}
    for product_id, quantity in pairs:
        quantity = to_quantity(quantity)
        totals[int(product_id)] = totals.get(int(product_id), 0) + quantity
    return OrderedDict(sorted(totals.items()))


def _load(connection: sqlite3.Connection, product_id: int) -> ProductRef:
    product = product_repository.find_product_by_id(connection, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _run(connection: Optional[sqlite3.Connection], operation: Callable[[sqlite3.Connection], T]) -> T:
    if connection is not None:
        return operation(connection)
    with transaction() as own_connection:
        return operation(own_connection)
