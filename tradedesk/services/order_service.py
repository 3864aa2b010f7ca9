from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from ..data import customer_repository, order_repository, product_repository
from ..data.database import transaction
from ..errors import (
    AlreadyTerminalError,
    InvalidTransitionError,
    MissingReferenceError,
    NotFoundError,
    ValidationError,
)
from ..models.order_models import (
    ORDER_SOURCES,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    Address,
    Customer,
    LineItemRequest,
    LineItemSnapshot,
    Order,
    OrderHistoryEvent,
    OrderPricing,
    TrackingEvent,
)
from ..utils.logger import get_logger
from . import inventory_service, notification_service, numbering
from .pricing import (
    LinePrice,
    average,
    format_amount,
    order_total,
    price_line,
    summarize_lines,
    to_minor_units,
    to_quantity,
)

logger = get_logger("orders")

_UNSETTLED_STATUSES = frozenset({"cancelled", "refunded"})


def create_order(
    owner_id: str,
    customer_id: int,
    items: Sequence[LineItemRequest],
    *,
    shipping: object = 0,
    packaging: object = 0,
    amount_paid: object = 0,
    payment_method: str = "cod",
    notes: str = "",
    source: str = "manual",
    shipping_address: Optional[Address] = None,
    internal_notes: str = "",
) -> Order:
    """Price a cart, reserve its stock and persist it as a new order.

    Everything from the customer check to the customer counters runs in one
    write transaction; a failure at any step leaves stock untouched.
    """
    if not items:
        raise ValidationError("An order needs at least one line item")
    method = _normalize_choice(payment_method, PAYMENT_METHODS, "payment method")
    origin = _normalize_choice(source, ORDER_SOURCES, "order source")
    shipping_paise = to_minor_units(shipping, field_name="shipping")
    packaging_paise = to_minor_units(packaging, field_name="packaging")
    paid_paise = to_minor_units(amount_paid, field_name="amount paid")
    if paid_paise < 0:
        raise ValidationError("Amount paid cannot be negative")
    quantities = [to_quantity(request.quantity) for request in items]

    def write() -> Tuple[Order, Customer]:
        with transaction() as connection:
            customer = customer_repository.find_active_customer(connection, owner_id, customer_id)
            if customer is None:
                raise MissingReferenceError(f"Customer {customer_id} not found or inactive")

            snapshots: List[LineItemSnapshot] = []
            priced: List[LinePrice] = []
            for request, quantity in zip(items, quantities):
                product = product_repository.find_product(connection, owner_id, request.product_id)
                if product is None or not product.is_active:
                    raise MissingReferenceError(f"Product {request.product_id} not found or inactive")

                unit_price = (
                    product.selling_price
                    if request.unit_price is None
                    else to_minor_units(request.unit_price, field_name="unit price")
                )
                tax_rate = product.tax_rate if request.tax_rate is None else request.tax_rate
                line = price_line(
                    unit_price,
                    quantity,
                    to_minor_units(request.discount, field_name="discount"),
                    tax_rate,
                )
                priced.append(line)
                snapshots.append(
                    LineItemSnapshot(
                        product_id=product.id,
                        product_name=product.name,
                        sku=product.sku,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        discount=line.discount,
                        tax_rate=line.tax_rate,
                        tax_amount=line.tax_amount,
                        total=line.total,
                        notes=request.notes,
                        stock_reserved=product.track_inventory,
                    )
                )

            summary = summarize_lines(priced)
            total = order_total(summary.subtotal, shipping_paise, packaging_paise)

            inventory_service.reserve_many(
                [(item.product_id, item.quantity) for item in snapshots if item.stock_reserved],
                connection=connection,
            )

            now = datetime.now()
            order = Order(
                owner_id=owner_id,
                customer_id=customer.id,
                order_number=numbering.next_document_number(connection, owner_id, "order", now.date()),
                status="pending",
                pricing=OrderPricing(
                    subtotal=summary.subtotal,
                    total_discount=summary.total_discount,
                    total_tax=summary.total_tax,
                    shipping=shipping_paise,
                    packaging=packaging_paise,
                    total=total,
                    amount_paid=paid_paise,
                ),
                items=snapshots,
                payment_status=payment_status_for(paid_paise, total),
                payment_method=method,
                shipping_address=shipping_address or _address_from_customer(customer),
                internal_notes=internal_notes,
                customer_notes=notes,
                source=origin,
                created_at=now,
                updated_at=now,
            )
            order.id = order_repository.insert_order(connection, order)
            order_repository.log_order_event(
                connection,
                owner_id,
                order.id,
                order.order_number,
                "Created",
                f"Order created with {len(snapshots)} item(s).",
                total,
                now,
            )

            total_orders = customer.total_orders + 1
            total_spent = customer.total_spent + total
            customer_repository.record_order(
                connection,
                customer.id,
                total,
                now,
                average(total_spent, total_orders),
            )
            return order_repository.find_order(connection, order.id), customer

    order, customer = numbering.run_with_numbering_retry(owner_id, "order", write)
    logger.info("Created order %s for %s (total %s)", order.order_number, owner_id, format_amount(order.pricing.total))
    notification_service.publish("order_created", owner_id, _recipient(order, customer), order)
    return order


def transition_order_status(
    order_id: int,
    new_status: str,
    *,
    location: str = "",
    notes: str = "",
    carrier: Optional[str] = None,
    tracking_number: Optional[str] = None,
    tracking_url: Optional[str] = None,
    estimated_delivery: Optional[date] = None,
) -> Order:
    status = _normalize_status(new_status)
    if status == "cancelled":
        return cancel_order(order_id, notes)

    with transaction() as connection:
        order = order_repository.find_order(connection, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.is_terminal:
            raise InvalidTransitionError(
                f"Order {order.order_number} is {order.status} and cannot move to {status}",
                current=order.status,
                requested=status,
            )

        now = datetime.now()
        changed = status != order.status
        if changed:
            if not order_repository.update_status(connection, order.id, status, now):
                raise InvalidTransitionError(
                    f"Order {order.order_number} changed while updating",
                    current=order.status,
                    requested=status,
                )
            order_repository.append_tracking(
                connection,
                order.id,
                TrackingEvent(status=status, timestamp=now, location=location, notes=notes),
            )
            order_repository.log_order_event(
                connection,
                order.owner_id,
                order.id,
                order.order_number,
                "Status",
                f"Status changed from {order.status} to {status}.",
                0,
                now,
            )
            if status == "refunded":
                order_repository.set_payment_status(connection, order.id, "refunded")

        order_repository.update_tracking(
            connection,
            order.id,
            carrier=carrier,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
            estimated_delivery=estimated_delivery,
            actual_delivery=now if changed and status == "delivered" else None,
        )
        updated = order_repository.find_order(connection, order.id)

    if changed:
        logger.info("Order %s moved %s -> %s", updated.order_number, order.status, status)
        notification_service.publish(
            "status_changed",
            updated.owner_id,
            updated.shipping_address.phone,
            updated,
            {"status": status},
        )
    return updated


def cancel_order(order_id: int, reason: str = "") -> Order:
    with transaction() as connection:
        order = order_repository.find_order(connection, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.is_terminal:
            raise AlreadyTerminalError(
                f"Order {order.order_number} is already {order.status}",
                current=order.status,
                requested="cancelled",
            )

        now = datetime.now()
        if not order_repository.mark_cancelled(connection, order.id, reason, now):
            raise AlreadyTerminalError(
                f"Order {order.order_number} is already closed",
                current=order.status,
                requested="cancelled",
            )

        inventory_service.restore_many(
            [
                (item.product_id, item.quantity)
                for item in order.items
                if item.stock_reserved and item.product_id is not None
            ],
            connection=connection,
        )
        order_repository.append_tracking(
            connection,
            order.id,
            TrackingEvent(status="cancelled", timestamp=now, notes=reason),
        )
        order_repository.log_order_event(
            connection,
            order.owner_id,
            order.id,
            order.order_number,
            "Cancelled",
            "Order cancelled and inventory restored.",
            -order.pricing.total,
            now,
        )
        cancelled = order_repository.find_order(connection, order.id)

    logger.info("Cancelled order %s", cancelled.order_number)
    notification_service.publish("cancelled", cancelled.owner_id, cancelled.shipping_address.phone, cancelled)
    return cancelled


def apply_invoice_payment(connection: sqlite3.Connection, order_id: int, amount: int) -> Order:
    """Mirror an invoice payment onto its order inside the caller's transaction.

    Only the part that settles the order's outstanding balance is applied.
    Cancelled and refunded orders keep their payment state.
    """
    order = order_repository.find_order(connection, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.status in _UNSETTLED_STATUSES or order.payment_status == "refunded":
        logger.info("Order %s is %s; invoice payment not mirrored", order.order_number, order.status)
        return order

    applied = min(int(amount), max(0, order.pricing.amount_due))
    if applied <= 0:
        return order

    amount_paid = order.pricing.amount_paid + applied
    total = order.pricing.total
    now = datetime.now()
    order_repository.update_payment(
        connection,
        order.id,
        amount_paid=amount_paid,
        amount_due=total - amount_paid,
        payment_status=payment_status_for(amount_paid, total),
        updated_at=now,
    )
    order_repository.log_order_event(
        connection,
        order.owner_id,
        order.id,
        order.order_number,
        "Payment",
        f"Payment of {format_amount(applied)} recorded.",
        applied,
        now,
    )
    return order_repository.find_order(connection, order.id)


def payment_status_for(amount_paid: int, total: int) -> str:
    if amount_paid <= 0:
        return "pending"
    if amount_paid >= total:
        return "paid"
    return "partial"


def fetch_order(order_id: int) -> Optional[Order]:
    return order_repository.fetch_order(order_id)


def list_orders(
    owner_id: str,
    *,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Order]:
    if status:
        status = _normalize_status(status)
    return order_repository.list_orders(
        owner_id,
        status=status,
        customer_id=customer_id,
        search=search,
        limit=limit,
    )


def list_order_statuses() -> List[str]:
    return list(ORDER_STATUSES)


def list_order_history(
    owner_id: str,
    *,
    order_number: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 200,
) -> List[OrderHistoryEvent]:
    return order_repository.fetch_order_history(owner_id, order_number, start_date, end_date, limit)


def _normalize_status(status: str) -> str:
    candidate = (status or "").strip().lower()
    if candidate not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status: {status!r}")
    return candidate


def _normalize_choice(value: str, options: Sequence[str], label: str) -> str:
    candidate = (value or "").strip().lower()
    if candidate not in options:
        raise ValidationError(f"Unknown {label}: {value!r}")
    return candidate


def _address_from_customer(customer: Customer) -> Address:
    return Address(
        name=customer.name,
        phone=customer.phone,
        street=customer.street,
        city=customer.city,
        state=customer.state,
        postal_code=customer.postal_code,
        country=customer.country,
    )


def _recipient(order: Order, customer: Customer) -> str:
    return order.shipping_address.phone or customer.phone
