from __future__ import annotations

import pytest

from tradedesk.errors import (
    AlreadyTerminalError,
    InsufficientStock,
    InvalidTransitionError,
    MissingReferenceError,
    ValidationError,
)
from tradedesk.models.order_models import Address, LineItemRequest
from tradedesk.services import customer_service, inventory_service, notification_service, order_service

OWNER = "owner-1"


def _quantity(product_id: int) -> int:
    return inventory_service.get_product(OWNER, product_id).quantity


def test_create_order_prices_and_reserves(customer, widget):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=2)],
        shipping="50",
        payment_method="upi",
    )

    line = order.items[0]
    assert line.total == 118000
    assert line.tax_amount == 18000
    assert line.stock_reserved
    assert order.pricing.subtotal == 118000
    assert order.pricing.total == 123000
    assert order.pricing.amount_due == 123000
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.order_number.startswith("ORD/")
    assert order.shipping_address.phone == customer.phone
    assert _quantity(widget.id) == 8


def test_totals_hold_for_mixed_fractional_rates(customer, widget, gadget, service_plan):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [
            LineItemRequest(product_id=widget.id, quantity=1, discount="12.34"),
            LineItemRequest(product_id=gadget.id, quantity=3),
            LineItemRequest(product_id=service_plan.id, quantity=1, unit_price="1499.99", tax_rate=5),
        ],
        shipping="40",
        packaging="15.50",
        amount_paid="100",
    )

    pricing = order.pricing
    assert pricing.total == sum(item.total for item in order.items) + 4000 + 1550
    assert pricing.amount_due == pricing.total - 10000
    assert order.payment_status == "partial"
    assert [item.stock_reserved for item in order.items] == [True, True, False]


def test_customer_counters_follow_orders(customer, widget):
    order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=2)])

    refreshed = customer_service.get_customer(OWNER, customer.id)
    assert refreshed.total_orders == 2
    assert refreshed.total_spent == 59000 + 118000
    assert refreshed.average_order_value == 88500
    assert refreshed.last_order_date is not None


def test_missing_references_are_rejected(customer, widget):
    with pytest.raises(MissingReferenceError):
        order_service.create_order(OWNER, 4242, [LineItemRequest(product_id=widget.id, quantity=1)])

    with pytest.raises(ValidationError):
        order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=4242, quantity=1)])

    customer_service.deactivate_customer(OWNER, customer.id)
    with pytest.raises(MissingReferenceError):
        order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])


def test_products_of_other_owners_are_invisible(customer):
    foreign = inventory_service.register_product("owner-2", "FOR-1", "Foreign", selling_price="10", quantity=5)

    with pytest.raises(MissingReferenceError):
        order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=foreign.id, quantity=1)])


def test_failed_create_leaves_stock_untouched(customer, widget, gadget):
    with pytest.raises(InsufficientStock):
        order_service.create_order(
            OWNER,
            customer.id,
            [
                LineItemRequest(product_id=widget.id, quantity=3),
                LineItemRequest(product_id=gadget.id, quantity=6),
            ],
        )

    assert _quantity(widget.id) == 10
    assert _quantity(gadget.id) == 5
    assert order_service.list_orders(OWNER) == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"shipping": "-1"},
        {"payment_method": "barter"},
        {"source": "fax"},
        {"amount_paid": "-5"},
    ],
)
def test_invalid_create_arguments(customer, widget, kwargs):
    with pytest.raises(ValidationError):
        order_service.create_order(
            OWNER,
            customer.id,
            [LineItemRequest(product_id=widget.id, quantity=1)],
            **kwargs,
        )
    assert _quantity(widget.id) == 10


def test_empty_cart_is_rejected(customer):
    with pytest.raises(ValidationError):
        order_service.create_order(OWNER, customer.id, [])


def test_confirm_then_deliver_records_two_tracking_entries(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])

    order_service.transition_order_status(order.id, "confirmed")
    delivered = order_service.transition_order_status(order.id, "Delivered", location="Pune")

    assert delivered.status == "delivered"
    assert [entry.status for entry in delivered.tracking_history] == ["confirmed", "delivered"]
    assert delivered.tracking_history[1].location == "Pune"
    assert delivered.actual_delivery is not None


def test_same_status_does_not_add_history(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])

    updated = order_service.transition_order_status(order.id, "pending", tracking_number="AWB123")

    assert updated.tracking_history == []
    assert updated.tracking_number == "AWB123"


def test_shipping_details_are_stored(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])

    shipped = order_service.transition_order_status(
        order.id,
        "shipped",
        carrier="BlueDart",
        tracking_number="BD-99",
        tracking_url="https://track.example/BD-99",
    )

    assert shipped.carrier == "BlueDart"
    assert shipped.tracking_number == "BD-99"
    assert shipped.tracking_url == "https://track.example/BD-99"


def test_terminal_orders_cannot_move(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    order_service.transition_order_status(order.id, "delivered")

    with pytest.raises(InvalidTransitionError):
        order_service.transition_order_status(order.id, "shipped")

    assert order_service.fetch_order(order.id).status == "delivered"


def test_unknown_status_is_a_validation_error(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])

    with pytest.raises(ValidationError):
        order_service.transition_order_status(order.id, "teleported")


def test_cancel_restores_stock_once(customer, widget, gadget):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [
            LineItemRequest(product_id=gadget.id, quantity=2),
            LineItemRequest(product_id=widget.id, quantity=4),
            LineItemRequest(product_id=gadget.id, quantity=1),
        ],
    )
    assert _quantity(widget.id) == 6
    assert _quantity(gadget.id) == 2

    cancelled = order_service.cancel_order(order.id, "Customer changed mind")

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Customer changed mind"
    assert cancelled.cancelled_at is not None
    assert cancelled.tracking_history[-1].status == "cancelled"
    assert _quantity(widget.id) == 10
    assert _quantity(gadget.id) == 5

    with pytest.raises(AlreadyTerminalError):
        order_service.cancel_order(order.id)

    assert _quantity(widget.id) == 10
    assert _quantity(gadget.id) == 5


def test_cancel_through_transition_restores_stock(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=3)])
    order_service.transition_order_status(order.id, "processing")

    cancelled = order_service.transition_order_status(order.id, "cancelled", notes="Out of area")

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Out of area"
    assert _quantity(widget.id) == 10


def test_delivered_orders_cannot_be_cancelled(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    order_service.transition_order_status(order.id, "delivered")

    with pytest.raises(AlreadyTerminalError):
        order_service.cancel_order(order.id)

    assert _quantity(widget.id) == 9


def test_refund_marks_payment_without_restocking(customer, widget):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=1)],
        amount_paid="590",
    )
    assert order.payment_status == "paid"

    refunded = order_service.transition_order_status(order.id, "refunded")

    assert refunded.status == "refunded"
    assert refunded.payment_status == "refunded"
    assert _quantity(widget.id) == 9


def test_history_and_listing(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    order_service.transition_order_status(order.id, "confirmed")
    order_service.cancel_order(order.id, "Duplicate")

    events = order_service.list_order_history(OWNER, order_number=order.order_number)
    assert [event.event_type for event in events] == ["Cancelled", "Status", "Created"]
    assert events[0].amount_delta == -order.pricing.total

    assert [o.id for o in order_service.list_orders(OWNER, status="cancelled")] == [order.id]
    assert order_service.list_orders(OWNER, status="pending") == []
    assert order_service.list_orders("owner-2") == []
    assert "refunded" in order_service.list_order_statuses()


def test_explicit_shipping_address_is_kept(customer, widget):
    address = Address(name="Warehouse", phone="+919811111111", city="Mumbai")
    order = order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=1)],
        shipping_address=address,
    )

    assert order_service.fetch_order(order.id).shipping_address == address


def test_lifecycle_notifications_are_delivered(customer, widget, sender):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    order_service.transition_order_status(order.id, "confirmed")
    order_service.cancel_order(order.id, "No longer needed")
    notification_service.flush()

    recipients = {recipient for recipient, _ in sender.messages}
    bodies = [message for _, message in sender.messages]
    assert recipients == {customer.phone}
    assert len(bodies) == 3
    assert any(order.order_number in body and "Order Details" in body for body in bodies)
    assert any("has been confirmed" in body for body in bodies)
    assert any("Reason: No longer needed" in body for body in bodies)


@pytest.mark.parametrize("quantity", [2.7, "two", 0, None])
def test_line_quantity_must_be_a_positive_whole_number(customer, widget, quantity):
    with pytest.raises(ValidationError):
        order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=quantity)])

    assert _quantity(widget.id) == 10
    assert order_service.list_orders(OWNER) == []


def test_inactive_products_cannot_be_ordered(customer, widget):
    inventory_service.set_active(widget.id, False)

    with pytest.raises(MissingReferenceError):
        order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])

    assert _quantity(widget.id) == 10
