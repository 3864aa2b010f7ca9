from __future__ import annotations

from datetime import date, timedelta

import pytest

from tradedesk.data import settings_repository
from tradedesk.errors import AlreadyTerminalError, InvalidTransitionError, ValidationError
from tradedesk.models.invoice_models import InvoiceItemRequest, InvoiceOptions
from tradedesk.models.order_models import LineItemRequest
from tradedesk.services import inventory_service, invoice_service, notification_service, order_service

OWNER = "owner-1"


@pytest.fixture
def order(customer, widget):
    return order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=2)],
        shipping="50",
    )


def test_invoice_copies_the_order(order, customer):
    invoice = invoice_service.create_invoice_from_order(order.id)

    assert invoice.invoice_number.startswith("INV/")
    assert invoice.order_id == order.id
    assert invoice.source == "order"
    assert invoice.status == "draft"
    assert invoice.payment_details.status == "pending"
    assert invoice.pricing.total == order.pricing.total == 123000
    assert invoice.pricing.total == (
        invoice.pricing.subtotal + invoice.pricing.shipping + invoice.pricing.packaging + invoice.pricing.adjustment
    )
    assert invoice.pricing.amount_in_words == "One Thousand Two Hundred Thirty Rupees"
    assert [(entry.name, entry.amount) for entry in invoice.pricing.tax_breakup] == [("GST 18%", 18000)]
    assert invoice.items[0].description == "Widget (WID-1)"
    assert invoice.customer_details.name == customer.name
    assert invoice.business_details.name == "TradeDesk"
    assert invoice.due_date == invoice.issue_date + timedelta(days=30)
    assert invoice.terms == "Payment due within 30 days of invoice date."
    assert invoice_service.find_invoice_for_order(order.id).id == invoice.id


def test_options_override_settings(order):
    settings_repository.update_settings({"business_name": "Rao Traders", "business_gstin": "27abcde1234f1z5"}, OWNER)

    invoice = invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(payment_terms_days=7, issue_date=date(2026, 1, 1), footer="Namaste"),
    )

    assert invoice.issue_date == date(2026, 1, 1)
    assert invoice.due_date == date(2026, 1, 8)
    assert invoice.invoice_number == "INV/260101/0001"
    assert invoice.footer == "Namaste"
    assert invoice.business_details.name == "Rao Traders"
    assert invoice.business_details.gstin == "27ABCDE1234F1Z5"


def test_cancelled_orders_cannot_be_invoiced(order):
    order_service.cancel_order(order.id)

    with pytest.raises(ValidationError):
        invoice_service.create_invoice_from_order(order.id)


def test_payment_moves_pending_partial_paid(order):
    invoice = invoice_service.create_invoice_from_order(order.id)

    partial = invoice_service.record_payment(invoice.id, "500", "upi", "UTR-1")
    assert partial.payment_details.status == "partial"
    assert partial.payment_details.paid_date is None
    assert partial.amount_due == 73000
    assert order_service.fetch_order(order.id).payment_status == "partial"

    paid = invoice_service.record_payment(invoice.id, partial.amount_due / 100, "cash")
    assert paid.payment_details.status == "paid"
    assert paid.status == "paid"
    assert paid.payment_details.paid_date is not None
    assert paid.amount_due == 0
    assert [p.amount for p in paid.payment_details.payments] == [50000, 73000]
    assert paid.payment_details.payments[0].reference == "UTR-1"

    linked = order_service.fetch_order(order.id)
    assert linked.payment_status == "paid"
    assert linked.pricing.amount_paid == 123000
    assert linked.pricing.amount_due == 0
    events = order_service.list_order_history(OWNER, order_number=order.order_number)
    assert [event.event_type for event in events].count("Payment") == 2


def test_exact_payment_settles_in_one_go(order):
    invoice = invoice_service.create_invoice_from_order(order.id)

    paid = invoice_service.record_payment(invoice.id, "1230.00", "bank_transfer")

    assert paid.payment_details.status == "paid"
    assert paid.payment_details.paid_date is not None


def test_overpayment_is_tracked_when_accepted(order):
    invoice = invoice_service.create_invoice_from_order(order.id)

    paid = invoice_service.record_payment(invoice.id, "2000", "cash")

    assert paid.payment_details.status == "paid"
    assert paid.amount_due == -77000
    assert paid.excess_amount == 77000


def test_overpayment_is_refused_when_policy_rejects(order):
    settings_repository.update_settings({"overpayment_policy": "reject"}, OWNER)
    invoice = invoice_service.create_invoice_from_order(order.id)

    with pytest.raises(ValidationError):
        invoice_service.record_payment(invoice.id, "1230.01", "cash")

    unchanged = invoice_service.fetch_invoice(invoice.id)
    assert unchanged.payment_details.paid_amount == 0
    assert unchanged.payment_details.payments == []
    assert order_service.fetch_order(order.id).pricing.amount_paid == 0


@pytest.mark.parametrize(
    ("amount", "method"),
    [("0", "cash"), ("-10", "cash"), ("10", "cheque")],
)
def test_invalid_payments_are_rejected(order, amount, method):
    invoice = invoice_service.create_invoice_from_order(order.id)

    with pytest.raises(ValidationError):
        invoice_service.record_payment(invoice.id, amount, method)


def test_cancelled_invoice_refuses_payment(order):
    invoice = invoice_service.create_invoice_from_order(order.id)
    cancelled = invoice_service.cancel_invoice(invoice.id, "Raised in error")

    assert cancelled.status == "cancelled"
    assert cancelled.payment_details.status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        invoice_service.record_payment(invoice.id, "10", "cash")
    with pytest.raises(AlreadyTerminalError):
        invoice_service.cancel_invoice(invoice.id)


def test_paid_invoice_cannot_be_cancelled(order):
    invoice = invoice_service.create_invoice_from_order(order.id)
    invoice_service.record_payment(invoice.id, "1230", "cash")

    with pytest.raises(InvalidTransitionError):
        invoice_service.cancel_invoice(invoice.id)


def test_adjustment_recomputes_total_and_words(order):
    invoice = invoice_service.create_invoice_from_order(order.id)
    invoice_service.record_payment(invoice.id, "1200", "cash")

    adjusted = invoice_service.apply_adjustment(invoice.id, "-30")

    assert adjusted.pricing.adjustment == -3000
    assert adjusted.pricing.total == 120000
    assert adjusted.pricing.amount_in_words == "One Thousand Two Hundred Rupees"
    assert adjusted.payment_details.status == "paid"
    assert adjusted.status == "paid"

    reverted = invoice_service.apply_adjustment(invoice.id, "0")
    assert reverted.payment_details.status == "partial"
    assert reverted.status == "draft"
    assert reverted.payment_details.paid_date is None


def test_standalone_invoice_does_not_touch_stock(customer, widget):
    invoice = invoice_service.create_invoice(
        OWNER,
        customer.id,
        [
            InvoiceItemRequest(description="Consulting", quantity=2, unit_price="1000", tax_rate=18),
            InvoiceItemRequest(description="Widget", quantity=1, unit_price="500", product_id=widget.id),
        ],
        InvoiceOptions(shipping="25"),
    )

    assert invoice.source == "manual"
    assert invoice.order_id is None
    assert invoice.pricing.subtotal == 236000 + 50000
    assert invoice.pricing.total == 236000 + 50000 + 2500
    assert invoice.items[1].sku == "WID-1"
    assert inventory_service.get_product(OWNER, widget.id).quantity == 10


def test_send_invoice_notifies_customer(order, customer, sender):
    invoice = invoice_service.create_invoice_from_order(order.id)

    sent = invoice_service.send_invoice(invoice.id)
    notification_service.flush()

    assert sent.status == "sent"
    assert sent.sent_at is not None
    assert any(
        recipient == customer.phone and invoice.invoice_number in body and "Invoice Details" in body
        for recipient, body in sender.messages
    )


def test_overdue_detection_and_sweep(customer, widget):
    first = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    second = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    options = InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=10)
    pending = invoice_service.create_invoice_from_order(first.id, options)
    partial = invoice_service.create_invoice_from_order(second.id, options)
    invoice_service.record_payment(partial.id, "100", "cash")

    today = date(2026, 1, 20)
    assert invoice_service.is_overdue(pending, today)
    assert not invoice_service.is_overdue(pending, date(2026, 1, 11))

    touched = invoice_service.mark_overdue_invoices(today)

    assert {invoice.id for invoice in touched} == {pending.id, partial.id}
    swept_pending = invoice_service.fetch_invoice(pending.id)
    swept_partial = invoice_service.fetch_invoice(partial.id)
    assert swept_pending.payment_details.status == "overdue"
    assert swept_pending.status == "overdue"
    assert swept_partial.payment_details.status == "partial"
    assert swept_partial.status == "overdue"
    assert invoice_service.mark_overdue_invoices(today) == []
    assert [i.id for i in invoice_service.list_invoices(OWNER, payment_status="overdue")] == [pending.id]


def test_payment_reminders_follow_schedule(customer, widget, sender):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    invoice = invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=0),
    )

    assert invoice_service.send_payment_reminders(date(2026, 1, 11)) == 0
    assert invoice_service.send_payment_reminders(date(2026, 1, 4)) == 1
    assert invoice_service.send_payment_reminders(date(2026, 1, 4)) == 0
    notification_service.flush()

    reminded = invoice_service.fetch_invoice(invoice.id)
    assert reminded.payment_details.reminder_sent_at is not None
    reminders = [body for _, body in sender.messages if "Payment Reminder" in body]
    assert len(reminders) == 1
    assert "Days Overdue: 3" in reminders[0]


def test_reminders_respect_disabled_notifications(customer, widget, sender):
    settings_repository.update_settings({"notifications_enabled": False}, OWNER)
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=0),
    )

    assert invoice_service.send_payment_reminders(date(2026, 1, 2)) == 0
    notification_service.flush()
    assert sender.messages == []


@pytest.mark.parametrize("quantity", [1.5, "several"])
def test_standalone_invoice_rejects_partial_quantities(customer, quantity):
    with pytest.raises(ValidationError):
        invoice_service.create_invoice(
            OWNER,
            customer.id,
            [InvoiceItemRequest(description="Consulting", quantity=quantity, unit_price="1000")],
        )

    assert invoice_service.list_invoices(OWNER) == []


def test_checkout_payment_is_carried_onto_the_invoice(customer, widget):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=2)],
        shipping="50",
        amount_paid="500",
    )

    invoice = invoice_service.create_invoice_from_order(order.id)
    assert invoice.payment_details.paid_amount == 50000
    assert invoice.payment_details.status == "partial"
    assert invoice.amount_due == 73000
    assert invoice.payment_details.payments[0].notes == "Collected at checkout"
    assert invoice.payment_details.payments[0].reference == order.order_number

    partial = invoice_service.record_payment(invoice.id, "300", "upi")
    linked = order_service.fetch_order(order.id)
    assert partial.payment_details.status == "partial"
    assert linked.payment_status == "partial"
    assert linked.pricing.amount_paid == 80000

    settled = invoice_service.record_payment(invoice.id, "430", "upi")
    linked = order_service.fetch_order(order.id)
    assert settled.payment_details.status == "paid"
    assert linked.payment_status == "paid"
    assert linked.pricing.amount_paid == linked.pricing.total == 123000
    assert linked.pricing.amount_due == 0


def test_fully_paid_order_yields_a_paid_invoice(customer, widget):
    order = order_service.create_order(
        OWNER,
        customer.id,
        [LineItemRequest(product_id=widget.id, quantity=1)],
        amount_paid="590",
    )

    invoice = invoice_service.create_invoice_from_order(order.id)

    assert invoice.payment_details.status == "paid"
    assert invoice.status == "paid"
    assert invoice.payment_details.paid_date is not None
    assert invoice.amount_due == 0


def test_order_never_records_more_than_its_total(order):
    invoice = invoice_service.create_invoice_from_order(order.id)

    invoice_service.record_payment(invoice.id, "2000", "cash")

    linked = order_service.fetch_order(order.id)
    assert linked.pricing.amount_paid == 123000
    assert linked.pricing.amount_due == 0


def test_payments_leave_closed_orders_alone(customer, widget):
    refunded = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    cancelled = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    refund_invoice = invoice_service.create_invoice_from_order(refunded.id)
    cancel_invoice = invoice_service.create_invoice_from_order(cancelled.id)
    order_service.transition_order_status(refunded.id, "refunded")
    order_service.cancel_order(cancelled.id, "Duplicate")

    invoice_service.record_payment(refund_invoice.id, "100", "cash")
    invoice_service.record_payment(cancel_invoice.id, "100", "cash")

    after_refund = order_service.fetch_order(refunded.id)
    after_cancel = order_service.fetch_order(cancelled.id)
    assert after_refund.payment_status == "refunded"
    assert after_refund.pricing.amount_paid == 0
    assert after_cancel.payment_status == "pending"
    assert after_cancel.pricing.amount_paid == 0


def test_reminder_is_not_stamped_when_dispatcher_is_down(customer, widget):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    invoice = invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=0),
    )
    notification_service.flush()
    notification_service.get_dispatcher().shutdown()

    assert invoice_service.send_payment_reminders(date(2026, 1, 3)) == 0
    assert invoice_service.fetch_invoice(invoice.id).payment_details.reminder_sent_at is None
