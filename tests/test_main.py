from __future__ import annotations

from datetime import date

import pytest

from tradedesk import main as cli
from tradedesk.models.invoice_models import InvoiceOptions
from tradedesk.models.order_models import LineItemRequest
from tradedesk.services import invoice_service, order_service

OWNER = "owner-1"


def test_sweep_flags_overdue_and_sends_reminders(customer, widget, sender):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    invoice = invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=0),
    )

    assert cli.main(["--date", "2026-01-03"]) == 0

    swept = invoice_service.fetch_invoice(invoice.id)
    assert swept.payment_details.status == "overdue"
    assert swept.payment_details.reminder_sent_at is not None
    assert any("Payment Reminder" in body for _, body in sender.messages)


def test_skip_reminders_only_marks_overdue(customer, widget, sender):
    order = order_service.create_order(OWNER, customer.id, [LineItemRequest(product_id=widget.id, quantity=1)])
    invoice = invoice_service.create_invoice_from_order(
        order.id,
        InvoiceOptions(issue_date=date(2026, 1, 1), payment_terms_days=0),
    )

    assert cli.main(["--date", "2026-01-03", "--skip-reminders"]) == 0

    swept = invoice_service.fetch_invoice(invoice.id)
    assert swept.status == "overdue"
    assert swept.payment_details.reminder_sent_at is None


def test_bad_date_is_rejected():
    with pytest.raises(SystemExit):
        cli.main(["--date", "yesterday"])
