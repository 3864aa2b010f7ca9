"""Invoice creation and settlement.

An invoice carries its own snapshot of lines, parties and pricing. Payments
are recorded against it and mirrored onto the linked order in the same
transaction.
"""
from __future__ import annotations

import sqlite3
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence

from ..data import (
    customer_repository,
    invoice_repository,
    order_repository,
    product_repository,
    settings_repository,
)
from ..data.database import connect, transaction
from ..errors import (
    AlreadyTerminalError,
    InvalidTransitionError,
    MissingReferenceError,
    NotFoundError,
    ValidationError,
)
from ..models.invoice_models import (
    INVOICE_TYPES,
    Invoice,
    InvoiceItemRequest,
    InvoiceLineItem,
    InvoiceOptions,
    InvoicePricing,
    PartyDetails,
    PaymentDetails,
    PaymentRecord,
)
from ..models.order_models import PAYMENT_METHODS, AppSettings, Customer
from ..utils.logger import get_logger
from . import notification_service, numbering, order_service
from .amount_words import amount_in_words
from .pricing import (
    LinePrice,
    format_amount,
    format_currency,
    order_total,
    price_line,
    summarize_lines,
    tax_breakup,
    to_minor_units,
    to_quantity,
)

logger = get_logger("invoices")

# Days past due on which a reminder goes out.
REMINDER_DAYS = frozenset(range(1, 8)) | {14, 30}
_OPEN_PAYMENT_STATUSES = frozenset({"pending", "partial", "overdue"})


def create_invoice_from_order(order_id: int, options: Optional[InvoiceOptions] = None) -> Invoice:
    options = options or InvoiceOptions()
    placed = order_repository.fetch_order(order_id)
    if placed is None:
        raise NotFoundError(f"Order {order_id} not found")

    def write() -> Invoice:
        with transaction() as connection:
            order = order_repository.find_order(connection, order_id)
            if order.status == "cancelled":
                raise ValidationError(f"Order {order.order_number} is cancelled and cannot be invoiced")
            customer = customer_repository.find_customer(connection, order.owner_id, order.customer_id)
            if customer is None:
                raise MissingReferenceError(f"Customer {order.customer_id} not found")
            settings = settings_repository.get_app_settings(order.owner_id, connection=connection)

            items = [
                InvoiceLineItem(
                    description=f"{item.product_name} ({item.sku})" if item.sku else item.product_name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total,
                    product_id=item.product_id,
                    sku=item.sku,
                    discount=item.discount,
                    tax_rate=item.tax_rate,
                    tax_amount=item.tax_amount,
                )
                for item in order.items
            ]
            lines = [
                LinePrice(
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    discount=item.discount,
                    tax_rate=item.tax_rate,
                    taxable_amount=item.taxable_amount,
                    tax_amount=item.tax_amount,
                    total=item.total,
                )
                for item in order.items
            ]
            pricing = InvoicePricing(
                subtotal=order.pricing.subtotal,
                total_discount=order.pricing.total_discount,
                total_tax=order.pricing.total_tax,
                tax_breakup=tax_breakup(lines),
                shipping=order.pricing.shipping,
                packaging=order.pricing.packaging,
                adjustment=0,
                total=order.pricing.total,
                amount_in_words=amount_in_words(order.pricing.total),
                currency=order.pricing.currency,
            )
            invoice = _build_invoice(
                connection,
                order.owner_id,
                customer,
                settings,
                options,
                items,
                pricing,
                source="order",
                order_id=order.id,
                payment_method=order.payment_method,
            )
            collected = min(order.pricing.amount_paid, order.pricing.total)
            if collected > 0:
                _carry_checkout_payment(connection, invoice, collected, order.order_number)
            return invoice_repository.find_invoice(connection, invoice.id)

    invoice = numbering.run_with_numbering_retry(placed.owner_id, "invoice", write)
    logger.info("Created invoice %s from order %s", invoice.invoice_number, placed.order_number)
    return invoice


def create_invoice(
    owner_id: str,
    customer_id: int,
    items: Sequence[InvoiceItemRequest],
    options: Optional[InvoiceOptions] = None,
) -> Invoice:
    """Standalone invoice; stock is not touched."""
    options = options or InvoiceOptions()
    if not items:
        raise ValidationError("An invoice needs at least one line item")
    shipping = to_minor_units(options.shipping, field_name="shipping")
    packaging = to_minor_units(options.packaging, field_name="packaging")

    lines: List[LinePrice] = [
        price_line(
            to_minor_units(request.unit_price, field_name="unit price"),
            to_quantity(request.quantity),
            to_minor_units(request.discount, field_name="discount"),
            request.tax_rate,
        )
        for request in items
    ]
    summary = summarize_lines(lines)
    total = order_total(summary.subtotal, shipping, packaging)

    def write() -> Invoice:
        with transaction() as connection:
            customer = customer_repository.find_active_customer(connection, owner_id, customer_id)
            if customer is None:
                raise MissingReferenceError(f"Customer {customer_id} not found or inactive")
            settings = settings_repository.get_app_settings(owner_id, connection=connection)

            invoice_items: List[InvoiceLineItem] = []
            for request, line in zip(items, lines):
                sku = request.sku.strip().upper()
                if request.product_id is not None:
                    product = product_repository.find_product(connection, owner_id, request.product_id)
                    if product is None:
                        raise MissingReferenceError(f"Product {request.product_id} not found")
                    sku = sku or product.sku
                invoice_items.append(
                    InvoiceLineItem(
                        description=request.description.strip(),
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        total=line.total,
                        product_id=request.product_id,
                        sku=sku,
                        unit=request.unit.strip() or "piece",
                        discount=line.discount,
                        tax_rate=line.tax_rate,
                        tax_amount=line.tax_amount,
                    )
                )

            pricing = InvoicePricing(
                subtotal=summary.subtotal,
                total_discount=summary.total_discount,
                total_tax=summary.total_tax,
                tax_breakup=tax_breakup(lines),
                shipping=shipping,
                packaging=packaging,
                adjustment=0,
                total=total,
                amount_in_words=amount_in_words(total),
                currency=settings.currency,
            )
            invoice = _build_invoice(
                connection,
                owner_id,
                customer,
                settings,
                options,
                invoice_items,
                pricing,
                source="manual",
            )
            return invoice_repository.find_invoice(connection, invoice.id)

    invoice = numbering.run_with_numbering_retry(owner_id, "invoice", write)
    logger.info("Created invoice %s for %s", invoice.invoice_number, owner_id)
    return invoice


def send_invoice(invoice_id: int) -> Invoice:
    with transaction() as connection:
        invoice = _load(connection, invoice_id)
        if invoice.status == "cancelled":
            raise InvalidTransitionError(
                f"Invoice {invoice.invoice_number} is cancelled",
                current=invoice.status,
                requested="sent",
            )
        status = "sent" if invoice.status in ("draft", "viewed") else invoice.status
        invoice_repository.mark_sent(connection, invoice.id, status, datetime.now())
        sent = invoice_repository.find_invoice(connection, invoice.id)

    logger.info("Sent invoice %s", sent.invoice_number)
    notification_service.publish("invoice_sent", sent.owner_id, sent.customer_details.phone, sent)
    return sent


def record_payment(
    invoice_id: int,
    amount: object,
    method: str,
    reference: str = "",
    *,
    notes: str = "",
) -> Invoice:
    paise = to_minor_units(amount, field_name="payment amount")
    if paise <= 0:
        raise ValidationError("Payment amount must be positive")
    method = (method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method: {method!r}")

    with transaction() as connection:
        invoice = _load(connection, invoice_id)
        if invoice.status == "cancelled":
            raise InvalidTransitionError(
                f"Invoice {invoice.invoice_number} is cancelled and cannot take payments",
                current=invoice.status,
            )
        settings = settings_repository.get_app_settings(invoice.owner_id, connection=connection)
        if settings.overpayment_policy == "reject" and paise > invoice.amount_due:
            raise ValidationError(
                f"Payment of {format_amount(paise)} exceeds the amount due "
                f"({format_amount(max(0, invoice.amount_due))})"
            )

        now = datetime.now()
        paid_amount = invoice.payment_details.paid_amount + paise
        payment_status = settlement_status(paid_amount, invoice.pricing.total, invoice.due_date, now.date())
        paid_date = invoice.payment_details.paid_date
        status = invoice.status
        if payment_status == "paid":
            status = "paid"
            paid_date = paid_date or now

        invoice_repository.insert_payment(
            connection,
            invoice.id,
            PaymentRecord(amount=paise, method=method, date=now, reference=reference, notes=notes),
        )
        invoice_repository.update_payment(
            connection,
            invoice.id,
            status=status,
            payment_status=payment_status,
            payment_method=method,
            paid_amount=paid_amount,
            paid_date=paid_date,
            updated_at=now,
        )
        if invoice.order_id is not None:
            order_service.apply_invoice_payment(connection, invoice.order_id, paise)
        updated = invoice_repository.find_invoice(connection, invoice.id)

    if updated.excess_amount:
        logger.warning(
            "Invoice %s over-paid by %s",
            updated.invoice_number,
            format_amount(updated.excess_amount),
        )
    logger.info("Recorded payment of %s on invoice %s", format_amount(paise), updated.invoice_number)
    notification_service.publish(
        "payment_received",
        updated.owner_id,
        updated.customer_details.phone,
        updated,
        {"amount": format_currency(paise)},
    )
    return updated


def apply_adjustment(invoice_id: int, adjustment: object) -> Invoice:
    """Replace the invoice's signed adjustment and re-derive everything that depends on the total."""
    adjustment_paise = to_minor_units(adjustment, field_name="adjustment")

    with transaction() as connection:
        invoice = _load(connection, invoice_id)
        if invoice.status == "cancelled":
            raise InvalidTransitionError(
                f"Invoice {invoice.invoice_number} is cancelled",
                current=invoice.status,
            )
        pricing = invoice.pricing
        total = order_total(pricing.subtotal, pricing.shipping, pricing.packaging, adjustment_paise)
        if total < 0:
            raise ValidationError("Adjustment would make the invoice total negative")

        now = datetime.now()
        paid_amount = invoice.payment_details.paid_amount
        payment_status = settlement_status(paid_amount, total, invoice.due_date, now.date())
        paid_date = invoice.payment_details.paid_date
        status = invoice.status
        if payment_status == "paid":
            status = "paid"
            paid_date = paid_date or now
        else:
            paid_date = None
            if status == "paid":
                status = "sent" if invoice.sent_at else "draft"

        invoice_repository.update_totals(
            connection,
            invoice.id,
            adjustment=adjustment_paise,
            total=total,
            amount_in_words=amount_in_words(total),
            status=status,
            payment_status=payment_status,
            paid_date=paid_date,
            updated_at=now,
        )
        updated = invoice_repository.find_invoice(connection, invoice.id)

    logger.info("Invoice %s adjusted by %s", updated.invoice_number, format_amount(adjustment_paise))
    return updated


def cancel_invoice(invoice_id: int, reason: str = "") -> Invoice:
    with transaction() as connection:
        invoice = _load(connection, invoice_id)
        if invoice.status == "cancelled":
            raise AlreadyTerminalError(
                f"Invoice {invoice.invoice_number} is already cancelled",
                current=invoice.status,
                requested="cancelled",
            )
        if invoice.payment_details.status == "paid":
            raise InvalidTransitionError(
                f"Invoice {invoice.invoice_number} is paid and cannot be cancelled",
                current=invoice.status,
                requested="cancelled",
            )
        invoice_repository.mark_cancelled(connection, invoice.id, reason, datetime.now())
        cancelled = invoice_repository.find_invoice(connection, invoice.id)

    logger.info("Cancelled invoice %s", cancelled.invoice_number)
    return cancelled


def settlement_status(paid_amount: int, total: int, due_date: date, today: date) -> str:
    if paid_amount >= total:
        return "paid"
    if paid_amount > 0:
        return "partial"
    return "overdue" if due_date < today else "pending"


def is_overdue(invoice: Invoice, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return invoice.payment_details.status in _OPEN_PAYMENT_STATUSES and invoice.due_date < today


def mark_overdue_invoices(today: Optional[date] = None) -> List[Invoice]:
    """Flag every unsettled invoice past its due date; returns the invoices touched."""
    today = today or date.today()
    touched: List[Invoice] = []
    with transaction() as connection:
        now = datetime.now()
        for invoice_id in invoice_repository.list_open_invoice_ids(connection, today):
            invoice = invoice_repository.find_invoice(connection, invoice_id)
            payment_status = invoice.payment_details.status
            if payment_status == "pending":
                payment_status = "overdue"
            if payment_status == invoice.payment_details.status and invoice.status == "overdue":
                continue
            invoice_repository.mark_overdue(connection, invoice.id, payment_status, now)
            touched.append(invoice_repository.find_invoice(connection, invoice.id))

    if touched:
        logger.info("Marked %s invoice(s) overdue", len(touched))
    return touched


def send_payment_reminders(today: Optional[date] = None) -> int:
    today = today or date.today()
    with connect() as connection:
        invoices = [
            invoice_repository.find_invoice(connection, invoice_id)
            for invoice_id in invoice_repository.list_open_invoice_ids(connection, today)
        ]

    sent = 0
    for invoice in invoices:
        if not is_overdue(invoice, today):
            continue
        days_overdue = (today - invoice.due_date).days
        if days_overdue not in REMINDER_DAYS:
            continue
        reminded = invoice.payment_details.reminder_sent_at
        if reminded is not None and reminded.date() >= today:
            continue
        queued = notification_service.publish(
            "payment_reminder",
            invoice.owner_id,
            invoice.customer_details.phone,
            invoice,
            {"days_overdue": str(days_overdue)},
        )
        if not queued:
            continue
        with transaction() as connection:
            invoice_repository.mark_reminder_sent(connection, invoice.id, datetime.now())
        logger.info("Payment reminder sent for invoice %s", invoice.invoice_number)
        sent += 1
    return sent


def fetch_invoice(invoice_id: int) -> Optional[Invoice]:
    return invoice_repository.fetch_invoice(invoice_id)


def find_invoice_for_order(order_id: int) -> Optional[Invoice]:
    with connect() as connection:
        return invoice_repository.find_invoice_for_order(connection, order_id)


def list_invoices(
    owner_id: str,
    *,
    payment_status: Optional[str] = None,
    customer_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Invoice]:
    return invoice_repository.list_invoices(
        owner_id,
        payment_status=payment_status,
        customer_id=customer_id,
        search=search,
        limit=limit,
    )


def _build_invoice(
    connection: sqlite3.Connection,
    owner_id: str,
    customer: Customer,
    settings: AppSettings,
    options: InvoiceOptions,
    items: List[InvoiceLineItem],
    pricing: InvoicePricing,
    *,
    source: str,
    order_id: Optional[int] = None,
    payment_method: str = "",
) -> Invoice:
    invoice_type = (options.invoice_type or "invoice").strip().lower()
    if invoice_type not in INVOICE_TYPES:
        raise ValidationError(f"Unknown invoice type: {options.invoice_type!r}")
    terms_days = settings.payment_terms_days if options.payment_terms_days is None else int(options.payment_terms_days)
    if terms_days < 0:
        raise ValidationError("Payment terms cannot be negative")

    issue_date = options.issue_date or date.today()
    now = datetime.now()
    invoice = Invoice(
        owner_id=owner_id,
        customer_id=customer.id,
        invoice_number=numbering.next_document_number(connection, owner_id, "invoice", issue_date),
        items=items,
        pricing=pricing,
        payment_details=PaymentDetails(
            due_date=issue_date + timedelta(days=terms_days),
            status="pending",
            method=payment_method,
        ),
        issue_date=issue_date,
        business_details=PartyDetails(
            name=settings.business_name,
            phone=settings.business_phone,
            email=settings.business_email,
            street=settings.business_street,
            city=settings.business_city,
            state=settings.business_state,
            postal_code=settings.business_postal_code,
            country=settings.business_country,
            gstin=(options.gstin or settings.business_gstin).strip().upper(),
        ),
        customer_details=PartyDetails(
            name=customer.name,
            phone=customer.phone,
            email=customer.email,
            street=customer.street,
            city=customer.city,
            state=customer.state,
            postal_code=customer.postal_code,
            country=customer.country,
            gstin=customer.gstin,
        ),
        status="draft",
        invoice_type=invoice_type,
        order_id=order_id,
        terms=options.terms if options.terms is not None else settings.invoice_terms,
        footer=options.footer if options.footer is not None else settings.invoice_footer,
        source=source,
        created_at=now,
        updated_at=now,
    )
    invoice.id = invoice_repository.insert_invoice(connection, invoice)
    return invoice


def _load(connection: sqlite3.Connection, invoice_id: int) -> Invoice:
    invoice = invoice_repository.find_invoice(connection, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _carry_checkout_payment(connection: sqlite3.Connection, invoice: Invoice, amount: int, reference: str) -> None:
    """Record money collected when the order was placed as the invoice's first payment."""
    now = datetime.now()
    method = invoice.payment_details.method or "cash"
    invoice_repository.insert_payment(
        connection,
        invoice.id,
        PaymentRecord(amount=amount, method=method, date=now, reference=reference, notes="Collected at checkout"),
    )
    payment_status = settlement_status(amount, invoice.pricing.total, invoice.due_date, now.date())
    settled = payment_status == "paid"
    invoice_repository.update_payment(
        connection,
        invoice.id,
        status="paid" if settled else invoice.status,
        payment_status=payment_status,
        payment_method=method,
        paid_amount=amount,
        paid_date=now if settled else None,
        updated_at=now,
    )
