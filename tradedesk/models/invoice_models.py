from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

INVOICE_STATUSES = ("draft", "sent", "viewed", "paid", "overdue", "cancelled")
INVOICE_PAYMENT_STATUSES = ("pending", "partial", "paid", "overdue", "cancelled")
INVOICE_TYPES = ("invoice", "proforma", "credit_note", "debit_note", "receipt")
INVOICE_SOURCES = ("manual", "order", "recurring", "api")


@dataclass
class PartyDetails:
    name: str
    phone: str = ""
    email: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "India"
    gstin: str = ""


@dataclass(frozen=True)
class InvoiceLineItem:
    description: str
    quantity: int
    unit_price: int
    total: int
    product_id: Optional[int] = None
    sku: str = ""
    unit: str = "piece"
    discount: int = 0
    tax_rate: float = 0.0
    tax_amount: int = 0


@dataclass
class InvoiceItemRequest:
    """Line for a standalone invoice; amounts in rupees."""

    description: str
    quantity: int
    unit_price: object
    discount: object = 0
    tax_rate: float = 0.0
    product_id: Optional[int] = None
    sku: str = ""
    unit: str = "piece"


@dataclass(frozen=True)
class TaxBreakupEntry:
    name: str
    rate: float
    amount: int


@dataclass
class InvoicePricing:
    subtotal: int
    total_discount: int = 0
    total_tax: int = 0
    tax_breakup: List[TaxBreakupEntry] = field(default_factory=list)
    shipping: int = 0
    packaging: int = 0
    adjustment: int = 0
    total: int = 0
    amount_in_words: str = ""
    currency: str = "INR"


@dataclass(frozen=True)
class PaymentRecord:
    amount: int
    method: str
    date: datetime
    reference: str = ""
    notes: str = ""


@dataclass
class PaymentDetails:
    due_date: date
    status: str = "pending"
    method: str = ""
    paid_amount: int = 0
    paid_date: Optional[datetime] = None
    payments: List[PaymentRecord] = field(default_factory=list)
    reminder_sent_at: Optional[datetime] = None


@dataclass
class InvoiceOptions:
    payment_terms_days: Optional[int] = None
    terms: Optional[str] = None
    footer: Optional[str] = None
    gstin: Optional[str] = None
    issue_date: Optional[date] = None
    invoice_type: str = "invoice"
    shipping: object = 0
    packaging: object = 0


@dataclass
class Invoice:
    owner_id: str
    customer_id: int
    invoice_number: str
    items: List[InvoiceLineItem]
    pricing: InvoicePricing
    payment_details: PaymentDetails
    issue_date: date
    business_details: PartyDetails
    customer_details: PartyDetails
    status: str = "draft"
    invoice_type: str = "invoice"
    order_id: Optional[int] = None
    id: Optional[int] = None
    terms: str = ""
    footer: str = ""
    source: str = "manual"
    sent_at: Optional[datetime] = None
    cancellation_reason: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def due_date(self) -> date:
        return self.payment_details.due_date

    @property
    def amount_due(self) -> int:
        return self.pricing.total - self.payment_details.paid_amount

    @property
    def excess_amount(self) -> int:
        return max(0, -self.amount_due)
