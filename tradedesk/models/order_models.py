from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
)
TERMINAL_ORDER_STATUSES = frozenset({"delivered", "cancelled", "refunded"})
ORDER_PAYMENT_STATUSES = ("pending", "partial", "paid", "refunded", "failed")
PAYMENT_METHODS = ("cash", "upi", "bank_transfer", "card", "credit", "cod")
ORDER_SOURCES = ("whatsapp", "manual", "import", "api")


@dataclass
class Address:
    name: str = ""
    phone: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "India"


@dataclass
class ProductRef:
    """Live catalog entry. Amounts are in paise; quantity belongs to the inventory ledger."""

    id: int
    owner_id: str
    sku: str
    name: str
    cost_price: int
    selling_price: int
    tax_rate: float = 0.0
    quantity: int = 0
    minimum_stock: int = 10
    track_inventory: bool = True
    is_active: bool = True
    description: str = ""
    unit: str = "piece"

    @property
    def is_low_stock(self) -> bool:
        return self.track_inventory and self.quantity <= self.minimum_stock


@dataclass
class Customer:
    id: int
    owner_id: str
    name: str
    phone: str
    email: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "India"
    gstin: str = ""
    is_active: bool = True
    total_orders: int = 0
    total_spent: int = 0
    average_order_value: int = 0
    last_order_date: Optional[datetime] = None


@dataclass
class LineItemRequest:
    """One cart entry as submitted by a caller; amounts in rupees."""

    product_id: int
    quantity: int
    unit_price: Optional[object] = None
    discount: object = 0
    tax_rate: Optional[float] = None
    notes: str = ""


@dataclass(frozen=True)
class LineItemSnapshot:
    """Frozen copy of a product line taken when the order was placed."""

    product_id: Optional[int]
    product_name: str
    sku: str
    quantity: int
    unit_price: int
    discount: int
    tax_rate: float
    tax_amount: int
    total: int
    notes: str = ""
    stock_reserved: bool = False

    @property
    def gross_amount(self) -> int:
        return self.unit_price * self.quantity

    @property
    def taxable_amount(self) -> int:
        return self.gross_amount - self.discount


@dataclass
class OrderPricing:
    subtotal: int
    total_discount: int = 0
    total_tax: int = 0
    shipping: int = 0
    packaging: int = 0
    total: int = 0
    amount_paid: int = 0
    currency: str = "INR"

    @property
    def amount_due(self) -> int:
        return self.total - self.amount_paid


@dataclass
class TrackingEvent:
    status: str
    timestamp: datetime
    location: str = ""
    notes: str = ""


@dataclass
class Order:
    owner_id: str
    customer_id: int
    order_number: str
    status: str
    pricing: OrderPricing
    items: List[LineItemSnapshot] = field(default_factory=list)
    payment_status: str = "pending"
    payment_method: str = "cod"
    id: Optional[int] = None
    carrier: str = ""
    tracking_number: str = ""
    tracking_url: str = ""
    estimated_delivery: Optional[date] = None
    actual_delivery: Optional[datetime] = None
    tracking_history: List[TrackingEvent] = field(default_factory=list)
    shipping_address: Address = field(default_factory=Address)
    internal_notes: str = ""
    customer_notes: str = ""
    source: str = "manual"
    cancelled_at: Optional[datetime] = None
    cancellation_reason: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def line_total(self) -> int:
        return sum(item.total for item in self.items)


@dataclass
class OrderHistoryEvent:
    id: int
    order_id: Optional[int]
    order_number: str
    event_type: str
    description: str
    amount_delta: int
    created_at: datetime


@dataclass
class AppSettings:
    business_name: str
    business_phone: str = ""
    business_email: str = ""
    business_street: str = ""
    business_city: str = ""
    business_state: str = ""
    business_postal_code: str = ""
    business_country: str = "India"
    business_gstin: str = ""
    currency: str = "INR"
    payment_terms_days: int = 30
    invoice_terms: str = "Payment due within 30 days of invoice date."
    invoice_footer: str = "Thank you for your business!"
    overpayment_policy: str = "accept"
    notifications_enabled: bool = True
