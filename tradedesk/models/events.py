from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Union

from .invoice_models import Invoice
from .order_models import Order

NOTIFICATION_KINDS = (
    "order_created",
    "status_changed",
    "cancelled",
    "invoice_sent",
    "payment_received",
    "payment_reminder",
)


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    recipient: str
    document: Union[Order, Invoice]
    business_name: str = ""
    details: Dict[str, str] = field(default_factory=dict)
