"""Best-effort customer notifications.

Delivery runs on a small thread pool and never reports back to the caller;
a failing sender is logged and otherwise ignored.
"""
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Optional, Set, Union

from ..config import Config
from ..data import settings_repository
from ..models.events import NOTIFICATION_KINDS, NotificationEvent
from ..models.invoice_models import Invoice
from ..models.order_models import Order
from ..utils.logger import get_logger
from .pricing import format_currency

logger = get_logger("notifications")

Sender = Callable[[str, str], None]

_STATUS_MESSAGES = {
    "confirmed": "Your order *{number}* has been confirmed and is being processed.",
    "processing": "Your order *{number}* is now being prepared for shipment.",
    "shipped": "Great news! Your order *{number}* has been shipped.",
    "delivered": "Your order *{number}* has been delivered successfully!\n\nThank you for shopping with us!",
    "refunded": "Your order *{number}* has been refunded.",
}


def log_sender(recipient: str, message: str) -> None:
    logger.info("Notification for %s:\n%s", recipient, message)


def render_message(event: NotificationEvent) -> str:
    if event.kind not in NOTIFICATION_KINDS:
        raise ValueError(f"Unknown notification kind: {event.kind!r}")
    renderer = _RENDERERS[event.kind]
    return renderer(event).strip()


def _render_order_created(event: NotificationEvent) -> str:
    order: Order = event.document
    lines = []
    for index, item in enumerate(order.items, start=1):
        lines.append(
            f"{index}. {item.product_name}\n"
            f"   Qty: {item.quantity} x {format_currency(item.unit_price)}\n"
            f"   Total: {format_currency(item.total)}"
        )
    created = order.created_at.strftime("%d/%m/%Y") if order.created_at else ""
    return "\n".join(
        [
            f"*{event.business_name}*",
            "",
            "*Order Details*",
            f"Order #: *{order.order_number}*",
            f"Date: {created}",
            "",
            "*Items:*",
            *lines,
            "",
            f"*Total: {format_currency(order.pricing.total)}*",
            f"Payment: {order.payment_method.upper()}",
            f"Status: {order.status.upper()}",
            "",
            "Thank you for your order!",
        ]
    )


def _render_status_changed(event: NotificationEvent) -> str:
    order: Order = event.document
    status = event.details.get("status", order.status)
    template = _STATUS_MESSAGES.get(status)
    if template is None:
        return f"Order {order.order_number} status updated to: {status}"
    message = template.format(number=order.order_number)
    if status == "shipped" and order.tracking_number:
        message += f"\n\nTracking: {order.tracking_number}"
    return message


def _render_cancelled(event: NotificationEvent) -> str:
    order: Order = event.document
    message = f"Your order *{order.order_number}* has been cancelled."
    if order.cancellation_reason:
        message += f"\n\nReason: {order.cancellation_reason}"
    return message


def _render_invoice_sent(event: NotificationEvent) -> str:
    invoice: Invoice = event.document
    return "\n".join(
        [
            f"*{event.business_name}*",
            "",
            "*Invoice Details*",
            f"Invoice #: *{invoice.invoice_number}*",
            f"Date: {invoice.issue_date.strftime('%d/%m/%Y')}",
            f"Due Date: {invoice.due_date.strftime('%d/%m/%Y')}",
            "",
            f"*Total Amount: {format_currency(invoice.pricing.total)}*",
            f"Status: {invoice.payment_details.status.upper()}",
            "",
            invoice.footer or "Thank you for your business!",
        ]
    )


def _render_payment_received(event: NotificationEvent) -> str:
    invoice: Invoice = event.document
    amount = event.details.get("amount", "")
    message = f"Payment of {amount} received for invoice *{invoice.invoice_number}*."
    if invoice.amount_due > 0:
        message += f"\nBalance due: {format_currency(invoice.amount_due)}"
    else:
        message += "\nYour invoice is fully paid. Thank you!"
    return message


def _render_payment_reminder(event: NotificationEvent) -> str:
    invoice: Invoice = event.document
    days = event.details.get("days_overdue", "")
    return "\n".join(
        [
            "*Payment Reminder*",
            "",
            "Dear Customer,",
            "",
            f"This is a friendly reminder that your invoice *{invoice.invoice_number}* is due.",
            "",
            f"*Amount Due: {format_currency(invoice.amount_due)}*",
            f"*Days Overdue: {days}*",
            "",
            "Please arrange payment at your earliest convenience.",
            "",
            "Thank you!",
        ]
    )


_RENDERERS = {
    "order_created": _render_order_created,
    "status_changed": _render_status_changed,
    "cancelled": _render_cancelled,
    "invoice_sent": _render_invoice_sent,
    "payment_received": _render_payment_received,
    "payment_reminder": _render_payment_reminder,
}


class NotificationDispatcher:
    def __init__(self, sender: Optional[Sender] = None, max_workers: Optional[int] = None) -> None:
        self._sender = sender or log_sender
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or Config.NOTIFICATION_WORKERS,
            thread_name_prefix="tradedesk-notify",
        )
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def notify(self, event: NotificationEvent) -> bool:
        """Queue ``event`` for delivery; False when it was dropped."""
        if not event.recipient:
            logger.debug("Skipping %s notification without a recipient", event.kind)
            return False
        try:
            future = self._executor.submit(self._deliver, event)
        except RuntimeError:
            logger.warning("Dispatcher is shut down; dropped %s notification", event.kind)
            return False
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return True

    def flush(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            message = render_message(event)
            self._sender(event.recipient, message)
        except Exception:
            logger.exception("Failed to deliver %s notification to %s", event.kind, event.recipient)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)


_dispatcher: Optional[NotificationDispatcher] = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            _dispatcher = NotificationDispatcher()
        return _dispatcher


def set_dispatcher(dispatcher: Optional[NotificationDispatcher]) -> Optional[NotificationDispatcher]:
    """Install ``dispatcher`` and return the previous one."""
    global _dispatcher
    with _dispatcher_lock:
        previous = _dispatcher
        _dispatcher = dispatcher
    return previous


def notify(event: NotificationEvent) -> bool:
    try:
        return get_dispatcher().notify(event)
    except Exception:
        logger.exception("Could not queue %s notification", event.kind)
        return False


def publish(
    kind: str,
    owner_id: str,
    recipient: str,
    document: Union[Order, Invoice],
    details: Optional[Dict[str, str]] = None,
) -> bool:
    """Queue an event if the owner has notifications switched on; True when queued."""
    try:
        settings = settings_repository.get_app_settings(owner_id)
        if not settings.notifications_enabled or not recipient:
            return False
        event = NotificationEvent(
            kind=kind,
            recipient=recipient,
            document=document,
            business_name=settings.business_name,
            details=details or {},
        )
    except Exception:
        logger.exception("Could not prepare %s notification", kind)
        return False
    return notify(event)


def flush(timeout: Optional[float] = None) -> None:
    get_dispatcher().flush(timeout)
