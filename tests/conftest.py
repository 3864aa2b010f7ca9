from __future__ import annotations

import threading
from typing import List, Tuple

import pytest

from tradedesk.data import database
from tradedesk.services import customer_service, inventory_service, notification_service

OWNER = "owner-1"


class RecordingSender:
    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, recipient: str, message: str) -> None:
        with self._lock:
            self.messages.append((recipient, message))


@pytest.fixture(autouse=True)
def temp_database(tmp_path, monkeypatch):
    db_path = tmp_path / "tradedesk.db"
    monkeypatch.setenv("TRADEDESK_DB_PATH", str(db_path))
    database.initialize()
    return db_path


@pytest.fixture(autouse=True)
def sender():
    recorder = RecordingSender()
    dispatcher = notification_service.NotificationDispatcher(recorder, max_workers=2)
    previous = notification_service.set_dispatcher(dispatcher)
    yield recorder
    dispatcher.flush()
    dispatcher.shutdown()
    notification_service.set_dispatcher(previous)


@pytest.fixture
def customer():
    return customer_service.register_customer(
        OWNER,
        "Asha Rao",
        "+919800000001",
        email="asha@example.com",
        city="Pune",
        state="Maharashtra",
    )


@pytest.fixture
def widget():
    return inventory_service.register_product(
        OWNER,
        "wid-1",
        "Widget",
        cost_price="300",
        selling_price="500",
        tax_rate=18,
        quantity=10,
        minimum_stock=2,
    )


@pytest.fixture
def gadget():
    return inventory_service.register_product(
        OWNER,
        "GAD-1",
        "Gadget",
        cost_price="80",
        selling_price="120.50",
        tax_rate=12.5,
        quantity=5,
        minimum_stock=1,
    )


@pytest.fixture
def service_plan():
    return inventory_service.register_product(
        OWNER,
        "SVC-1",
        "Setup service",
        selling_price="999",
        tax_rate=0,
        track_inventory=False,
    )
