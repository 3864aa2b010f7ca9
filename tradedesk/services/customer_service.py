from __future__ import annotations

from typing import List

from ..data import customer_repository
from ..data.database import transaction
from ..errors import NotFoundError, ValidationError
from ..models.order_models import Customer
from ..utils.logger import get_logger

logger = get_logger("customers")


def register_customer(
    owner_id: str,
    name: str,
    phone: str,
    *,
    email: str = "",
    street: str = "",
    city: str = "",
    state: str = "",
    postal_code: str = "",
    country: str = "India",
    gstin: str = "",
) -> Customer:
    with transaction() as connection:
        try:
            customer = customer_repository.create_customer(
                connection,
                owner_id,
                name,
                phone,
                email=email,
                street=street,
                city=city,
                state=state,
                postal_code=postal_code,
                country=country,
                gstin=gstin,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    logger.info("Registered customer %s for %s", customer.id, owner_id)
    return customer


def get_customer(owner_id: str, customer_id: int) -> Customer:
    customer = customer_repository.get_customer(owner_id, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(owner_id: str, *, include_inactive: bool = False) -> List[Customer]:
    return customer_repository.list_customers(owner_id, include_inactive=include_inactive)


def deactivate_customer(owner_id: str, customer_id: int) -> None:
    with transaction() as connection:
        if customer_repository.find_customer(connection, owner_id, customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        customer_repository.set_active(connection, owner_id, customer_id, False)
