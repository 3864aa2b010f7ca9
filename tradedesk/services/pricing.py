"""Money and tax arithmetic.

Every amount handled here is an integer number of minor currency units
(paise). Callers convert user supplied rupee amounts with
:func:`to_minor_units` and only turn paise back into decimals for display.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import ValidationError
from ..models.invoice_models import TaxBreakupEntry

_MINOR_PER_MAJOR = 100
_ONE = Decimal("1")


@dataclass(frozen=True)
class LinePrice:
    quantity: int
    unit_price: int
    discount: int
    tax_rate: float
    taxable_amount: int
    tax_amount: int
    total: int


@dataclass(frozen=True)
class PricingSummary:
    subtotal: int
    total_discount: int
    total_tax: int


def to_minor_units(amount: object, *, field_name: str = "amount") -> int:
    """Convert a rupee amount (Decimal, str, int or float) into paise."""
    if amount is None or amount == "":
        return 0
    if isinstance(amount, bool):
        raise ValidationError(f"Invalid {field_name}: {amount!r}")
    try:
        # str() first so floats such as 0.1 keep their printed value.
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {field_name}: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid {field_name}: {amount!r}")
    return int((value * _MINOR_PER_MAJOR).quantize(_ONE, rounding=ROUND_HALF_UP))


def to_quantity(value: object, *, field_name: str = "quantity", minimum: Optional[int] = 1) -> int:
    """Convert a count of units into an int; fractions and garbage are rejected."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from exc
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError(f"{field_name.capitalize()} must be a whole number, got {value!r}")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field_name.capitalize()} must be at least {minimum}, got {value!r}")
    return int(number)


def from_minor_units(paise: int) -> Decimal:
    return (Decimal(int(paise)) / _MINOR_PER_MAJOR).quantize(Decimal("0.01"))


def format_amount(paise: int) -> str:
    return f"{from_minor_units(paise):.2f}"


def format_currency(paise: int, symbol: str = "₹") -> str:
    value = from_minor_units(paise)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def validate_tax_rate(tax_rate: object) -> Decimal:
    try:
        rate = Decimal(str(tax_rate))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid tax rate: {tax_rate!r}") from exc
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError(f"Tax rate must be between 0 and 100, got {tax_rate!r}")
    return rate


def price_line(unit_price: int, quantity: int, discount: int = 0, tax_rate: object = 0) -> LinePrice:
    if quantity < 0:
        raise ValidationError(f"Quantity cannot be negative, got {quantity}")
    if unit_price < 0:
        raise ValidationError(f"Unit price cannot be negative, got {unit_price}")
    if discount < 0:
        raise ValidationError(f"Discount cannot be negative, got {discount}")
    rate = validate_tax_rate(tax_rate)

    gross = unit_price * quantity
    if discount > gross:
        raise ValidationError("Discount cannot exceed the line amount")

    taxable = gross - discount
    tax = int((Decimal(taxable) * rate / 100).quantize(_ONE, rounding=ROUND_HALF_UP))
    return LinePrice(
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        tax_rate=float(rate),
        taxable_amount=taxable,
        tax_amount=tax,
        total=taxable + tax,
    )


def summarize_lines(lines: Iterable[LinePrice]) -> PricingSummary:
    subtotal = 0
    total_discount = 0
    total_tax = 0
    for line in lines:
        subtotal += line.total
        total_discount += line.discount
        total_tax += line.tax_amount
    return PricingSummary(subtotal=subtotal, total_discount=total_discount, total_tax=total_tax)


def order_total(subtotal: int, shipping: int = 0, packaging: int = 0, adjustment: int = 0) -> int:
    if shipping < 0 or packaging < 0:
        raise ValidationError("Shipping and packaging charges cannot be negative")
    return subtotal + shipping + packaging + adjustment


def tax_breakup(lines: Sequence[LinePrice]) -> List[TaxBreakupEntry]:
    grouped: Dict[float, int] = {}
    for line in lines:
        if line.tax_amount == 0 and line.tax_rate == 0:
            continue
        grouped[line.tax_rate] = grouped.get(line.tax_rate, 0) + line.tax_amount
    return [
        TaxBreakupEntry(name=f"GST {_format_rate(rate)}%", rate=rate, amount=amount)
        for rate, amount in sorted(grouped.items())
    ]


def average(total: int, count: int) -> int:
    if count <= 0:
        return 0
    return int((Decimal(total) / count).quantize(_ONE, rounding=ROUND_HALF_UP))


def _format_rate(rate: float) -> str:
    text = f"{rate:.4f}".rstrip("0").rstrip(".")
    return text or "0"
