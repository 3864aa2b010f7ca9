from __future__ import annotations

from typing import List, Tuple

_ONES = [
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
    "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen",
    "Eighteen", "Nineteen",
]
_TENS = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

# Indian grouping, largest tier first.
_TIERS: List[Tuple[int, str]] = [
    (10_000_000, "Crore"),
    (100_000, "Lakh"),
    (1_000, "Thousand"),
    (100, "Hundred"),
]


def number_to_words(number: int) -> str:
    if number < 0:
        raise ValueError("Cannot spell a negative number")
    if number < 20:
        return _ONES[number]
    if number < 100:
        tens, rest = divmod(number, 10)
        return _TENS[tens] + (f" {_ONES[rest]}" if rest else "")

    for divisor, label in _TIERS:
        if number >= divisor:
            head, rest = divmod(number, divisor)
            words = f"{number_to_words(head)} {label}"
            if rest:
                words += f" {number_to_words(rest)}"
            return words
    return ""


def amount_in_words(paise: int) -> str:
    """Spell an amount held in paise, e.g. 15007550 -> 'One Lakh Fifty Thousand
    Seventy Five Rupees and Fifty Paise'."""
    rupees, fraction = divmod(abs(int(paise)), 100)
    words = f"{number_to_words(rupees) or 'Zero'} Rupees"
    if fraction:
        words += f" and {number_to_words(fraction)} Paise"
    if paise < 0:
        words = f"Minus {words}"
    return words
