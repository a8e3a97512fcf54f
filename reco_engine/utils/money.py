"""
Decimal helpers for monetary values.

Amounts travel through the store API as strings ("150.000") or numbers.
They are converted to Decimal once, at the boundary, and quantized to the
configured precision so that equality is exact.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from ..config import get_settings


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse a monetary value to a quantized Decimal.

    None and blank strings map to None. Floats go through ``str`` so that
    0.1 becomes Decimal('0.1') rather than its binary expansion.

    Raises:
        ValueError: if the value is not a finite number
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, str):
        value = value.strip().replace(" ", "")
        if not value:
            return None
        # "1,250.000", "1,250,000" and "1250,000" all appear in exported ledgers
        if ("," in value and "." in value) or value.count(",") > 1:
            value = value.replace(",", "")
        else:
            value = value.replace(",", ".")
    elif isinstance(value, float):
        value = str(value)

    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc

    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")

    return quantize(amount)


def quantize(amount: Decimal) -> Decimal:
    """
    Round to the configured number of decimal places.

    Raises:
        ValueError: if the amount has too many digits to be represented
            at that precision
    """
    try:
        return amount.quantize(get_settings().amount_quantum, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Amount out of range: {amount}") from exc


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Exact Decimal sum, quantized once at the end."""
    return quantize(sum(amounts, Decimal("0")))


def format_amount(amount: Optional[Decimal]) -> Optional[str]:
    """Render an amount the way the store expects it ("15.000")."""
    if amount is None:
        return None
    return str(quantize(amount))
