"""
Money helpers.

All arithmetic in CartRelay is done in integer minor units (kobo for Naira).
Major-unit values only appear at the edges: legacy cart lines that carry a
float ``price`` are converted on the way in, and ``format_minor`` produces
display strings at render time.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

DEFAULT_CURRENCY = "NGN"

# Minor units per major unit
MINOR_UNITS = {
    "NGN": 100,
    "USD": 100,
    "GHS": 100,
}

CURRENCY_SYMBOLS = {
    "NGN": "₦",
    "USD": "$",
    "GHS": "GH₵",
}


def to_minor(amount: Union[int, float, str, Decimal], currency: str = DEFAULT_CURRENCY) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Floats are converted through their string form so that 149.99 becomes
    14999 rather than 14998.

    Raises:
        ValueError: If the amount is not numeric or is negative
    """
    if isinstance(amount, bool):
        raise ValueError(f"Not a monetary amount: {amount!r}")
    try:
        major = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a monetary amount: {amount!r}") from e
    if not major.is_finite():
        raise ValueError(f"Not a monetary amount: {amount!r}")
    if major < 0:
        raise ValueError(f"Negative monetary amount: {amount!r}")

    factor = MINOR_UNITS.get(currency, 100)
    try:
        minor = (major * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Monetary amount out of range: {amount!r}") from e
    return int(minor)


def to_major(amount_minor: int, currency: str = DEFAULT_CURRENCY) -> Decimal:
    """Convert integer minor units to a Decimal major-unit amount."""
    factor = MINOR_UNITS.get(currency, 100)
    return (Decimal(amount_minor) / factor).quantize(Decimal("0.01"))


def format_minor(amount_minor: int, currency: str = DEFAULT_CURRENCY) -> str:
    """
    Format minor units for display.

    Example:
        format_minor(2500000) -> "₦25,000.00"
    """
    symbol = CURRENCY_SYMBOLS.get(currency, f"{currency} ")
    return f"{symbol}{to_major(amount_minor, currency):,.2f}"
