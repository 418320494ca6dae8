"""
Unit tests for the money helpers.
"""

import pytest
from decimal import Decimal

from modules.currency import format_minor, to_major, to_minor


class TestToMinor:
    """Test major -> minor unit conversion."""

    @pytest.mark.parametrize("amount,expected", [
        (25000, 2500000),
        (149.99, 14999),
        ("12.5", 1250),
        (0.005, 1),
        (0, 0),
    ])
    def test_conversion(self, amount, expected):
        assert to_minor(amount) == expected

    @pytest.mark.parametrize("amount", [-1, "abc", None, True, float("nan"), float("inf"), "1e50"])
    def test_rejects_invalid_amounts(self, amount):
        with pytest.raises(ValueError):
            to_minor(amount)


class TestFormatting:
    """Test display helpers."""

    def test_to_major(self):
        assert to_major(2500000) == Decimal("25000.00")

    def test_format_naira(self):
        assert format_minor(2500000) == "₦25,000.00"

    def test_format_unknown_currency_uses_code(self):
        assert format_minor(1999, "EUR") == "EUR 19.99"
