"""Tests for utility functions."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from budgetwise_mcp.utils import (
    is_expense,
    normalize_category_type,
    parse_date,
    signed_amount,
    to_decimal,
)


class TestCategoryType:
    """Test category type normalization."""

    @pytest.mark.parametrize("raw", ["Expense", "expense", "EXPENSE", " Expense "])
    def test_expense_spellings(self, raw):
        assert normalize_category_type(raw) == "Expense"
        assert is_expense(raw)

    def test_income(self):
        assert normalize_category_type("INCOME") == "Income"
        assert not is_expense("Income")

    def test_unknown(self):
        assert normalize_category_type("Transfer") is None
        assert normalize_category_type(None) is None
        assert not is_expense(None)


class TestSignedAmount:
    """Test sign rules."""

    def test_expense_negative(self):
        assert signed_amount(Decimal("10.50"), "Expense") == Decimal("-10.50")
        assert signed_amount(Decimal("-10.50"), "expense") == Decimal("-10.50")

    def test_income_positive(self):
        assert signed_amount(Decimal("-3"), "Income") == Decimal("3")

    def test_unresolved_keeps_magnitude(self):
        assert signed_amount(Decimal("7"), None) == Decimal("7")


class TestToDecimal:
    """Test amount conversion."""

    def test_float_uses_shortest_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(1200.5) == Decimal("1200.5")

    def test_int_and_str(self):
        assert to_decimal(5) == Decimal("5")
        assert to_decimal("19.99") == Decimal("19.99")

    @pytest.mark.parametrize("value", [True, "abc", None, "NaN", "Infinity", float("inf")])
    def test_rejected(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)


class TestParseDate:
    """Test date parsing."""

    def test_iso_string(self):
        assert parse_date("2025-02-28") == date(2025, 2, 28)

    def test_timestamp_string_truncated(self):
        assert parse_date("2025-02-28T10:00:00Z") == date(2025, 2, 28)

    def test_date_and_datetime(self):
        assert parse_date(date(2025, 1, 1)) == date(2025, 1, 1)
        assert parse_date(datetime(2025, 1, 1, 23, 59)) == date(2025, 1, 1)

    def test_empty(self):
        assert parse_date(None) is None
        assert parse_date("") is None

    def test_invalid(self):
        with pytest.raises(ValueError, match="as_of must be a date"):
            parse_date("2025-02-30", "as_of")
