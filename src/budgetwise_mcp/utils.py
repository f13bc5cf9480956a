"""Utility functions for BudgetWise recurring transactions."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from .models import EXPENSE, INCOME


def normalize_category_type(value: str | None) -> str | None:
    """Normalize a category type string.

    Comparison is case-insensitive, so 'expense', 'EXPENSE' and 'Expense'
    all map to 'Expense'.

    Args:
        value: Raw type string from a store or a tool argument.

    Returns:
        'Income', 'Expense', or None when the value is neither.
    """
    text = str(value or "").strip().lower()
    if text == "income":
        return INCOME
    if text == "expense":
        return EXPENSE
    return None


def is_expense(category_type: str | None) -> bool:
    """Check if a category type denotes an expense."""
    return normalize_category_type(category_type) == EXPENSE


def signed_amount(amount: Decimal, category_type: str | None) -> Decimal:
    """Apply the category sign to an amount.

    Expense categories produce a negative amount, everything else a positive
    one. An unknown type (None) keeps the unsigned magnitude.

    Args:
        amount: Amount in any sign.
        category_type: Category type string, or None when unresolved.

    Returns:
        Signed amount.
    """
    magnitude = abs(amount)
    return -magnitude if is_expense(category_type) else magnitude


def to_decimal(value: object, field: str = "amount") -> Decimal:
    """Convert an int/float/str to Decimal, raising ValueError on garbage."""
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"{field} must be a number, got {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def parse_date(value: str | date | None, field: str = "date") -> date | None:
    """Parse a YYYY-MM-DD string (or pass a date through).

    Returns None for empty values; raises ValueError for malformed ones.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError as e:
        raise ValueError(f"{field} must be a date in YYYY-MM-DD format, got {value!r}") from e
