"""Monthly analytics over the ledger."""

from datetime import date
from decimal import Decimal
from typing import Any

from .database import Database
from .schedule import last_day_of_month


def get_month_dates(year: Any, month: Any) -> tuple[date, date]:
    """Convert a year and month to the first and last day of that month.

    Args:
        year: Four-digit year.
        month: Month number, 1-12.

    Returns:
        Tuple of (first_day, last_day).

    Raises:
        ValueError: If year or month is missing or out of range.
    """
    if not year or not month:
        raise ValueError("year and month are required")
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError) as e:
        raise ValueError("year and month must be integers") from e
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    if not 1 <= year <= 9999:
        raise ValueError(f"year out of range: {year}")

    return date(year, month, 1), date(year, month, last_day_of_month(year, month))


def monthly_summary(db: Database, owner_id: str, year: Any, month: Any) -> dict[str, Any]:
    """Income, expense and balance change of one month.

    Positive amounts count as income and negative amounts as expense,
    whatever their category.

    Returns:
        Dictionary with income, expense and balanceChange as decimal strings.
    """
    start, end = get_month_dates(year, month)
    rows, _ = db.list_transactions(owner_id, date_from=start, date_to=end)

    income = Decimal("0")
    expense = Decimal("0")
    for row in rows:
        amount = Decimal(row["amount"])
        if amount > 0:
            income += amount
        else:
            expense -= amount

    return {
        "year": start.year,
        "month": start.month,
        "income": str(income),
        "expense": str(expense),
        "balanceChange": str(income - expense),
        "transactionCount": len(rows),
    }


def category_breakdown(db: Database, owner_id: str, year: Any, month: Any) -> dict[str, Any]:
    """Per-category income, expense and signed total of one month.

    Items are sorted by the absolute signed total, largest first.
    """
    start, end = get_month_dates(year, month)
    rows, _ = db.list_transactions(owner_id, date_from=start, date_to=end)

    by_category: dict[int, dict[str, Any]] = {}
    for row in rows:
        amount = Decimal(row["amount"])
        item = by_category.setdefault(
            row["category_id"],
            {
                "categoryId": row["category_id"],
                "categoryName": row["category_name"] or "Unknown",
                "income": Decimal("0"),
                "expense": Decimal("0"),
                "totalSigned": Decimal("0"),
            },
        )
        if amount > 0:
            item["income"] += amount
        else:
            item["expense"] -= amount
        item["totalSigned"] += amount

    items = sorted(
        by_category.values(),
        key=lambda i: (-abs(i["totalSigned"]), i["categoryId"]),
    )
    for item in items:
        for key in ("income", "expense", "totalSigned"):
            item[key] = str(item[key])

    return {
        "year": start.year,
        "month": start.month,
        "items": items,
        "count": len(items),
    }
