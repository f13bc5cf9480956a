"""Categories and transactions: the ledger the recurrence engine writes into."""

from datetime import date
from decimal import Decimal
from typing import Any

from .database import Database
from .models import LedgerEntry
from .utils import normalize_category_type, parse_date, signed_amount, to_decimal


def _serialize_transaction(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "category_id": row["category_id"],
        "category_name": row.get("category_name"),
        "category_type": row.get("category_type"),
        "amount": row["amount"],
        "date": row["date"],
        "note": row["note"],
        "recurring_id": row["recurring_id"],
    }


def list_categories(db: Database, owner_id: str) -> dict[str, Any]:
    """List categories ordered by type, then name."""
    categories = db.list_categories(owner_id)
    return {
        "categories": [
            {"id": c.id, "name": c.name, "type": c.type} for c in categories
        ],
        "count": len(categories),
    }


def create_category(db: Database, owner_id: str, name: str, type_: str) -> dict[str, Any]:
    """Create a category.

    Raises:
        ValueError: If the name is empty, the type is not Income/Expense, or
            a category with the same name (case-insensitive) exists.
    """
    clean = str(name or "").strip()
    if not clean:
        raise ValueError("Name is required.")
    normalized = normalize_category_type(type_)
    if normalized is None:
        raise ValueError("Type must be Income or Expense.")
    if db.find_category_by_name(owner_id, clean) is not None:
        raise ValueError(f"Category name already exists: {clean}")

    category = db.insert_category(owner_id, clean, normalized)
    return {"id": category.id, "name": category.name, "type": category.type}


def delete_category(db: Database, owner_id: str, category_id: int) -> dict[str, Any]:
    """Delete an unused category."""
    category = db.get_category(owner_id, int(category_id))
    if category is None:
        raise ValueError(f"Category {category_id} not found")
    if db.count_category_usage(owner_id, category.id) > 0:
        raise ValueError("Cannot delete a category that has transactions or recurring templates")
    db.delete_category(owner_id, category.id)
    return {"deleted": category.id}


def create_transaction(
    db: Database,
    owner_id: str,
    category_id: int,
    amount: Decimal | float | str,
    date_: str | date,
    note: str | None = None,
) -> dict[str, Any]:
    """Create a manual transaction signed by its category type."""
    if category_id is None:
        raise ValueError("category_id is required")
    category = db.get_category(owner_id, int(category_id))
    if category is None:
        raise ValueError(f"Category {category_id} not found")

    raw = to_decimal(amount)
    if raw == 0:
        raise ValueError("Amount must be a non-zero number.")
    entry_date = parse_date(date_)
    if entry_date is None:
        raise ValueError("date is required")

    entry = LedgerEntry(
        owner_id=owner_id,
        category_id=category.id,
        amount=signed_amount(raw, category.type),
        date=entry_date,
        note=(note or "").strip() or None,
    )
    entry.id = db.create_entry(entry)
    return _serialize_transaction(db.get_transaction(owner_id, entry.id))


def list_transactions(
    db: Database,
    owner_id: str,
    date_from: str | None = None,
    date_to: str | None = None,
    category_id: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict[str, Any]:
    """List transactions newest first, one page at a time."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be positive")

    rows, total = db.list_transactions(
        owner_id,
        date_from=parse_date(date_from, "from"),
        date_to=parse_date(date_to, "to"),
        category_id=int(category_id) if category_id is not None else None,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return {
        "items": [_serialize_transaction(r) for r in rows],
        "page": page,
        "pageSize": page_size,
        "totalCount": total,
    }
