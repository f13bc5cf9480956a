"""Test fixtures for BudgetWise MCP server tests."""

from datetime import date
from decimal import Decimal
from typing import Any, Callable

import pytest

from budgetwise_mcp.database import Database
from budgetwise_mcp.models import RecurringTemplate
from budgetwise_mcp.recurrence import RecurrenceEngine


OWNER = "user-1"
OTHER_OWNER = "user-2"

_UNSET = object()


@pytest.fixture
def db() -> Database:
    """Create in-memory database with schema."""
    database = Database(":memory:")
    database.init_schema()
    return database


@pytest.fixture
def categories(db: Database) -> dict[str, int]:
    """Categories for both owners, keyed by a short name.

    'coffee' is stored with an upper-case type to exercise case-insensitive
    resolution; 'freelance' belongs to the other owner.
    """
    salary = db.insert_category(OWNER, "Salary", "Income")
    rent = db.insert_category(OWNER, "Rent", "Expense")
    freelance = db.insert_category(OTHER_OWNER, "Freelance", "Income")

    conn = db.connect()
    cursor = conn.execute(
        "INSERT INTO categories (owner_id, name, type) VALUES (?, ?, ?)",
        (OWNER, "Coffee", "EXPENSE"),
    )
    conn.commit()

    return {
        "salary": salary.id,
        "rent": rent.id,
        "coffee": cursor.lastrowid,
        "freelance": freelance.id,
    }


@pytest.fixture
def add_template(db: Database, categories: dict[str, int]) -> Callable[..., RecurringTemplate]:
    """Factory inserting a recurring template straight into the database.

    The cursor defaults to start_date; pass next_run_date=None for a template
    that never ran.
    """

    def _add(
        owner_id: str = OWNER,
        category: str = "rent",
        next_run_date: Any = _UNSET,
        **fields: Any,
    ) -> RecurringTemplate:
        values: dict[str, Any] = {
            "amount": Decimal("100"),
            "cadence": "monthly",
            "interval": 1,
            "start_date": date(2025, 1, 15),
        }
        values.update(fields)
        values["next_run_date"] = (
            values["start_date"] if next_run_date is _UNSET else next_run_date
        )
        return db.insert_template(owner_id, category_id=categories[category], **values)

    return _add


@pytest.fixture
def engine(db: Database) -> RecurrenceEngine:
    """Engine wired to the in-memory database for all three stores."""
    return RecurrenceEngine(db, db, db)


def ledger_rows(db: Database, owner_id: str = OWNER) -> list[dict[str, Any]]:
    """All transactions of an owner, oldest first."""
    rows, _ = db.list_transactions(owner_id)
    return sorted(rows, key=lambda r: (r["date"], r["id"]))
