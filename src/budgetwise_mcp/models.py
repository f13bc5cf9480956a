"""Records exchanged between the recurrence engine and its stores."""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any


CADENCES = ("daily", "weekly", "monthly")

INCOME = "Income"
EXPENSE = "Expense"


def anchor_day(cadence: str, day_of_month: int | None, start_date: date) -> int | None:
    """Day a monthly schedule returns to after a short-month clamp.

    An explicit day_of_month wins; otherwise the start date's day is used.
    Other cadences have no anchor.
    """
    if cadence != "monthly":
        return None
    return day_of_month or start_date.day


@dataclass
class Category:
    id: int
    owner_id: str
    name: str
    type: str               # 'Income' | 'Expense'


@dataclass
class RecurringTemplate:
    id: int
    owner_id: str
    category_id: int
    amount: Decimal         # unsigned magnitude
    cadence: str            # 'daily' | 'weekly' | 'monthly'
    start_date: date
    interval: int = 1
    day_of_month: int | None = None
    end_date: date | None = None
    next_run_date: date | None = None
    is_paused: bool = False
    note: str | None = None

    @property
    def cursor(self) -> date:
        """Date of the next occurrence; an unset cursor starts at start_date."""
        return self.next_run_date or self.start_date

    @property
    def anchor_day(self) -> int | None:
        return anchor_day(self.cadence, self.day_of_month, self.start_date)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(self.amount)
        for key in ("start_date", "end_date", "next_run_date"):
            value = data[key]
            data[key] = value.isoformat() if value else None
        return data


@dataclass
class LedgerEntry:
    owner_id: str
    category_id: int
    amount: Decimal         # signed
    date: date
    note: str | None = None
    recurring_id: int | None = None
    id: int | None = field(default=None, compare=False)
