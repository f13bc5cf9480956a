"""Recurring template management: validation, CRUD and schedule preview."""

from datetime import date
from decimal import Decimal
from typing import Any

from .database import Database
from .models import CADENCES, RecurringTemplate, anchor_day
from .schedule import first_on_or_after, upcoming_dates
from .utils import parse_date, to_decimal


EDITABLE_FIELDS = (
    "category_id", "amount", "cadence", "interval", "day_of_month",
    "start_date", "end_date", "is_paused", "note",
)

SCHEDULE_FIELDS = ("start_date", "cadence", "interval", "day_of_month")


def _clean_note(note: str | None) -> str | None:
    if note is None:
        return None
    return str(note).strip() or None


def _validate(
    db: Database,
    owner_id: str,
    category_id: Any,
    amount: Any,
    cadence: Any,
    interval: Any,
    day_of_month: Any,
    start_date: Any,
    end_date: Any,
) -> dict[str, Any]:
    """Validate template fields and return them in their stored types."""
    if category_id is None:
        raise ValueError("category_id is required")
    try:
        category_id = int(category_id)
    except (TypeError, ValueError) as e:
        raise ValueError(f"category_id must be an integer, got {category_id!r}") from e
    if db.get_category(owner_id, category_id) is None:
        raise ValueError(f"Category {category_id} not found")

    if amount is None:
        raise ValueError("amount is required")
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError("Amount must be positive.")

    cadence = str(cadence or "").strip().lower()
    if cadence not in CADENCES:
        raise ValueError(f"Cadence must be one of {', '.join(CADENCES)}.")

    if isinstance(interval, bool) or not isinstance(interval, (int, str)):
        raise ValueError("Interval must be a positive integer.")
    try:
        interval = int(interval)
    except ValueError as e:
        raise ValueError("Interval must be a positive integer.") from e
    if interval < 1:
        raise ValueError("Interval must be a positive integer.")

    if day_of_month is not None:
        try:
            day_of_month = int(day_of_month)
        except (TypeError, ValueError) as e:
            raise ValueError("day_of_month must be an integer between 1 and 31.") from e
        if not 1 <= day_of_month <= 31:
            raise ValueError("day_of_month must be an integer between 1 and 31.")

    start = parse_date(start_date, "start_date")
    if start is None:
        raise ValueError("start_date is required")
    end = parse_date(end_date, "end_date")
    if end is not None and end < start:
        raise ValueError("end_date cannot be before start_date.")

    # Unset monthly anchors follow start_date; see models.anchor_day.
    if cadence != "monthly":
        day_of_month = None

    return {
        "category_id": category_id,
        "amount": amount,
        "cadence": cadence,
        "interval": interval,
        "day_of_month": day_of_month,
        "start_date": start,
        "end_date": end,
    }


def _reseed_cursor(current: RecurringTemplate, fields: dict[str, Any]) -> date:
    start = fields["start_date"]
    floor = start
    # A cursor past the old start date means earlier dates were materialized.
    if current.cursor > current.start_date:
        floor = max(start, current.cursor)
    return first_on_or_after(
        start,
        floor,
        fields["cadence"],
        fields["interval"],
        anchor_day(fields["cadence"], fields["day_of_month"], start),
    )


def _get_or_raise(db: Database, owner_id: str, template_id: int) -> RecurringTemplate:
    template = db.get_template(owner_id, int(template_id))
    if template is None:
        raise ValueError(f"Recurring template {template_id} not found")
    return template


def list_recurring(db: Database, owner_id: str) -> dict[str, Any]:
    """List the owner's recurring templates ordered by start date."""
    items = [t.to_dict() for t in db.list_templates(owner_id)]
    return {"items": items, "count": len(items)}


def create_recurring(
    db: Database,
    owner_id: str,
    category_id: int,
    amount: Decimal | float | str,
    cadence: str,
    start_date: str | date,
    interval: int = 1,
    day_of_month: int | None = None,
    end_date: str | date | None = None,
    note: str | None = None,
    is_paused: bool = False,
) -> dict[str, Any]:
    """Create a recurring template.

    The cursor is seeded to start_date so the first run materializes the
    start date itself.

    Returns:
        The stored template.

    Raises:
        ValueError: On any invalid field or unknown category.
    """
    fields = _validate(
        db, owner_id, category_id, amount, cadence, interval,
        day_of_month, start_date, end_date,
    )
    template = db.insert_template(
        owner_id,
        **fields,
        next_run_date=fields["start_date"],
        is_paused=bool(is_paused),
        note=_clean_note(note),
    )
    return template.to_dict()


def update_recurring(
    db: Database, owner_id: str, template_id: int, patch: dict[str, Any]
) -> dict[str, Any]:
    """Apply a partial update to a template.

    Unknown keys are rejected. When the schedule itself changes (start date,
    cadence, interval or anchor day) the cursor is re-seeded to the first
    occurrence of the new schedule that is not before the new start date
    and, once the template has run, not before its current cursor.
    """
    unknown = set(patch) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    current = _get_or_raise(db, owner_id, template_id)
    merged = {
        "category_id": patch.get("category_id", current.category_id),
        "amount": patch.get("amount", current.amount),
        "cadence": patch.get("cadence", current.cadence),
        "interval": patch.get("interval", current.interval),
        "day_of_month": patch.get("day_of_month", current.day_of_month),
        "start_date": patch.get("start_date", current.start_date),
        "end_date": patch.get("end_date", current.end_date),
    }
    new_cadence = str(patch.get("cadence") or "").strip().lower()
    if "cadence" in patch and "day_of_month" not in patch and new_cadence != current.cadence:
        merged["day_of_month"] = None
    fields = _validate(db, owner_id, **merged)

    if "is_paused" in patch:
        fields["is_paused"] = bool(patch["is_paused"])
    if "note" in patch:
        fields["note"] = _clean_note(patch["note"])
    if any(fields[key] != getattr(current, key) for key in SCHEDULE_FIELDS):
        fields["next_run_date"] = _reseed_cursor(current, fields)

    db.update_template(owner_id, current.id, **fields)
    return db.get_template(owner_id, current.id).to_dict()


def set_paused(db: Database, owner_id: str, template_id: int, paused: bool) -> dict[str, Any]:
    """Pause or resume a template without touching its cursor."""
    template = _get_or_raise(db, owner_id, template_id)
    db.update_template(owner_id, template.id, is_paused=bool(paused))
    return db.get_template(owner_id, template.id).to_dict()


def delete_recurring(db: Database, owner_id: str, template_id: int) -> dict[str, Any]:
    template = _get_or_raise(db, owner_id, template_id)
    db.delete_template(owner_id, template.id)
    return {"deleted": template.id}


def preview_recurring(
    db: Database, owner_id: str, template_id: int, count: int = 5
) -> dict[str, Any]:
    """Show the next occurrences of a template without materializing them."""
    if count < 1:
        raise ValueError("count must be at least 1")
    template = _get_or_raise(db, owner_id, template_id)
    dates = upcoming_dates(
        template.cursor,
        template.cadence,
        template.interval,
        template.anchor_day,
        count=count,
        end_date=template.end_date,
    )
    return {
        "template_id": template.id,
        "is_paused": template.is_paused,
        "next_run_date": template.cursor.isoformat(),
        "upcoming": [d.isoformat() for d in dates],
    }
