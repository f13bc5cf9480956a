"""Recurrence engine: materializes due recurring templates as ledger entries."""

import logging
import threading
import weakref
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Protocol

from .database import DuplicateEntryError
from .models import Category, LedgerEntry, RecurringTemplate
from .schedule import advance
from .utils import signed_amount


logger = logging.getLogger(__name__)

SINGLE_STEP = "single-step"
FULL_CATCH_UP = "full-catch-up"
CATCH_UP_MODES = (SINGLE_STEP, FULL_CATCH_UP)


class CategoryLookup(Protocol):
    def get_category(self, owner_id: str, category_id: int) -> Category | None: ...


class TemplateStore(Protocol):
    def list_due_templates(self, owner_id: str, as_of: date) -> list[RecurringTemplate]: ...

    def update_cursor(
        self, template_id: int, new_next_run_date: date, expected: date | None = None
    ) -> bool: ...


class LedgerSink(Protocol):
    def create_entry(self, entry: LedgerEntry) -> int: ...


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_due(template: RecurringTemplate, as_of: date) -> bool:
    """Due-selection predicate shared by every template store."""
    if template.is_paused:
        return False
    if template.cursor > as_of:
        return False
    if template.end_date is not None and template.end_date < as_of:
        return False
    return True


@dataclass
class TemplateFailure:
    template_id: int
    error: str


@dataclass
class RunResult:
    """Outcome of one run_due call."""

    owner_id: str
    as_of: date
    due_count: int = 0
    created_count: int = 0
    entry_ids: list[int] = field(default_factory=list)
    unresolved_categories: list[int] = field(default_factory=list)
    conflicts: list[int] = field(default_factory=list)
    duplicates: list[int] = field(default_factory=list)
    failures: list[TemplateFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ownerId": self.owner_id,
            "asOf": self.as_of.isoformat(),
            "createdCount": self.created_count,
            "dueCount": self.due_count,
            "entryIds": self.entry_ids,
            "unresolvedCategories": self.unresolved_categories,
            "conflicts": self.conflicts,
            "duplicates": self.duplicates,
            "failures": [
                {"templateId": f.template_id, "error": f.error} for f in self.failures
            ],
        }


class RecurrenceEngine:
    """Selects due templates, creates their ledger entries and advances cursors.

    Each template is its own unit of work. The cursor is claimed with a
    compare-and-swap before the entry is written, and a per-template lock
    serializes callers inside this process, so a timer tick racing an
    on-demand run cannot materialize the same date twice.
    """

    def __init__(
        self,
        categories: CategoryLookup,
        templates: TemplateStore,
        ledger: LedgerSink,
        catch_up_mode: str = SINGLE_STEP,
        max_catch_up_steps: int = 1000,
    ):
        """Initialize the engine.

        Args:
            categories: Category lookup used to sign generated amounts.
            templates: Store of recurring templates and their cursors.
            ledger: Sink receiving the materialized entries.
            catch_up_mode: 'single-step' (one entry per template per call) or
                'full-catch-up' (one entry per missed period).
            max_catch_up_steps: Upper bound on entries per template per call
                in full-catch-up mode.
        """
        if catch_up_mode not in CATCH_UP_MODES:
            raise ValueError(
                f"Unknown catch-up mode: {catch_up_mode!r} "
                f"(expected one of {', '.join(CATCH_UP_MODES)})"
            )
        if max_catch_up_steps < 1:
            raise ValueError("max_catch_up_steps must be at least 1")
        self.categories = categories
        self.templates = templates
        self.ledger = ledger
        self.catch_up_mode = catch_up_mode
        self.max_catch_up_steps = max_catch_up_steps
        # Entries vanish once no run holds the lock.
        self._locks: weakref.WeakValueDictionary[int, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, template_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(template_id)
            if lock is None:
                lock = self._locks[template_id] = threading.Lock()
            return lock

    def run_due(self, owner_id: str, as_of: date | None = None) -> RunResult:
        """Materialize every template of owner_id that is due as of a date.

        Args:
            owner_id: Owner whose templates are processed.
            as_of: Reference date (default: today in UTC).

        Returns:
            RunResult with due/created counts and per-template problems.
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        as_of = as_of or utc_today()
        result = RunResult(owner_id=owner_id, as_of=as_of)

        due = [t for t in self.templates.list_due_templates(owner_id, as_of) if is_due(t, as_of)]
        result.due_count = len(due)

        for template in due:
            lock = self._lock_for(template.id)
            with lock:
                try:
                    self._process(template, as_of, result)
                except Exception as e:
                    logger.exception("Recurring template %s failed", template.id)
                    result.failures.append(TemplateFailure(template.id, str(e)))

        logger.info(
            "Recurring run for %s as of %s: %d due, %d created, %d conflicts, %d failures",
            owner_id,
            as_of.isoformat(),
            result.due_count,
            result.created_count,
            len(result.conflicts),
            len(result.failures),
        )
        return result

    def _process(self, template: RecurringTemplate, as_of: date, result: RunResult) -> None:
        amount = signed_amount(template.amount, self._category_type(template, result))

        expected = template.next_run_date
        occurrence = template.cursor
        steps = 1 if self.catch_up_mode == SINGLE_STEP else self.max_catch_up_steps

        for _ in range(steps):
            next_date = advance(occurrence, template.cadence, template.interval, template.anchor_day)

            # Claim the occurrence before writing it.
            if not self.templates.update_cursor(template.id, next_date, expected=expected):
                logger.debug(
                    "Cursor of template %s moved by another run; skipping %s",
                    template.id,
                    occurrence.isoformat(),
                )
                result.conflicts.append(template.id)
                return

            entry = LedgerEntry(
                owner_id=template.owner_id,
                category_id=template.category_id,
                amount=amount,
                date=occurrence,
                note=template.note,
                recurring_id=template.id,
            )
            try:
                entry_id = self.ledger.create_entry(entry)
            except DuplicateEntryError:
                logger.info(
                    "Template %s already has an entry on %s", template.id, occurrence.isoformat()
                )
                result.duplicates.append(template.id)
            except Exception:
                self._release(template.id, next_date, occurrence)
                raise
            else:
                result.entry_ids.append(entry_id)
                result.created_count += 1

            expected = occurrence = next_date
            if occurrence > as_of:
                break
            if template.end_date is not None and occurrence > template.end_date:
                break

    def _release(self, template_id: int, claimed: date, occurrence: date) -> None:
        """Give a claimed occurrence back after its entry could not be written."""
        try:
            reverted = self.templates.update_cursor(template_id, occurrence, expected=claimed)
        except Exception:
            logger.exception(
                "Could not restore cursor of template %s to %s", template_id, occurrence.isoformat()
            )
            return
        if not reverted:
            logger.error(
                "Cursor of template %s changed while restoring it to %s",
                template_id,
                occurrence.isoformat(),
            )

    def _category_type(self, template: RecurringTemplate, result: RunResult) -> str | None:
        try:
            category = self.categories.get_category(template.owner_id, template.category_id)
        except Exception as e:
            logger.warning(
                "Category lookup for template %s failed: %s; using unsigned amount",
                template.id,
                e,
            )
            result.unresolved_categories.append(template.id)
            return None

        if category is None:
            logger.warning(
                "Category %s of template %s not found; using unsigned amount",
                template.category_id,
                template.id,
            )
            result.unresolved_categories.append(template.id)
            return None
        return category.type
