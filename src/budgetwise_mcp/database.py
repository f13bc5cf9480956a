"""SQLite database schema and CRUD operations for BudgetWise."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator

from .models import Category, LedgerEntry, RecurringTemplate


SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id    TEXT NOT NULL,
    name        TEXT NOT NULL,
    type        TEXT NOT NULL DEFAULT 'Expense',  -- 'Income' | 'Expense'
    created_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS recurring_transactions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id      TEXT NOT NULL,
    category_id   INTEGER NOT NULL REFERENCES categories(id),
    amount        TEXT NOT NULL,     -- unsigned decimal
    cadence       TEXT NOT NULL CHECK(cadence IN ('daily','weekly','monthly')),
    interval      INTEGER NOT NULL DEFAULT 1 CHECK(interval > 0),
    day_of_month  INTEGER CHECK(day_of_month BETWEEN 1 AND 31),
    start_date    TEXT NOT NULL,     -- 'YYYY-MM-DD'
    end_date      TEXT,
    next_run_date TEXT,              -- NULL until seeded
    is_paused     INTEGER NOT NULL DEFAULT 0,
    note          TEXT,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS transactions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id      TEXT NOT NULL,
    category_id   INTEGER NOT NULL REFERENCES categories(id),
    amount        TEXT NOT NULL,     -- signed decimal
    date          TEXT NOT NULL,
    note          TEXT,
    recurring_id  INTEGER REFERENCES recurring_transactions(id) ON DELETE SET NULL,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_owner_name ON categories(owner_id, name COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_rt_owner ON recurring_transactions(owner_id);
CREATE INDEX IF NOT EXISTS idx_rt_next_run ON recurring_transactions(next_run_date);
CREATE INDEX IF NOT EXISTS idx_tx_owner_date ON transactions(owner_id, date);
CREATE INDEX IF NOT EXISTS idx_tx_category ON transactions(category_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_tx_recurring_date ON transactions(recurring_id, date)
    WHERE recurring_id IS NOT NULL;
"""

TEMPLATE_COLUMNS = (
    "category_id", "amount", "cadence", "interval", "day_of_month",
    "start_date", "end_date", "next_run_date", "is_paused", "note",
)


class DuplicateEntryError(Exception):
    """A ledger entry for this recurring template and date already exists."""

    pass


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _to_db(column: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if column == "is_paused":
        return 1 if value else 0
    return value


class Database:
    """SQLite database wrapper for categories, transactions and recurring templates."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite file, or None/":memory:" for in-memory DB.
        """
        if db_path is None:
            db_path = ":memory:"
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def init_schema(self) -> None:
        """Create all tables and indexes."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.executescript(INDEXES)
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialize a write and commit it, rolling back on error."""
        with self._lock:
            conn = self.connect()
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    # -------------------------------------------------------------------------
    # Metadata
    # -------------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        """Get metadata value by key."""
        conn = self.connect()
        row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        """Set metadata value."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
                (key, value),
            )

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            type=row["type"],
        )

    def insert_category(self, owner_id: str, name: str, type_: str) -> Category:
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO categories (owner_id, name, type) VALUES (?, ?, ?)",
                (owner_id, name, type_),
            )
            category_id = cursor.lastrowid
        return Category(id=category_id, owner_id=owner_id, name=name, type=type_)

    def get_category(self, owner_id: str, category_id: int) -> Category | None:
        """Category lookup scoped by owner; None when missing."""
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM categories WHERE id = ? AND owner_id = ?",
            (category_id, owner_id),
        ).fetchone()
        return self._row_to_category(row) if row else None

    def find_category_by_name(self, owner_id: str, name: str) -> Category | None:
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM categories WHERE owner_id = ? AND LOWER(name) = LOWER(?)",
            (owner_id, name),
        ).fetchone()
        return self._row_to_category(row) if row else None

    def list_categories(self, owner_id: str) -> list[Category]:
        conn = self.connect()
        rows = conn.execute(
            "SELECT * FROM categories WHERE owner_id = ? ORDER BY type, name",
            (owner_id,),
        ).fetchall()
        return [self._row_to_category(r) for r in rows]

    def count_category_usage(self, owner_id: str, category_id: int) -> int:
        """Count transactions and recurring templates referencing a category."""
        conn = self.connect()
        row = conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM transactions WHERE owner_id = ? AND category_id = ?) +
                (SELECT COUNT(*) FROM recurring_transactions WHERE owner_id = ? AND category_id = ?)
                AS cnt
            """,
            (owner_id, category_id, owner_id, category_id),
        ).fetchone()
        return row["cnt"]

    def delete_category(self, owner_id: str, category_id: int) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM categories WHERE id = ? AND owner_id = ?",
                (category_id, owner_id),
            )
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def create_entry(self, entry: LedgerEntry) -> int:
        """Append a ledger entry and return its id.

        Raises:
            DuplicateEntryError: If the template already has an entry on that date.
        """
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO transactions
                    (owner_id, category_id, amount, date, note, recurring_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.owner_id,
                        entry.category_id,
                        str(entry.amount),
                        entry.date.isoformat(),
                        entry.note,
                        entry.recurring_id,
                    ),
                )
        except sqlite3.IntegrityError as e:
            if entry.recurring_id is not None and "transactions.recurring_id" in str(e):
                raise DuplicateEntryError(
                    f"Entry for recurring template {entry.recurring_id} on "
                    f"{entry.date.isoformat()} already exists"
                ) from e
            raise
        return cursor.lastrowid

    def get_transaction(self, owner_id: str, transaction_id: int) -> dict[str, Any] | None:
        conn = self.connect()
        row = conn.execute(
            """
            SELECT t.*, c.name AS category_name, c.type AS category_type
            FROM transactions t
            LEFT JOIN categories c ON c.id = t.category_id
            WHERE t.id = ? AND t.owner_id = ?
            """,
            (transaction_id, owner_id),
        ).fetchone()
        return dict(row) if row else None

    def list_transactions(
        self,
        owner_id: str,
        date_from: date | None = None,
        date_to: date | None = None,
        category_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """List transactions newest first.

        Returns:
            Tuple of (rows for the requested page, total matching count).
        """
        conn = self.connect()
        where = ["t.owner_id = ?"]
        params: list[Any] = [owner_id]
        if date_from:
            where.append("t.date >= ?")
            params.append(date_from.isoformat())
        if date_to:
            where.append("t.date <= ?")
            params.append(date_to.isoformat())
        if category_id is not None:
            where.append("t.category_id = ?")
            params.append(category_id)
        where_sql = " AND ".join(where)

        total = conn.execute(
            f"SELECT COUNT(*) AS cnt FROM transactions t WHERE {where_sql}",  # noqa: S608
            params,
        ).fetchone()["cnt"]

        sql = f"""
            SELECT t.*, c.name AS category_name, c.type AS category_type
            FROM transactions t
            LEFT JOIN categories c ON c.id = t.category_id
            WHERE {where_sql}
            ORDER BY t.date DESC, t.id DESC
        """  # noqa: S608
        page_params = list(params)
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            page_params.extend([limit, offset])
        rows = conn.execute(sql, page_params).fetchall()
        return [dict(r) for r in rows], total

    # -------------------------------------------------------------------------
    # Recurring templates
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> RecurringTemplate:
        return RecurringTemplate(
            id=row["id"],
            owner_id=row["owner_id"],
            category_id=row["category_id"],
            amount=Decimal(row["amount"]),
            cadence=row["cadence"],
            interval=row["interval"],
            day_of_month=row["day_of_month"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
            next_run_date=date.fromisoformat(row["next_run_date"]) if row["next_run_date"] else None,
            is_paused=bool(row["is_paused"]),
            note=row["note"],
        )

    def insert_template(self, owner_id: str, **fields: Any) -> RecurringTemplate:
        columns = [c for c in TEMPLATE_COLUMNS if c in fields]
        values = [_to_db(c, fields[c]) for c in columns]
        placeholders = ", ".join("?" * (len(columns) + 1))
        with self.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO recurring_transactions (owner_id, {', '.join(columns)}) "  # noqa: S608
                f"VALUES ({placeholders})",
                [owner_id, *values],
            )
            template_id = cursor.lastrowid
        return self.get_template(owner_id, template_id)

    def get_template(self, owner_id: str, template_id: int) -> RecurringTemplate | None:
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM recurring_transactions WHERE id = ? AND owner_id = ?",
            (template_id, owner_id),
        ).fetchone()
        return self._row_to_template(row) if row else None

    def list_templates(self, owner_id: str) -> list[RecurringTemplate]:
        conn = self.connect()
        rows = conn.execute(
            "SELECT * FROM recurring_transactions WHERE owner_id = ? ORDER BY start_date, id",
            (owner_id,),
        ).fetchall()
        return [self._row_to_template(r) for r in rows]

    def update_template(self, owner_id: str, template_id: int, **fields: Any) -> int:
        columns = [c for c in TEMPLATE_COLUMNS if c in fields]
        if not columns:
            return 0
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [_to_db(c, fields[c]) for c in columns]
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE recurring_transactions SET {assignments} "  # noqa: S608
                "WHERE id = ? AND owner_id = ?",
                [*values, template_id, owner_id],
            )
        return cursor.rowcount

    def delete_template(self, owner_id: str, template_id: int) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM recurring_transactions WHERE id = ? AND owner_id = ?",
                (template_id, owner_id),
            )
        return cursor.rowcount

    def list_due_templates(self, owner_id: str, as_of: date) -> list[RecurringTemplate]:
        """Snapshot of the owner's templates due on or before as_of.

        A template that has never run (NULL cursor) is compared by start_date.
        """
        conn = self.connect()
        as_of_iso = as_of.isoformat()
        rows = conn.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE owner_id = ?
              AND is_paused = 0
              AND COALESCE(next_run_date, start_date) <= ?
              AND (end_date IS NULL OR end_date >= ?)
            ORDER BY id
            """,
            (owner_id, as_of_iso, as_of_iso),
        ).fetchall()
        return [self._row_to_template(r) for r in rows]

    def update_cursor(
        self,
        template_id: int,
        new_next_run_date: date,
        expected: date | None = None,
    ) -> bool:
        """Compare-and-swap the schedule cursor.

        The update only applies while the stored cursor still equals
        `expected` (NULL when the template never ran).

        Returns:
            True if this call moved the cursor, False if another writer did first.
        """
        with self.transaction() as conn:
            if expected is None:
                cursor = conn.execute(
                    "UPDATE recurring_transactions SET next_run_date = ? "
                    "WHERE id = ? AND next_run_date IS NULL",
                    (new_next_run_date.isoformat(), template_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE recurring_transactions SET next_run_date = ? "
                    "WHERE id = ? AND next_run_date = ?",
                    (new_next_run_date.isoformat(), template_id, _iso(expected)),
                )
        return cursor.rowcount == 1

    def list_owner_ids(self) -> list[str]:
        """Owners that have at least one unpaused recurring template."""
        conn = self.connect()
        rows = conn.execute(
            "SELECT DISTINCT owner_id FROM recurring_transactions WHERE is_paused = 0 ORDER BY owner_id"
        ).fetchall()
        return [r["owner_id"] for r in rows]

    # -------------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------------

    def count_table(self, table: str) -> int:
        """Count rows in a table."""
        conn = self.connect()
        row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()  # noqa: S608
        return row["cnt"]
