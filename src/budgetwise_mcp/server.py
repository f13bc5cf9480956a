"""MCP Server for BudgetWise recurring transactions."""

import asyncio
import json
import logging
from datetime import date
from typing import Any

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool

from .analytics import category_breakdown, monthly_summary
from .config import Settings, load_settings
from .database import Database
from .ledger import (
    create_category,
    create_transaction,
    delete_category,
    list_categories,
    list_transactions,
)
from .recurrence import RecurrenceEngine, RunResult, utc_today
from .recurring import (
    create_recurring,
    delete_recurring,
    list_recurring,
    preview_recurring,
    set_paused,
    update_recurring,
)
from .remote import BudgetApiClient
from .scheduler import LAST_RUN_META_KEY, DailyTimer
from .utils import parse_date


logger = logging.getLogger(__name__)

# Initialize MCP server
server = Server("budgetwise-mcp")

# Global state
_settings: Settings | None = None
_db: Database | None = None
_engine: RecurrenceEngine | None = None


def get_settings() -> Settings:
    """Get or load settings."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_db() -> Database:
    """Get or create database instance."""
    global _db
    if _db is None:
        db_path = get_settings().db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _db = Database(db_path)
        _db.init_schema()
    return _db


def get_engine() -> RecurrenceEngine:
    """Get or create the recurrence engine shared by both triggers."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.uses_remote_store:
            client = BudgetApiClient(settings.api_url, settings.api_token)
            categories = templates = ledger = client
        else:
            categories = templates = ledger = get_db()
        _engine = RecurrenceEngine(
            categories,
            templates,
            ledger,
            catch_up_mode=settings.catch_up_mode,
            max_catch_up_steps=settings.max_catch_up_steps,
        )
    return _engine


def init_for_testing(db: Database, settings: Settings | None = None) -> None:
    """Initialize server with test database and settings.

    Args:
        db: Database instance to use.
        settings: Settings to use (default: local store, owner "test-user").
    """
    global _settings, _db, _engine
    _settings = settings or Settings(owner_id="test-user", timer_enabled=False)
    _db = db
    _engine = None


def resolve_owner(arguments: dict[str, Any]) -> str:
    """Owner of a tool call: explicit argument, else the configured default."""
    owner_id = arguments.get("owner_id") or get_settings().owner_id
    if not owner_id:
        raise ValueError(
            "Not authenticated: pass owner_id or set the BUDGETWISE_OWNER_ID environment variable"
        )
    return str(owner_id)


def timer_owners() -> list[str]:
    """Owners processed by the daily timer."""
    settings = get_settings()
    if settings.uses_remote_store:
        return [settings.owner_id] if settings.owner_id else []
    return get_db().list_owner_ids()


def record_timer_run(as_of: date, results: list[RunResult]) -> None:
    summary = {
        "as_of": as_of.isoformat(),
        "owners": len(results),
        "created": sum(r.created_count for r in results),
        "due": sum(r.due_count for r in results),
        "failures": sum(len(r.failures) for r in results),
    }
    get_db().set_meta(LAST_RUN_META_KEY, json.dumps(summary))


def _require_local_store() -> Database:
    if get_settings().uses_remote_store:
        raise ValueError(
            "This tool manages the local database and is unavailable while BUDGETWISE_API_URL is set"
        )
    return get_db()


def _text(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False, indent=2, default=str))]


# ============================================================================
# Tools
# ============================================================================

_OWNER_PROPERTY = {
    "type": "string",
    "description": "Owner (user) id. Defaults to BUDGETWISE_OWNER_ID.",
}

_TEMPLATE_PROPERTIES = {
    "category_id": {"type": "integer", "description": "Category that signs generated amounts"},
    "amount": {"type": "number", "description": "Unsigned amount per occurrence (> 0)"},
    "cadence": {"type": "string", "enum": ["daily", "weekly", "monthly"]},
    "interval": {"type": "integer", "description": "Cadence units between occurrences", "default": 1},
    "day_of_month": {"type": "integer", "description": "Monthly anchor day (1-31), clamped to month end"},
    "start_date": {"type": "string", "description": "First occurrence, YYYY-MM-DD"},
    "end_date": {"type": "string", "description": "Last eligible date, YYYY-MM-DD"},
    "note": {"type": "string", "description": "Copied into generated transactions"},
}


_MONTH_SCHEMA = {
    "type": "object",
    "properties": {
        "owner_id": _OWNER_PROPERTY,
        "year": {"type": "integer", "description": "Four-digit year"},
        "month": {"type": "integer", "description": "Month number (1-12)"},
    },
    "required": ["year", "month"],
}

@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="run_recurring_due",
            description="Create transactions for every recurring template that is due and advance their schedules. Safe to call repeatedly.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "as_of": {
                        "type": "string",
                        "description": "Reference date YYYY-MM-DD (default: today, UTC)",
                    },
                },
            },
        ),
        Tool(
            name="list_recurring",
            description="List recurring templates ordered by start date.",
            inputSchema={"type": "object", "properties": {"owner_id": _OWNER_PROPERTY}},
        ),
        Tool(
            name="create_recurring",
            description="Create a recurring template (daily, weekly or monthly).",
            inputSchema={
                "type": "object",
                "properties": {"owner_id": _OWNER_PROPERTY, **_TEMPLATE_PROPERTIES},
                "required": ["category_id", "amount", "cadence", "start_date"],
            },
        ),
        Tool(
            name="update_recurring",
            description="Update fields of a recurring template.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "id": {"type": "integer"},
                    **_TEMPLATE_PROPERTIES,
                    "is_paused": {"type": "boolean"},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="set_recurring_paused",
            description="Pause or resume a recurring template.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "id": {"type": "integer"},
                    "paused": {"type": "boolean"},
                },
                "required": ["id", "paused"],
            },
        ),
        Tool(
            name="delete_recurring",
            description="Delete a recurring template. Transactions it created are kept.",
            inputSchema={
                "type": "object",
                "properties": {"owner_id": _OWNER_PROPERTY, "id": {"type": "integer"}},
                "required": ["id"],
            },
        ),
        Tool(
            name="preview_recurring",
            description="Show the next occurrence dates of a template without creating anything.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "id": {"type": "integer"},
                    "count": {"type": "integer", "default": 5},
                },
                "required": ["id"],
            },
        ),
        Tool(
            name="list_categories",
            description="List income and expense categories.",
            inputSchema={"type": "object", "properties": {"owner_id": _OWNER_PROPERTY}},
        ),
        Tool(
            name="create_category",
            description="Create a category of type Income or Expense.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "name": {"type": "string"},
                    "type": {"type": "string", "enum": ["Income", "Expense"]},
                },
                "required": ["name", "type"],
            },
        ),
        Tool(
            name="delete_category",
            description="Delete a category that no transaction or template uses.",
            inputSchema={
                "type": "object",
                "properties": {"owner_id": _OWNER_PROPERTY, "id": {"type": "integer"}},
                "required": ["id"],
            },
        ),
        Tool(
            name="list_transactions",
            description="List transactions newest first with optional date range and category filter.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "from": {"type": "string", "description": "YYYY-MM-DD"},
                    "to": {"type": "string", "description": "YYYY-MM-DD"},
                    "category_id": {"type": "integer"},
                    "page": {"type": "integer", "default": 1},
                    "page_size": {"type": "integer", "default": 20},
                },
            },
        ),
        Tool(
            name="create_transaction",
            description="Record a transaction; its sign follows the category type.",
            inputSchema={
                "type": "object",
                "properties": {
                    "owner_id": _OWNER_PROPERTY,
                    "category_id": {"type": "integer"},
                    "amount": {"type": "number"},
                    "date": {"type": "string", "description": "YYYY-MM-DD"},
                    "note": {"type": "string"},
                },
                "required": ["category_id", "amount", "date"],
            },
        ),
        Tool(
            name="get_monthly_summary",
            description="Income, expense and balance change for one month.",
            inputSchema=_MONTH_SCHEMA,
        ),
        Tool(
            name="get_category_breakdown",
            description="Income, expense and signed total per category for one month, largest first.",
            inputSchema=_MONTH_SCHEMA,
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    owner_id = resolve_owner(arguments)

    if name == "run_recurring_due":
        as_of = parse_date(arguments.get("as_of"), "as_of") or utc_today()
        result = await asyncio.to_thread(get_engine().run_due, owner_id, as_of)
        return _text(result.to_dict())

    db = _require_local_store()

    if name == "list_recurring":
        result = list_recurring(db, owner_id)

    elif name == "create_recurring":
        result = create_recurring(
            db,
            owner_id,
            category_id=arguments.get("category_id"),
            amount=arguments.get("amount"),
            cadence=arguments.get("cadence"),
            start_date=arguments.get("start_date"),
            interval=arguments.get("interval", 1),
            day_of_month=arguments.get("day_of_month"),
            end_date=arguments.get("end_date"),
            note=arguments.get("note"),
        )

    elif name == "update_recurring":
        patch = {k: v for k, v in arguments.items() if k not in ("owner_id", "id")}
        result = update_recurring(db, owner_id, arguments["id"], patch)

    elif name == "set_recurring_paused":
        result = set_paused(db, owner_id, arguments["id"], arguments["paused"])

    elif name == "delete_recurring":
        result = delete_recurring(db, owner_id, arguments["id"])

    elif name == "preview_recurring":
        result = preview_recurring(db, owner_id, arguments["id"], count=arguments.get("count", 5))

    elif name == "list_categories":
        result = list_categories(db, owner_id)

    elif name == "create_category":
        result = create_category(db, owner_id, arguments.get("name"), arguments.get("type"))

    elif name == "delete_category":
        result = delete_category(db, owner_id, arguments["id"])

    elif name == "list_transactions":
        result = list_transactions(
            db,
            owner_id,
            date_from=arguments.get("from"),
            date_to=arguments.get("to"),
            category_id=arguments.get("category_id"),
            page=arguments.get("page", 1),
            page_size=arguments.get("page_size", 20),
        )

    elif name == "create_transaction":
        result = create_transaction(
            db,
            owner_id,
            category_id=arguments.get("category_id"),
            amount=arguments.get("amount"),
            date_=arguments.get("date"),
            note=arguments.get("note"),
        )

    elif name == "get_monthly_summary":
        result = monthly_summary(db, owner_id, arguments.get("year"), arguments.get("month"))

    elif name == "get_category_breakdown":
        result = category_breakdown(db, owner_id, arguments.get("year"), arguments.get("month"))

    else:
        raise ValueError(f"Unknown tool: {name}")

    return _text(result)


# ============================================================================
# Resources
# ============================================================================

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri="budgetwise://categories",
            name="Categories",
            description="Income and expense categories of the default owner",
            mimeType="application/json",
        ),
        Resource(
            uri="budgetwise://recurring",
            name="Recurring templates",
            description="Recurring templates of the default owner with their next run dates",
            mimeType="application/json",
        ),
        Resource(
            uri="budgetwise://timer",
            name="Daily timer",
            description="Schedule and summary of the last daily recurring run",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri: str) -> str:
    """Read resource content."""
    uri = str(uri)

    if uri == "budgetwise://categories":
        result = list_categories(_require_local_store(), resolve_owner({}))
    elif uri == "budgetwise://recurring":
        result = list_recurring(_require_local_store(), resolve_owner({}))
    elif uri == "budgetwise://timer":
        settings = get_settings()
        last_run = get_db().get_meta(LAST_RUN_META_KEY)
        result = {
            "enabled": settings.timer_enabled,
            "hour_utc": settings.timer_hour_utc,
            "catch_up_mode": settings.catch_up_mode,
            "last_run": json.loads(last_run) if last_run else None,
        }
    else:
        raise ValueError(f"Unknown resource: {uri}")

    return json.dumps(result, ensure_ascii=False, indent=2, default=str)


# ============================================================================
# Main
# ============================================================================

def main() -> None:
    """Run the MCP server with the daily recurring timer."""
    from mcp.server.stdio import stdio_server

    settings = get_settings()
    # stdout carries the MCP protocol
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async def run():
        timer_task = None
        if settings.timer_enabled:
            timer = DailyTimer(
                get_engine(),
                timer_owners,
                hour_utc=settings.timer_hour_utc,
                on_complete=record_timer_run,
            )
            timer_task = asyncio.create_task(timer.run_forever())
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            if timer_task is not None:
                timer_task.cancel()

    asyncio.run(run())


if __name__ == "__main__":
    main()
