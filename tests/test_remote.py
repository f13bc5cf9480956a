"""Tests for the BudgetWise REST API client."""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from budgetwise_mcp.models import LedgerEntry
from budgetwise_mcp.recurrence import RecurrenceEngine
from budgetwise_mcp.remote import ApiError, BudgetApiClient, template_from_api


class FakeApi:
    """In-memory stand-in for the BudgetWise API, served through httpx.MockTransport."""

    def __init__(self):
        self.categories = {
            1: {"id": 1, "name": "Rent", "type": "expense"},
            2: {"id": 2, "name": "Salary", "type": "Income"},
        }
        self.recurring = [
            {
                "id": 10,
                "userId": "u1",
                "categoryId": 1,
                "amount": "950.00",
                "cadence": "Monthly",
                "interval": 1,
                "dayOfMonth": 31,
                "startDate": "2024-01-31T00:00:00.000Z",
                "endDate": None,
                "nextRunDate": "2024-01-31T00:00:00.000Z",
                "isPaused": False,
                "note": "Flat",
            }
        ]
        self.transactions = []
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.startswith("/api/categories/"):
            item = self.categories.get(int(path.rsplit("/", 1)[1]))
            if item is None:
                return httpx.Response(404, json={"error": "Not found"})
            return httpx.Response(200, json=item)
        if request.method == "GET" and path == "/api/recurring":
            return httpx.Response(200, json=self.recurring)
        if request.method == "PATCH" and path.startswith("/api/recurring/"):
            template_id = int(path.rsplit("/", 1)[1])
            body = json.loads(request.content)
            for item in self.recurring:
                if item["id"] == template_id:
                    item.update(body)
                    return httpx.Response(200, json=item)
            return httpx.Response(404, json={"error": "Not found"})
        if request.method == "POST" and path == "/api/transactions":
            body = json.loads(request.content)
            if body["categoryId"] not in self.categories:
                return httpx.Response(400, json={"error": "Invalid category"})
            body["id"] = len(self.transactions) + 100
            self.transactions.append(body)
            return httpx.Response(201, json=body)
        return httpx.Response(500, text="unexpected")


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def client(api: FakeApi) -> BudgetApiClient:
    http = httpx.Client(transport=httpx.MockTransport(api.handler))
    return BudgetApiClient("http://api.test/", token="tok", client=http)


class TestTemplateFromApi:
    """Test parsing of API templates."""

    def test_fields(self, api: FakeApi):
        template = template_from_api(api.recurring[0], "fallback")
        assert template.id == 10
        assert template.owner_id == "u1"
        assert template.amount == Decimal("950.00")
        assert template.cadence == "monthly"
        assert template.start_date == date(2024, 1, 31)
        assert template.next_run_date == date(2024, 1, 31)
        assert template.day_of_month == 31

    def test_defaults(self):
        template = template_from_api(
            {"id": "3", "categoryId": "1", "amount": -5, "cadence": "daily", "startDate": "2025-01-01"},
            "owner",
        )
        assert template.owner_id == "owner"
        assert template.amount == Decimal("5")
        assert template.interval == 1
        assert template.next_run_date is None
        assert template.is_paused is False


class TestCategoryLookup:
    """Test category lookup over HTTP."""

    def test_found(self, client: BudgetApiClient, api: FakeApi):
        category = client.get_category("u1", 1)
        assert category.type == "Expense"
        assert api.requests[0].headers["Authorization"] == "Bearer tok"
        assert str(api.requests[0].url) == "http://api.test/api/categories/1"

    def test_missing(self, client: BudgetApiClient):
        assert client.get_category("u1", 99) is None


class TestTemplateStore:
    """Test template listing and cursor updates."""

    def test_due_filter(self, client: BudgetApiClient):
        assert [t.id for t in client.list_due_templates("u1", date(2024, 1, 31))] == [10]
        assert client.list_due_templates("u1", date(2024, 1, 30)) == []

    def test_update_cursor(self, client: BudgetApiClient, api: FakeApi):
        assert client.update_cursor(10, date(2024, 2, 29), expected=date(2024, 1, 31))
        assert api.recurring[0]["nextRunDate"] == "2024-02-29"

    def test_update_cursor_stale(self, client: BudgetApiClient, api: FakeApi):
        assert not client.update_cursor(10, date(2024, 2, 29), expected=date(2023, 12, 31))
        assert not any(r.method == "PATCH" for r in api.requests)

    def test_update_cursor_missing_template(self, client: BudgetApiClient):
        with pytest.raises(ApiError, match="not found"):
            client.update_cursor(99, date(2024, 2, 29), expected=None)

    def test_non_list_response(self, api: FakeApi):
        http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"items": []})))
        with pytest.raises(ApiError, match="expected a list"):
            BudgetApiClient("http://api.test", client=http).list_templates("u1")


class TestLedgerSink:
    """Test transaction creation."""

    def test_create(self, client: BudgetApiClient, api: FakeApi):
        entry_id = client.create_entry(LedgerEntry("u1", 1, Decimal("-950.00"), date(2024, 1, 31)))
        assert entry_id == 100
        assert api.transactions[0]["amount"] == "-950.00"
        assert api.transactions[0]["categoryId"] == 1

    def test_unknown_category_rejected(self, client: BudgetApiClient, api: FakeApi):
        with pytest.raises(ApiError, match="400"):
            client.create_entry(LedgerEntry("u1", 7, Decimal("1"), date(2024, 1, 31)))
        assert api.transactions == []

    def test_server_error(self):
        http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
        with pytest.raises(ApiError, match="500"):
            BudgetApiClient("http://api.test", client=http).create_entry(
                LedgerEntry("u1", 1, Decimal("1"), date(2024, 1, 1))
            )

    def test_transport_error(self):
        def fail(request):
            raise httpx.ConnectError("refused", request=request)

        http = httpx.Client(transport=httpx.MockTransport(fail))
        with pytest.raises(ApiError, match="HTTP error"):
            BudgetApiClient("http://api.test", client=http).get_category("u1", 1)


class TestEngineOverHttp:
    """Test the engine against the API client."""

    def test_run_due(self, client: BudgetApiClient, api: FakeApi):
        engine = RecurrenceEngine(client, client, client)

        result = engine.run_due("u1", date(2024, 3, 1))

        assert result.created_count == 1
        assert api.transactions[0]["date"] == "2024-01-31"
        assert api.transactions[0]["amount"] == "-950.00"
        assert api.recurring[0]["nextRunDate"] == "2024-02-29"

        again = engine.run_due("u1", date(2024, 3, 1))
        assert again.created_count == 1
        assert api.recurring[0]["nextRunDate"] == "2024-03-31"
        assert engine.run_due("u1", date(2024, 3, 1)).due_count == 0

    def test_missing_category_is_a_failure(self, client: BudgetApiClient, api: FakeApi):
        """The API rejects unknown categories, so the occurrence is retried later."""
        del api.categories[1]
        engine = RecurrenceEngine(client, client, client)

        result = engine.run_due("u1", date(2024, 3, 1))

        assert result.unresolved_categories == [10]
        assert [f.template_id for f in result.failures] == [10]
        assert result.created_count == 0
        assert api.recurring[0]["nextRunDate"] == "2024-01-31"
