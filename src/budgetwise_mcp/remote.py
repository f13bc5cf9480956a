"""BudgetWise REST API client implementing the recurrence engine's stores."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from .models import Category, LedgerEntry, RecurringTemplate
from .recurrence import is_due
from .utils import normalize_category_type, parse_date


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ApiError(Exception):
    """Error while talking to the BudgetWise API."""

    pass


def template_from_api(item: dict[str, Any], owner_id: str) -> RecurringTemplate:
    """Build a template from the API's camelCase JSON."""
    return RecurringTemplate(
        id=int(item["id"]),
        owner_id=str(item.get("userId") or owner_id),
        category_id=int(item["categoryId"]),
        amount=abs(Decimal(str(item["amount"]))),
        cadence=str(item["cadence"]).lower(),
        interval=int(item.get("interval") or 1),
        day_of_month=item.get("dayOfMonth"),
        start_date=parse_date(item["startDate"], "startDate"),
        end_date=parse_date(item.get("endDate"), "endDate"),
        next_run_date=parse_date(item.get("nextRunDate"), "nextRunDate"),
        is_paused=bool(item.get("isPaused", False)),
        note=item.get("note"),
    )


class BudgetApiClient:
    """Category lookup, template store and ledger sink over HTTP.

    The API scopes every request by the bearer token's user, so owner_id is
    only used to label returned records.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            base_url: API root, e.g. "http://localhost:3000".
            token: Bearer token of the user.
            client: Preconfigured httpx client (tests pass one with a mock transport).
            timeout: Request timeout in seconds.
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = headers

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(
                method, f"{self.base_url}{path}", headers=self._headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise ApiError(f"HTTP error during {method} {path}: {e}") from e
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON response: {e}") from e

    @staticmethod
    def _check(response: httpx.Response, method: str, path: str) -> None:
        if not response.is_success:
            raise ApiError(
                f"{method} {path} returned status {response.status_code}: {response.text}"
            )

    # -------------------------------------------------------------------------
    # Category lookup
    # -------------------------------------------------------------------------

    def get_category(self, owner_id: str, category_id: int) -> Category | None:
        path = f"/api/categories/{category_id}"
        response = self._request("GET", path)
        if response.status_code == 404:
            return None
        self._check(response, "GET", path)
        item = self._json(response)
        return Category(
            id=int(item["id"]),
            owner_id=str(item.get("userId") or owner_id),
            name=item.get("name", ""),
            type=normalize_category_type(item.get("type")) or str(item.get("type")),
        )

    # -------------------------------------------------------------------------
    # Template store
    # -------------------------------------------------------------------------

    def list_templates(self, owner_id: str) -> list[RecurringTemplate]:
        path = "/api/recurring"
        response = self._request("GET", path)
        self._check(response, "GET", path)
        items = self._json(response)
        if not isinstance(items, list):
            raise ApiError(f"GET {path} returned {type(items).__name__}, expected a list")
        return [template_from_api(item, owner_id) for item in items]

    def list_due_templates(self, owner_id: str, as_of: date) -> list[RecurringTemplate]:
        return [t for t in self.list_templates(owner_id) if is_due(t, as_of)]

    def update_cursor(
        self,
        template_id: int,
        new_next_run_date: date,
        expected: date | None = None,
    ) -> bool:
        """Move a template cursor if it still holds `expected`.

        The API has no conditional update, so the comparison is a read
        followed by a PATCH; concurrent writers on other hosts can still
        interleave between the two requests.
        """
        current = next(
            (t for t in self.list_templates("") if t.id == template_id), None
        )
        if current is None:
            raise ApiError(f"Recurring template {template_id} not found")
        if current.next_run_date != expected:
            return False

        path = f"/api/recurring/{template_id}"
        response = self._request(
            "PATCH", path, json={"nextRunDate": new_next_run_date.isoformat()}
        )
        self._check(response, "PATCH", path)
        return True

    # -------------------------------------------------------------------------
    # Ledger sink
    # -------------------------------------------------------------------------

    def create_entry(self, entry: LedgerEntry) -> int:
        """Create a transaction through the API and return its id.

        The API re-signs the amount from the category type and answers 400
        for a category it does not know, which surfaces here as ApiError.
        """
        path = "/api/transactions"
        response = self._request(
            "POST",
            path,
            json={
                "categoryId": entry.category_id,
                "amount": str(entry.amount),
                "date": entry.date.isoformat(),
                "note": entry.note,
            },
        )
        self._check(response, "POST", path)
        created = self._json(response)
        logger.debug("Created remote transaction %s for %s", created.get("id"), entry.date)
        return int(created["id"])
