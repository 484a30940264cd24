"""Async client for a hosted table store (Airtable-compatible REST API).

Every request waits on the shared rate limiter for the base, so all callers
talking to the same base stay under its request budget together.
"""

from collections.abc import Sequence
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
import structlog

from switchboard.core.errors import ExternalServiceError
from switchboard.core.types import JSONObject
from switchboard.plugin.ratelimit import RateLimiter

log = structlog.get_logger(__name__)

SERVICE_NAME = "table_store"
DEFAULT_BASE_URL = "https://api.airtable.com/v0"
DEFAULT_REQUESTS_PER_SECOND = 5.0

# Maximum records per create/update/delete request
BATCH_SIZE = 10

T = TypeVar("T")


def _batches(items: Sequence[T], size: int = BATCH_SIZE) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class TableStoreClient:
    """Client for one table-store base.

    Example:
        client = TableStoreClient(api_key="pat...", base_id="appXYZ")
        records = await client.list_records("Tasks", filter_formula="{Done} = 0")
        await client.aclose()
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_id: str,
        base_url: str = DEFAULT_BASE_URL,
        limiter: RateLimiter | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Personal access token, sent as a bearer token.
            base_id: Identifier of the base holding the tables.
            base_url: API root.
            limiter: Shared limiter for this base. Defaults to a private one.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._base_id = base_id
        self._limiter = limiter or RateLimiter(DEFAULT_REQUESTS_PER_SECOND)
        self._http = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/{base_id}/",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_id(self) -> str:
        return self._base_id

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Any = None,
        json: JSONObject | None = None,
    ) -> JSONObject:
        await self._limiter.acquire()
        path = quote(table, safe="")
        try:
            response = await self._http.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            log.warning("table_store.request.failed.transport", method=method, error=str(e))
            raise ExternalServiceError(
                f"Table store request failed: {e}",
                service=SERVICE_NAME,
                details={"original_exception": type(e).__name__},
            ) from e

        if response.is_error:
            error_type, message = _error_from_body(response)
            log.warning(
                "table_store.request.failed.api_error",
                method=method,
                status_code=response.status_code,
                error_type=error_type,
            )
            raise ExternalServiceError(
                f"Table store returned {response.status_code}: {message}",
                service=SERVICE_NAME,
                status_code=response.status_code,
                details={"error_type": error_type},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                "Table store returned a non-JSON body",
                service=SERVICE_NAME,
                status_code=response.status_code,
            ) from e
        return data if isinstance(data, dict) else {"data": data}

    async def list_records(
        self,
        table: str,
        *,
        filter_formula: str | None = None,
        max_records: int | None = None,
        view: str | None = None,
    ) -> list[JSONObject]:
        """List records, following offset pagination until exhausted."""
        params: dict[str, Any] = {}
        if filter_formula:
            params["filterByFormula"] = filter_formula
        if max_records is not None:
            params["maxRecords"] = max_records
        if view:
            params["view"] = view

        records: list[JSONObject] = []
        while True:
            data = await self._request("GET", table, params=params)
            records.extend(data.get("records", []))
            offset = data.get("offset")
            if not offset or (max_records is not None and len(records) >= max_records):
                break
            params["offset"] = offset

        log.debug("table_store.records.listed", table=table, count=len(records))
        return records[:max_records] if max_records is not None else records

    async def create_records(
        self,
        table: str,
        records: Sequence[JSONObject],
    ) -> list[JSONObject]:
        """Create records from field mappings, in batches of ten."""
        created: list[JSONObject] = []
        for batch in _batches(records):
            data = await self._request(
                "POST",
                table,
                json={"records": [{"fields": fields} for fields in batch]},
            )
            created.extend(data.get("records", []))
        log.debug("table_store.records.created", table=table, count=len(created))
        return created

    async def update_records(
        self,
        table: str,
        records: Sequence[JSONObject],
    ) -> list[JSONObject]:
        """Patch records given as ``{"id": ..., "fields": {...}}``, in batches of ten."""
        updated: list[JSONObject] = []
        for batch in _batches(records):
            data = await self._request("PATCH", table, json={"records": list(batch)})
            updated.extend(data.get("records", []))
        log.debug("table_store.records.updated", table=table, count=len(updated))
        return updated

    async def delete_records(self, table: str, ids: Sequence[str]) -> list[JSONObject]:
        """Delete records by id, in batches of ten."""
        deleted: list[JSONObject] = []
        for batch in _batches(ids):
            data = await self._request(
                "DELETE",
                table,
                params=[("records[]", record_id) for record_id in batch],
            )
            deleted.extend(data.get("records", []))
        log.debug("table_store.records.deleted", table=table, count=len(deleted))
        return deleted

    async def aclose(self) -> None:
        await self._http.aclose()


def _error_from_body(response: httpx.Response) -> tuple[str, str]:
    """Extract ``(type, message)`` from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return "UNKNOWN", response.text[:200] or response.reason_phrase

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("type", "UNKNOWN")), str(error.get("message", ""))
    if isinstance(error, str):
        return error, error
    return "UNKNOWN", response.reason_phrase
