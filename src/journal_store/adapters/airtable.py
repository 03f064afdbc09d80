"""Remote backend: an Airtable-style document API over HTTPS.

Each table is a collection of ``{"id", "fields", "createdTime"}`` records.
The API rejects unknown fields, so every write is projected through the
table descriptor in ``schema`` first. Linked user ids are stored as
one-element lists, which is why lookups match with ARRAYJOIN.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..compat_view import parse_checkin_date, require_checkin_fields
from ..errors import ConfigurationError, ConflictError, NotFoundError, RemoteStoreError, ValidationError
from ..metrics import record_checkin_written
from ..schema import (
    DAILY_CHECKINS,
    USER_PROFILE_DEFAULTS,
    as_record,
    checkin_values,
    linked_record_id,
    project,
    with_legacy_defaults,
)
from .base import (
    DEFAULT_CHECKIN_LIMIT,
    DEFAULT_INSIGHT_LIMIT,
    DEFAULT_RECENT_LIMIT,
    StoreAdapter,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
PAGE_SIZE = 100

_REMOTE_CHECKIN_FIELDS: tuple[str, ...] = tuple(
    f for f in DAILY_CHECKINS.fields if f not in ("user_id", "date_submitted", "created_at")
)


def quote(value: Any) -> str:
    """Single-quoted formula literal."""
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


def linked_user_formula(user_id: str) -> str:
    return f"SEARCH({quote(user_id)}, ARRAYJOIN({{user_id}}))"


def _flatten_user(record: dict[str, Any]) -> dict[str, Any]:
    return with_legacy_defaults({"id": record["id"], **record.get("fields", {})})


def _as_record(record: dict[str, Any]) -> dict[str, Any]:
    return as_record(record.get("fields", {}), record["id"])


class AirtableAdapter(StoreAdapter):
    backend = "airtable"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        if not api_key or not base_url:
            raise ConfigurationError("Remote store requires an API key and base URL")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        table: str,
        record_id: str | None = None,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        path = f"/{table}/{record_id}" if record_id else f"/{table}"
        resp = await self._client.request(method, path, params=params, json=body)
        if resp.is_error:
            raise RemoteStoreError(resp.status_code, _error_message(resp), table=table)
        return resp.json()

    async def _list(
        self,
        table: str,
        *,
        formula: str | None = None,
        sort_field: str | None = None,
        max_records: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"pageSize": PAGE_SIZE}
        if formula:
            params["filterByFormula"] = formula
        if sort_field:
            params["sort[0][field]"] = sort_field
            params["sort[0][direction]"] = "desc"
        if max_records is not None:
            params["maxRecords"] = max_records

        records: list[dict[str, Any]] = []
        while True:
            page = await self._request("GET", table, params=params)
            records.extend(page.get("records", []))
            offset = page.get("offset")
            if not offset or (max_records is not None and len(records) >= max_records):
                break
            params["offset"] = offset
        return records[:max_records] if max_records is not None else records

    # --- users ---

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        records = await self._list("Users", formula=f"{{email}}={quote(email)}", max_records=1)
        return _flatten_user(records[0]) if records else None

    async def find_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        try:
            record = await self._request("GET", "Users", str(linked_record_id(user_id)))
        except RemoteStoreError as exc:
            if exc.status_code == 404:
                return None
            raise
        return _flatten_user(record)

    async def create_user(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email")
        if not email:
            raise ValidationError("User requires email")
        if await self.find_user_by_email(email) is not None:
            raise ConflictError(f"User with email {email} already exists")

        fields = project("Users", data)
        for key, default in USER_PROFILE_DEFAULTS.items():
            if fields.get(key) is None:
                fields[key] = default
        record = await self._request("POST", "Users", body={"fields": fields})
        logger.info("User created", extra={"journal_user_id": record["id"]})
        return _flatten_user(record)

    async def update_user(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        try:
            record = await self._request(
                "PATCH", "Users", str(linked_record_id(user_id)),
                body={"fields": project("Users", data)},
            )
        except RemoteStoreError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"User not found: {user_id}") from exc
            raise
        return _flatten_user(record)

    # --- check-ins ---

    async def create_checkin(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError("Check-in requires user_id")
        require_checkin_fields(data)

        # Explicit nulls clear fields left over from an earlier same-day PATCH.
        fields: dict[str, Any] = {
            "user_id": [user_id],
            "date_submitted": parse_checkin_date(data.get("date_submitted")).isoformat(),
        }
        fields.update(checkin_values(data, _REMOTE_CHECKIN_FIELDS))

        existing = await self._list(
            "DailyCheckins",
            formula=(
                f"AND({linked_user_formula(user_id)}, "
                f"{{date_submitted}}={quote(fields['date_submitted'])})"
            ),
            max_records=1,
        )
        if existing:
            record = await self._request(
                "PATCH", "DailyCheckins", existing[0]["id"], body={"fields": fields}
            )
        else:
            record = await self._request("POST", "DailyCheckins", body={"fields": fields})
        record_checkin_written(self.backend)
        return _as_record(record)

    async def get_user_checkins(
        self, user_id: str, limit: int = DEFAULT_CHECKIN_LIMIT
    ) -> dict[str, Any]:
        records = await self._list(
            "DailyCheckins",
            formula=linked_user_formula(str(linked_record_id(user_id))),
            sort_field="date_submitted",
            max_records=limit,
        )
        return {"records": [_as_record(r) for r in records]}

    async def get_recent_checkins(self, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]:
        records = await self._list("DailyCheckins", sort_field="date_submitted", max_records=limit)
        return {"records": [_as_record(r) for r in records]}

    # --- insights ---

    async def create_insight(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError("Insight requires user_id")
        fields = project("Insights", data)
        fields["user_id"] = [user_id]
        record = await self._request("POST", "Insights", body={"fields": fields})
        return _as_record(record)

    async def get_user_insights(
        self, user_id: str, limit: int = DEFAULT_INSIGHT_LIMIT
    ) -> dict[str, Any]:
        records = await self._list(
            "Insights",
            formula=linked_user_formula(str(linked_record_id(user_id))),
            sort_field="date",
            max_records=limit,
        )
        return {"records": [_as_record(r) for r in records]}

    async def create_engagement(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError("Engagement requires user_id")
        fields = project("InsightEngagement", data)
        fields["user_id"] = [user_id]
        record = await self._request("POST", "InsightEngagement", body={"fields": fields})
        return _as_record(record)

    async def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        raise ConfigurationError("Raw SQL is not available on the remote document store")

    async def _close(self) -> None:
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or error)
    if error:
        return str(error)
    return resp.text[:200]
