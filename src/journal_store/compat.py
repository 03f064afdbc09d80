"""Backward compatibility between the flat (V1) and event-sourced (V2) schemas.

The schema mode is read once at process start. CompatibilityService picks
one strategy object at construction and forwards every call to it; nothing
re-checks the flag afterwards, so one process never mixes modes.

Both strategies return the same V1-shaped rows and compute analytics with
the same functions from ``analytics``, so callers cannot tell which schema
is active.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .analytics import summarize_checkins, timeframe_days
from .compat_view import (
    as_list,
    filter_checkins,
    format_group,
    parse_checkin_date,
    reconstruct_checkins,
    require_checkin_fields,
)
from .config import SchemaMode
from .errors import ConfigurationError, ConflictError
from .event_store import EventStore, fetch_events
from .metrics import record_checkin_written
from .models import CHECKIN_EVENT_ORDER
from .schema import (
    CHECKIN_LIST_FIELDS,
    CHECKIN_WRITABLE_FIELDS,
    checkin_values,
    coerce_checkin_flags,
)

logger = logging.getLogger(__name__)

# Columns a V1 check-in write sets (user_id and date handled separately).
V1_WRITABLE_COLUMNS: tuple[str, ...] = CHECKIN_WRITABLE_FIELDS

# Over-fetch factor for recent V2 check-ins; same-day duplicates collapse.
_RECENT_OVERFETCH = 2


def normalize_checkin_row(row: dict[str, Any]) -> dict[str, Any]:
    """Present a flat row the way every backend does: ISO date, string ids, bool flags."""
    out = coerce_checkin_flags(dict(row))
    if isinstance(out.get("date_submitted"), date):
        out["date_submitted"] = out["date_submitted"].isoformat()
    for key in ("id", "user_id"):
        if out.get(key) is not None:
            out[key] = str(out[key])
    return out


def analytics_window(timeframe: str, today: date | None) -> tuple[int, date, date]:
    days = timeframe_days(timeframe)
    end = today or datetime.now(tz=UTC).date()
    return days, end - timedelta(days=days), end


class CheckinStrategy(Protocol):
    mode: SchemaMode

    async def create_daily_checkin(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any]: ...

    async def get_daily_checkins(
        self,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def get_recent_checkins(self, limit: int = 100) -> list[dict[str, Any]]: ...

    async def get_analytics(
        self, user_id: str, timeframe: str = "week", today: date | None = None
    ) -> dict[str, Any]: ...


class V1CheckinStrategy:
    """One row per (user, date) in daily_checkins, upserted."""

    mode = SchemaMode.V1_ONLY

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def create_daily_checkin(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        require_checkin_fields(fields)
        values: dict[str, Any] = {
            "user_id": user_id,
            "date_submitted": parse_checkin_date(fields.get("date_submitted")),
        }
        for column, value in checkin_values(fields, V1_WRITABLE_COLUMNS).items():
            if column in CHECKIN_LIST_FIELDS and value is not None:
                value = as_list(value)
            values[column] = value

        columns = list(values.keys())
        updates = ", ".join(
            f"{c} = EXCLUDED.{c}" for c in columns if c not in ("user_id", "date_submitted")
        )
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO daily_checkins ({', '.join(columns)})
                        VALUES ({', '.join(['%s'] * len(columns))})
                        ON CONFLICT (user_id, date_submitted) DO UPDATE SET {updates}
                        RETURNING *
                        """,
                        tuple(values[c] for c in columns),
                    )
                    row = await cur.fetchone()
        except psycopg.errors.UniqueViolation as exc:
            raise ConflictError(
                f"Check-in already exists for user {user_id} on {values['date_submitted']}"
            ) from exc

        record_checkin_written("postgres_v1")
        return normalize_checkin_row(row)

    async def get_daily_checkins(
        self,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM daily_checkins WHERE user_id = %s"
        params: list[Any] = [user_id]
        if start_date is not None:
            query += " AND date_submitted >= %s"
            params.append(start_date)
        if end_date is not None:
            query += " AND date_submitted <= %s"
            params.append(end_date)
        query += " ORDER BY date_submitted DESC, created_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()
        return [normalize_checkin_row(r) for r in rows]

    async def get_recent_checkins(self, limit: int = 100) -> list[dict[str, Any]]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT dc.*, u.email AS user_email, p.nickname
                    FROM daily_checkins dc
                    JOIN users u ON dc.user_id = u.id
                    LEFT JOIN user_profiles p ON p.user_id = u.id
                    ORDER BY dc.date_submitted DESC, dc.created_at DESC
                    LIMIT %s
                    """,
                    (limit,),
                )
                rows = await cur.fetchall()
        return [normalize_checkin_row(r) for r in rows]

    async def get_analytics(
        self, user_id: str, timeframe: str = "week", today: date | None = None
    ) -> dict[str, Any]:
        days, start, end = analytics_window(timeframe, today)
        rows = await self.get_daily_checkins(user_id, start_date=start, end_date=end)
        return summarize_checkins(timeframe, days, list(reversed(rows)))


class V2CheckinStrategy:
    """Check-ins stored as correlated health events, read back via the compat view."""

    mode = SchemaMode.V2_ACTIVE

    def __init__(self, pool: AsyncConnectionPool, event_store: EventStore) -> None:
        self._pool = pool
        self._events = event_store

    async def create_daily_checkin(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        result = await self._events.create_daily_checkin(user_id, fields)
        record_checkin_written("postgres_v2")
        row = format_group(result["correlation_id"], result["events"])
        return normalize_checkin_row(row)

    async def _checkin_events(
        self,
        user_id: str | None,
        start_date: date | None,
        end_date: date | None,
    ) -> list[dict[str, Any]]:
        async with self._pool.connection() as conn:
            return await fetch_events(
                conn,
                user_id=user_id,
                start=start_date,
                end=end_date,
                event_types=list(CHECKIN_EVENT_ORDER),
            )

    async def get_daily_checkins(
        self,
        user_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        events = await self._checkin_events(user_id, start_date, end_date)
        rows = reconstruct_checkins(events)
        rows = filter_checkins(rows, start_date=start_date, end_date=end_date, limit=limit)
        return [normalize_checkin_row(r) for r in rows]

    async def get_recent_checkins(self, limit: int = 100) -> list[dict[str, Any]]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT he.* FROM health_events he
                    WHERE he.correlation_id IN (
                        SELECT correlation_id FROM health_events
                        WHERE event_type = 'mood' AND correlation_id IS NOT NULL
                        ORDER BY occurred_at DESC, created_at DESC
                        LIMIT %s
                    )
                    """,
                    (limit * _RECENT_OVERFETCH,),
                )
                events = await cur.fetchall()

            rows = filter_checkins(reconstruct_checkins(events), limit=limit)
            user_ids = sorted({r["user_id"] for r in rows if r.get("user_id")})
            people: dict[str, dict[str, Any]] = {}
            if user_ids:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        """
                        SELECT u.id::text AS id, u.email, p.nickname
                        FROM users u
                        LEFT JOIN user_profiles p ON p.user_id = u.id
                        WHERE u.id::text = ANY(%s)
                        """,
                        (user_ids,),
                    )
                    people = {r["id"]: r for r in await cur.fetchall()}

        out = []
        for row in rows:
            person = people.get(row.get("user_id") or "", {})
            out.append(
                normalize_checkin_row(
                    {**row, "user_email": person.get("email"), "nickname": person.get("nickname")}
                )
            )
        return out

    async def get_analytics(
        self, user_id: str, timeframe: str = "week", today: date | None = None
    ) -> dict[str, Any]:
        days, start, end = analytics_window(timeframe, today)
        events = await self._checkin_events(user_id, start, end)
        rows = [normalize_checkin_row(r) for r in reconstruct_checkins(events)]
        return summarize_checkins(timeframe, days, list(reversed(rows)))


class CompatibilityService:
    def __init__(
        self,
        pool: AsyncConnectionPool,
        use_v2: bool,
        event_store: EventStore | None = None,
    ) -> None:
        self._pool = pool
        self._event_store = event_store
        if use_v2:
            if event_store is None:
                raise ConfigurationError("Schema V2 requires an EventStore")
            self._strategy: CheckinStrategy = V2CheckinStrategy(pool, event_store)
        else:
            self._strategy = V1CheckinStrategy(pool)
        logger.info("Compatibility service using %s", self._strategy.mode.value)

    @property
    def mode(self) -> SchemaMode:
        return self._strategy.mode

    @property
    def event_store(self) -> EventStore:
        if self._strategy.mode is not SchemaMode.V2_ACTIVE or self._event_store is None:
            raise ConfigurationError("Health events require USE_SCHEMA_V2=true")
        return self._event_store

    async def create_daily_checkin(self, user_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self._strategy.create_daily_checkin(user_id, fields)

    async def get_daily_checkins(
        self,
        user_id: str,
        start_date: date | str | None = None,
        end_date: date | str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        start = parse_checkin_date(start_date) if start_date is not None else None
        end = parse_checkin_date(end_date) if end_date is not None else None
        return await self._strategy.get_daily_checkins(user_id, start, end, limit)

    async def get_recent_checkins(self, limit: int = 100) -> list[dict[str, Any]]:
        return await self._strategy.get_recent_checkins(limit)

    async def get_analytics(
        self, user_id: str, timeframe: str = "week", today: date | None = None
    ) -> dict[str, Any]:
        return await self._strategy.get_analytics(user_id, timeframe, today)
