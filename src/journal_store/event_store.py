"""Append-only health event store (schema V2).

Every health fact is one immutable row in health_events. There is no update
or delete path: corrections are new events. After each insert the
side-effect handlers registered for the event type run inside a savepoint,
so a failing handler is logged and rolled back without touching the event
that triggered it.

A daily check-in fans out into mood → medication → symptom → note events
sharing one correlation id, all inside a single transaction.
"""

import logging
import time
import uuid
from datetime import UTC, date, datetime, timedelta
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from .compat_view import decompose_checkin, day_start, parse_checkin_date
from .errors import NotFoundError, ValidationError
from .insights import insert_insight
from .metrics import record_event_written, record_side_effect
from .models import validate_event_payload, validate_event_type
from .registry import get_side_effects
from .scoring import score_assessment

# Import handlers to register them
from . import handlers  # noqa: F401

logger = logging.getLogger(__name__)

DEFAULT_TIMELINE_DAYS = 30
DEFAULT_TIMELINE_LIMIT = 100
DEFAULT_SOURCE = "web_app"


def _lower_bound(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return day_start(value)


def _upper_bound(value: date | datetime) -> datetime:
    """Inclusive upper bound; a bare date covers the whole day."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return day_start(value + timedelta(days=1)) - timedelta(microseconds=1)


async def fetch_events(
    conn: psycopg.AsyncConnection[Any],
    *,
    user_id: str | None,
    start: date | datetime | None = None,
    end: date | datetime | None = None,
    event_types: list[str] | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Events in [start, end] newest first.

    A None bound leaves that side open; user_id=None spans all users.
    """
    query = "SELECT * FROM health_events WHERE true"
    params: list[Any] = []
    if start is not None:
        query += " AND occurred_at >= %s"
        params.append(_lower_bound(start))
    if end is not None:
        query += " AND occurred_at <= %s"
        params.append(_upper_bound(end))
    if user_id is not None:
        query += " AND user_id = %s"
        params.append(user_id)
    if event_types:
        query += " AND event_type = ANY(%s)"
        params.append(list(event_types))
    query += " ORDER BY occurred_at DESC, created_at DESC, id DESC"
    if limit is not None:
        query += " LIMIT %s"
        params.append(limit)

    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()


class EventStore:
    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_health_event(
        self,
        user_id: str,
        event_type: str,
        event_subtype: str | None,
        payload: dict[str, Any],
        occurred_at: datetime | None = None,
        correlation_id: str | None = None,
        source: str = DEFAULT_SOURCE,
        *,
        conn: psycopg.AsyncConnection[Any] | None = None,
    ) -> dict[str, Any]:
        """Validate, persist one event, then run its side effects.

        Pass ``conn`` to write inside a caller-owned transaction.
        """
        data = validate_event_payload(event_type, payload)
        if conn is not None:
            return await self._write_event(
                conn, user_id, event_type, event_subtype, data,
                occurred_at, correlation_id, source,
            )
        async with self._pool.connection() as own_conn:
            async with own_conn.transaction():
                return await self._write_event(
                    own_conn, user_id, event_type, event_subtype, data,
                    occurred_at, correlation_id, source,
                )

    async def _write_event(
        self,
        conn: psycopg.AsyncConnection[Any],
        user_id: str,
        event_type: str,
        event_subtype: str | None,
        data: dict[str, Any],
        occurred_at: datetime | None,
        correlation_id: str | None,
        source: str,
    ) -> dict[str, Any]:
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                INSERT INTO health_events (
                    user_id, event_type, event_subtype, event_data,
                    occurred_at, correlation_id, source
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    user_id, event_type, event_subtype, Json(data),
                    occurred_at or datetime.now(tz=UTC), correlation_id, source,
                ),
            )
            event = await cur.fetchone()

        record_event_written(event_type)
        logger.debug(
            "Event %s written (type=%s)", event["id"], event_type,
            extra={"journal_event_type": event_type, "journal_user_id": user_id},
        )
        await self._run_side_effects(conn, event)
        return event

    async def _run_side_effects(
        self, conn: psycopg.AsyncConnection[Any], event: dict[str, Any]
    ) -> None:
        for handler in get_side_effects(event["event_type"]):
            t0 = time.monotonic()
            try:
                async with conn.transaction():
                    await handler(conn, event)
                duration_ms = (time.monotonic() - t0) * 1000
                record_side_effect(handler.__name__, duration_ms, success=True)
            except Exception:
                duration_ms = (time.monotonic() - t0) * 1000
                record_side_effect(handler.__name__, duration_ms, success=False)
                logger.exception(
                    "Side effect %s failed for event_type=%s event_id=%s",
                    handler.__name__, event["event_type"], event.get("id", "?"),
                )

    async def create_daily_checkin(
        self,
        user_id: str,
        fields: dict[str, Any],
        source: str = DEFAULT_SOURCE,
    ) -> dict[str, Any]:
        """Fan one check-in out into correlated events in a single transaction."""
        planned = decompose_checkin(fields)
        payloads = [validate_event_payload(p.event_type, p.payload) for p in planned]
        occurred_at = day_start(parse_checkin_date(fields.get("date_submitted")))
        correlation_id = str(uuid.uuid4())

        events: list[dict[str, Any]] = []
        async with self._pool.connection() as conn:
            async with conn.transaction():
                for plan, data in zip(planned, payloads):
                    events.append(
                        await self._write_event(
                            conn, user_id, plan.event_type, plan.event_subtype,
                            data, occurred_at, correlation_id, source,
                        )
                    )

        logger.info(
            "Daily check-in recorded as %d events", len(events),
            extra={"journal_user_id": user_id, "journal_correlation_id": correlation_id},
        )
        return {
            "correlation_id": correlation_id,
            "primary_event_id": events[0]["id"],
            "occurred_at": occurred_at,
            "events": events,
        }

    async def complete_assessment(
        self,
        user_id: str,
        assessment_type: str,
        responses: dict[str, Any],
    ) -> dict[str, Any]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT * FROM assessment_definitions
                    WHERE name = %s AND active = true
                    ORDER BY version DESC
                    LIMIT 1
                    """,
                    (assessment_type,),
                )
                definition = await cur.fetchone()
            if definition is None:
                raise NotFoundError(f"Assessment type not found: {assessment_type!r}")

            scores = score_assessment(definition["name"], responses)
            completed_at = datetime.now(tz=UTC)

            async with conn.transaction():
                event = await self._write_event(
                    conn,
                    user_id,
                    "assessment",
                    assessment_type.lower(),
                    validate_event_payload(
                        "assessment",
                        {
                            "assessment_id": str(definition["id"]),
                            "assessment_name": definition["name"],
                            "responses": responses,
                            "scores": scores,
                        },
                    ),
                    completed_at,
                    None,
                    DEFAULT_SOURCE,
                )
                await conn.execute(
                    """
                    INSERT INTO assessment_responses (
                        user_id, assessment_id, health_event_id,
                        responses, scores, started_at, completed_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user_id, definition["id"], event["id"],
                        Json(responses), Json(scores), completed_at, completed_at,
                    ),
                )

        return {"event": event, "scores": scores}

    async def record_medication_taken(
        self,
        user_id: str,
        medication_id: str,
        taken_at: datetime | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        taken_at = taken_at or datetime.now(tz=UTC)
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "SELECT * FROM user_medications WHERE id = %s AND user_id = %s",
                    (medication_id, user_id),
                )
                medication = await cur.fetchone()
            if medication is None:
                raise NotFoundError(f"Medication not found: {medication_id!r}")

            payload: dict[str, Any] = {
                "status": "taken",
                "medication_id": str(medication_id),
                "medication_name": medication.get("medication_name"),
                "actual_time": taken_at.isoformat(),
            }
            if notes:
                payload["notes"] = notes

            async with conn.transaction():
                event = await self._write_event(
                    conn,
                    user_id,
                    "medication",
                    medication.get("medication_type") or "oral",
                    validate_event_payload("medication", payload),
                    taken_at,
                    None,
                    DEFAULT_SOURCE,
                )
                await conn.execute(
                    """
                    INSERT INTO medication_adherence (
                        user_id, medication_id, health_event_id,
                        taken_time, status, notes
                    ) VALUES (%s, %s, %s, %s, 'taken', %s)
                    """,
                    (user_id, medication_id, event["id"], taken_at, notes),
                )
        return event

    async def create_insight(self, user_id: str, **fields: Any) -> dict[str, Any]:
        async with self._pool.connection() as conn:
            return await insert_insight(conn, user_id=user_id, **fields)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_health_timeline(
        self,
        user_id: str,
        start_date: date | datetime | None = None,
        end_date: date | datetime | None = None,
        event_types: list[str] | None = None,
        limit: int = DEFAULT_TIMELINE_LIMIT,
    ) -> list[dict[str, Any]]:
        """Events newest first; both ends inclusive; default window 30 days."""
        if event_types:
            for et in event_types:
                validate_event_type(et)
        if limit <= 0:
            raise ValidationError("limit must be positive")

        now = datetime.now(tz=UTC)
        end = end_date if end_date is not None else now
        start = start_date if start_date is not None else now - timedelta(days=DEFAULT_TIMELINE_DAYS)

        async with self._pool.connection() as conn:
            return await fetch_events(
                conn,
                user_id=user_id,
                start=start,
                end=end,
                event_types=event_types,
                limit=limit,
            )

    async def get_daily_metrics(
        self, user_id: str, start_date: date, end_date: date
    ) -> list[dict[str, Any]]:
        """Per-day event counts, newest day first."""
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT
                        DATE(occurred_at) AS date,
                        COUNT(*) FILTER (WHERE event_type = 'mood') AS mood_entries,
                        COUNT(*) FILTER (WHERE event_type = 'medication') AS medication_entries,
                        COUNT(*) FILTER (WHERE event_type = 'symptom') AS symptom_entries,
                        COUNT(*) FILTER (
                            WHERE event_type = 'medication' AND event_data->>'status' = 'taken'
                        ) AS medications_taken,
                        COUNT(*) FILTER (
                            WHERE event_type = 'medication' AND event_data->>'status' = 'missed'
                        ) AS medications_missed,
                        MAX(created_at) AS last_updated
                    FROM health_events
                    WHERE user_id = %s
                      AND occurred_at BETWEEN %s AND %s
                    GROUP BY DATE(occurred_at)
                    ORDER BY DATE(occurred_at) DESC
                    """,
                    (user_id, _lower_bound(start_date), _upper_bound(end_date)),
                )
                return await cur.fetchall()
