"""Insight rows on the relational backend."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .errors import ValidationError
from .schema import linked_record_id

logger = logging.getLogger(__name__)

DEFAULT_INSIGHT_TTL = timedelta(days=7)

_LEGACY_RENAMES: dict[str, str] = {
    "insight_title": "title",
    "insight_message": "message",
}

_INSIGHT_COLUMNS: tuple[str, ...] = (
    "user_id",
    "insight_type",
    "insight_category",
    "title",
    "message",
    "priority",
    "trigger_type",
    "trigger_data",
    "status",
    "expires_at",
    "created_at",
)


def map_legacy_insight(data: dict[str, Any]) -> dict[str, Any]:
    """Translate flat-table insight fields onto relational column names."""
    mapped: dict[str, Any] = {}
    for key, value in data.items():
        if key == "insight_id":
            continue
        mapped[_LEGACY_RENAMES.get(key, key)] = value
    if "user_id" in mapped:
        mapped["user_id"] = linked_record_id(mapped["user_id"])
    if "date" in mapped:
        date_value = mapped.pop("date")
        mapped.setdefault("created_at", date_value)
    return {k: v for k, v in mapped.items() if k in _INSIGHT_COLUMNS}


async def insert_insight(
    conn: psycopg.AsyncConnection[Any],
    *,
    user_id: str,
    insight_type: str,
    title: str,
    message: str,
    category: str = "recommendation",
    priority: int = 5,
    trigger_type: str = "system",
    trigger_data: dict[str, Any] | None = None,
    expires_in: timedelta | None = DEFAULT_INSIGHT_TTL,
) -> dict[str, Any]:
    expires_at = datetime.now(tz=UTC) + expires_in if expires_in is not None else None
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            """
            INSERT INTO insights (
                user_id, insight_type, insight_category,
                title, message, priority,
                trigger_type, trigger_data, expires_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                user_id, insight_type, category, title, message, priority,
                trigger_type, Json(trigger_data or {}), expires_at,
            ),
        )
        row = await cur.fetchone()
    logger.info(
        "Insight %s created for user %s",
        insight_type, user_id,
        extra={"journal_user_id": user_id, "journal_insight_type": insight_type},
    )
    return row


async def insert_legacy_insight(
    conn: psycopg.AsyncConnection[Any], data: dict[str, Any]
) -> dict[str, Any]:
    """Insert an insight sent in either the flat or relational field naming."""
    mapped = map_legacy_insight(data)
    if not mapped.get("user_id"):
        raise ValidationError("Insight requires user_id")
    mapped.setdefault("insight_type", "general")
    mapped.setdefault("insight_category", "recommendation")
    mapped.setdefault("priority", 5)
    mapped.setdefault("trigger_type", "manual")
    if "trigger_data" in mapped:
        mapped["trigger_data"] = Json(mapped["trigger_data"] or {})

    columns = list(mapped.keys())
    placeholders = ", ".join(["%s"] * len(columns))
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(
            f"INSERT INTO insights ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *",
            tuple(mapped[c] for c in columns),
        )
        return await cur.fetchone()


async def select_user_insights(
    conn: psycopg.AsyncConnection[Any],
    user_id: str,
    *,
    limit: int = 30,
    category: str | None = None,
) -> list[dict[str, Any]]:
    query = "SELECT * FROM insights WHERE user_id = %s"
    params: list[Any] = [user_id]
    if category:
        query += " AND insight_category = %s"
        params.append(category)
    query += " ORDER BY created_at DESC, id DESC LIMIT %s"
    params.append(limit)
    async with conn.cursor(row_factory=dict_row) as cur:
        await cur.execute(query, params)
        return await cur.fetchall()
