from typing import Any

import psycopg

from ..insights import insert_insight
from ..registry import side_effect

MISSED_DOSE_THRESHOLD = 2


@side_effect("medication")
async def flag_missed_doses(
    conn: psycopg.AsyncConnection[Any], event: dict[str, Any]
) -> None:
    data = event.get("event_data") or {}
    if data.get("status") != "missed":
        return
    try:
        missed = int(data.get("missed_doses") or 0)
    except (TypeError, ValueError):
        return
    if missed < MISSED_DOSE_THRESHOLD:
        return
    await insert_insight(
        conn,
        user_id=event["user_id"],
        insight_type="adherence_check",
        title="A few doses slipped by",
        message="You've missed several doses recently. Your care team can help with a plan.",
        priority=6,
        trigger_type="event_based",
        trigger_data={"event_id": str(event["id"]), "missed_doses": missed},
    )
