"""Alert insight when an assessment scores moderate or severe."""

from typing import Any

import psycopg

from ..insights import insert_insight
from ..registry import side_effect

ALERT_SEVERITIES: frozenset[str] = frozenset({"moderate", "severe"})


@side_effect("assessment")
async def flag_assessment_severity(
    conn: psycopg.AsyncConnection[Any], event: dict[str, Any]
) -> None:
    scores = (event.get("event_data") or {}).get("scores") or {}
    if scores.get("severity") not in ALERT_SEVERITIES:
        return
    await insert_insight(
        conn,
        user_id=event["user_id"],
        insight_type="assessment_alert",
        title="Your mental health assessment needs attention",
        message="Consider reaching out to your care team.",
        priority=8,
        trigger_type="event_based",
        trigger_data={"event_id": str(event["id"]), "scores": scores},
    )
