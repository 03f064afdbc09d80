"""Support insight when a mood check-in signals distress."""

import logging
from typing import Any

import psycopg

from ..insights import insert_insight
from ..registry import side_effect

logger = logging.getLogger(__name__)

DISTRESS_MOODS: frozenset[str] = frozenset({"devastated", "heartbroken", "very tough"})
HIGH_ANXIETY_THRESHOLD = 8


def needs_support(data: dict[str, Any]) -> bool:
    mood = str(data.get("mood") or "").strip().lower()
    if mood in DISTRESS_MOODS:
        return True
    anxiety = data.get("anxiety_level")
    try:
        return anxiety is not None and float(anxiety) >= HIGH_ANXIETY_THRESHOLD
    except (TypeError, ValueError):
        return False


@side_effect("mood")
async def flag_mood_distress(
    conn: psycopg.AsyncConnection[Any], event: dict[str, Any]
) -> None:
    if not needs_support(event.get("event_data") or {}):
        return
    await insert_insight(
        conn,
        user_id=event["user_id"],
        insight_type="support_needed",
        title="We noticed you might need extra support",
        message="Your recent check-in shows elevated stress levels.",
        priority=7,
        trigger_type="event_based",
        trigger_data={"event_id": str(event["id"])},
    )
