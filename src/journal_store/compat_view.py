"""Translation between flat V1 check-ins and V2 health event groups.

One check-in becomes up to four events (mood, medication, symptom, note)
sharing a correlation id. Reading goes the other way: events are grouped by
correlation id and every (user, date) yields at most one V1-shaped row.

When a user submitted twice on the same day under V2 there are two groups
for that date. The most recent group wins, ordered by the newest
created_at in the group and then by correlation id, so the result never
depends on row order from the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from typing import Any

from .errors import ValidationError
from .schema import (
    CHECKIN_FLAG_FIELDS,
    MEDICATION_MISSED,
    MEDICATION_NOT_TRACKED,
    MEDICATION_TAKEN,
    coerce_flag,
    normalize_medication_taken,
)

CHECKIN_REQUIRED_FIELDS: tuple[str, ...] = ("mood_today", "confidence_today")

# mood payload key -> V1 column
_MOOD_FIELD_MAP: dict[str, str] = {
    "mood": "mood_today",
    "confidence": "confidence_today",
    "anxiety_level": "anxiety_level",
    "note": "user_note",
    "primary_concern": "primary_concern_today",
    "injection_confidence": "injection_confidence",
    "partner_involved": "partner_involved_today",
}

_MIN_TS = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class PlannedEvent:
    event_type: str
    event_subtype: str
    payload: dict[str, Any]


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    return True


def parse_checkin_date(value: Any, *, default: date | None = None) -> date:
    """Accept a date, a datetime or an ISO string; fall back to default or today (UTC).

    Offset-aware datetimes and strings land on their UTC calendar day.
    """
    if value is None or value == "":
        return default or datetime.now(tz=UTC).date()
    if isinstance(value, datetime):
        return value.astimezone(UTC).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            pass
        else:
            return parsed.astimezone(UTC).date() if parsed.tzinfo else parsed.date()
    raise ValidationError(f"date_submitted must be YYYY-MM-DD, got {value!r}")


def day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=UTC)


def require_checkin_fields(fields: dict[str, Any]) -> None:
    missing = [f for f in CHECKIN_REQUIRED_FIELDS if not _present(fields.get(f))]
    if missing:
        raise ValidationError(f"Check-in missing required field(s): {', '.join(missing)}")


def as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def decompose_checkin(fields: dict[str, Any]) -> list[PlannedEvent]:
    """Plan the events for one V1 check-in, in write order."""
    require_checkin_fields(fields)
    planned: list[PlannedEvent] = []

    mood: dict[str, Any] = {}
    for payload_key, column in _MOOD_FIELD_MAP.items():
        if _present(fields.get(column)):
            value = fields[column]
            mood[payload_key] = coerce_flag(value) if column in CHECKIN_FLAG_FIELDS else value
    planned.append(PlannedEvent("mood", "daily_checkin", mood))

    medication = normalize_medication_taken(fields.get("medication_taken"))
    if medication != MEDICATION_NOT_TRACKED:
        med: dict[str, Any] = {
            "status": "taken" if medication == MEDICATION_TAKEN else "missed",
        }
        if _present(fields.get("missed_doses")):
            med["missed_doses"] = fields["missed_doses"]
        planned.append(PlannedEvent("medication", "daily_status", med))

    side_effects = as_list(fields.get("side_effects"))
    if side_effects:
        planned.append(
            PlannedEvent(
                "symptom",
                "side_effect",
                {"symptoms": [str(s) for s in side_effects], "related_to": "medication"},
            )
        )

    strategies = as_list(fields.get("coping_strategies"))
    if strategies:
        planned.append(
            PlannedEvent(
                "note",
                "coping_strategies",
                {"strategies": strategies, "context": "daily_checkin"},
            )
        )

    return planned


def _event_date(event: dict[str, Any]) -> date:
    return parse_checkin_date(event.get("occurred_at"))


def _group_key(event: dict[str, Any]) -> str:
    correlation_id = event.get("correlation_id")
    if correlation_id:
        return str(correlation_id)
    return f"event:{event.get('id')}"


def _as_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return _MIN_TS


def format_group(group_id: str, events: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Rebuild one V1 row from a correlation group; None if it has no mood event."""
    by_type: dict[str, dict[str, Any]] = {}
    for event in events:
        by_type.setdefault(event["event_type"], event)

    mood_event = by_type.get("mood")
    if mood_event is None:
        return None

    created = max(_as_timestamp(e.get("created_at")) for e in events)
    row: dict[str, Any] = {
        "id": group_id,
        "user_id": str(mood_event["user_id"]) if mood_event.get("user_id") is not None else None,
        "date_submitted": _event_date(mood_event).isoformat(),
        "created_at": created if created != _MIN_TS else None,
        "medication_taken": MEDICATION_NOT_TRACKED,
    }
    for column in _MOOD_FIELD_MAP.values():
        row[column] = None

    data = mood_event.get("event_data") or {}
    for payload_key, column in _MOOD_FIELD_MAP.items():
        if payload_key in data:
            value = data[payload_key]
            row[column] = coerce_flag(value) if column in CHECKIN_FLAG_FIELDS else value

    med_event = by_type.get("medication")
    if med_event is not None:
        med = med_event.get("event_data") or {}
        row["medication_taken"] = MEDICATION_TAKEN if med.get("status") == "taken" else MEDICATION_MISSED
        row["missed_doses"] = med.get("missed_doses")

    symptom_event = by_type.get("symptom")
    if symptom_event is not None:
        row["side_effects"] = (symptom_event.get("event_data") or {}).get("symptoms")

    note_event = by_type.get("note")
    if note_event is not None:
        row["coping_strategies"] = (note_event.get("event_data") or {}).get("strategies")

    return row


def reconstruct_checkins(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Collapse events into V1 rows: one per (user, date), newest date first."""
    groups: dict[str, list[dict[str, Any]]] = {}
    for event in events:
        groups.setdefault(_group_key(event), []).append(event)

    winners: dict[tuple[Any, str], tuple[tuple[datetime, str], dict[str, Any]]] = {}
    for group_id, group_events in groups.items():
        row = format_group(group_id, group_events)
        if row is None:
            continue
        rank = (
            max(_as_timestamp(e.get("created_at")) for e in group_events),
            group_id,
        )
        slot = (row["user_id"], row["date_submitted"])
        current = winners.get(slot)
        if current is None or rank > current[0]:
            winners[slot] = (rank, row)

    rows = [row for _, row in winners.values()]
    return order_checkins(rows)


def order_checkins(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """date_submitted DESC, then created_at DESC, then id. Shared by both schema paths."""
    rows = sorted(
        rows,
        key=lambda r: (_as_timestamp(r.get("created_at")), str(r.get("id") or "")),
        reverse=True,
    )
    return sorted(rows, key=lambda r: str(r.get("date_submitted") or ""), reverse=True)


def filter_checkins(
    rows: list[dict[str, Any]],
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Inclusive date filter plus limit over rows already in DESC order."""
    kept = []
    for row in rows:
        d = parse_checkin_date(row.get("date_submitted"))
        if start_date is not None and d < start_date:
            continue
        if end_date is not None and d > end_date:
            continue
        kept.append(row)
    if limit is not None:
        kept = kept[:limit]
    return kept
