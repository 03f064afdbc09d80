"""Record shapes shared by every backend.

The remote document API only accepts a fixed set of fields per table; the
flat backends (SQLite, V1 Postgres) carry the same columns. Each table is
described once here and writes are projected through the descriptor.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

MEDICATION_NOT_TRACKED = "not tracked"
MEDICATION_TAKEN = "yes"
MEDICATION_MISSED = "no"

USER_MEDICATION_STATUS_NOT_TRACKED = "not_tracked"

LEGACY_USER_DEFAULTS: dict[str, Any] = {
    "medication_status": USER_MEDICATION_STATUS_NOT_TRACKED,
    "medication_status_updated": None,
    "top_concern": None,
}

USER_PROFILE_DEFAULTS: dict[str, Any] = {
    "nickname": "User",
    "confidence_meds": 5,
    "confidence_costs": 5,
    "confidence_overall": 5,
    "timezone": "America/Los_Angeles",
    "email_opt_in": True,
    "status": "active",
    "baseline_completed": False,
}


@dataclass(frozen=True)
class TableSchema:
    name: str
    fields: tuple[str, ...]

    def allows(self, field: str) -> bool:
        return field in self.fields


USERS = TableSchema(
    "Users",
    (
        "email", "nickname", "created_at", "last_checkin_date", "status",
        "timezone", "medication_status", "medication_status_updated",
        "confidence_meds", "confidence_costs", "confidence_overall",
        "primary_need", "cycle_stage", "email_opt_in", "onboarding_path",
        "baseline_completed", "baseline_submission_date", "top_concern",
    ),
)

DAILY_CHECKINS = TableSchema(
    "DailyCheckins",
    (
        "user_id", "mood_today", "confidence_today", "anxiety_level",
        "user_note", "date_submitted", "primary_concern_today",
        "medication_taken", "missed_doses", "side_effects",
        "partner_involved_today", "injection_confidence", "coping_strategies",
        "sentiment", "sentiment_confidence", "sentiment_scores",
        "sentiment_processing_time", "created_at",
    ),
)

INSIGHTS = TableSchema(
    "Insights",
    (
        "user_id", "insight_type", "insight_title", "insight_message",
        "insight_id", "date", "mood_trend", "confidence_trend",
        "top_concerns", "status", "triggered_by", "context_data",
    ),
)

INSIGHT_ENGAGEMENT = TableSchema(
    "InsightEngagement",
    ("user_id", "insight_type", "action", "insight_id", "timestamp", "date_submitted"),
)

TABLES: dict[str, TableSchema] = {
    t.name: t for t in (USERS, DAILY_CHECKINS, INSIGHTS, INSIGHT_ENGAGEMENT)
}

# V1 check-in fields that survive a V2 round trip (see compat_view).
CHECKIN_CORE_FIELDS: tuple[str, ...] = (
    "mood_today",
    "confidence_today",
    "anxiety_level",
    "medication_taken",
    "missed_doses",
    "side_effects",
    "coping_strategies",
    "user_note",
    "primary_concern_today",
    "injection_confidence",
    "partner_involved_today",
    "date_submitted",
)

# Columns added to daily_checkins after the first release. Applied on
# startup with additive, idempotent migrations on every flat backend.
CHECKIN_ADDITIVE_COLUMNS: dict[str, str] = {
    "anxiety_level": "INTEGER",
    "medication_taken": "TEXT",
    "missed_doses": "INTEGER",
    "side_effects": "TEXT",
    "coping_strategies": "TEXT",
    "injection_confidence": "INTEGER",
    "partner_involved_today": "BOOLEAN",
    "sentiment": "TEXT",
    "sentiment_confidence": "REAL",
    "sentiment_scores": "TEXT",
    "sentiment_processing_time": "REAL",
    "phq4_total_score": "INTEGER",
    "phq4_anxiety_score": "INTEGER",
    "phq4_depression_score": "INTEGER",
}

# Columns stored as JSON text on backends without array types.
CHECKIN_LIST_FIELDS: frozenset[str] = frozenset({"side_effects", "coping_strategies"})

# Yes/no check-in columns. SQLite hands them back as 0/1 and older
# relational tables declared them TEXT, so reads coerce to bool.
CHECKIN_FLAG_FIELDS: frozenset[str] = frozenset({"partner_involved_today"})

# Every column a check-in write sets besides user_id and date_submitted.
CHECKIN_WRITABLE_FIELDS: tuple[str, ...] = tuple(
    dict.fromkeys(
        [f for f in DAILY_CHECKINS.fields if f not in ("user_id", "date_submitted", "created_at")]
        + list(CHECKIN_ADDITIVE_COLUMNS)
    )
)


def project(table: str, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the fields the table accepts; unknown tables pass through."""
    schema = TABLES.get(table)
    if schema is None:
        logger.warning("No schema defined for table %s", table)
        return dict(data)

    kept = {k: v for k, v in data.items() if schema.allows(k)}
    dropped = sorted(k for k in data if not schema.allows(k))
    if dropped:
        logger.debug("Filtered out fields for %s: %s", table, dropped)
    return kept


def with_legacy_defaults(user: dict[str, Any]) -> dict[str, Any]:
    """Fill legacy user fields so old call sites never see a missing key."""
    merged = dict(user)
    for key, default in LEGACY_USER_DEFAULTS.items():
        if merged.get(key) is None:
            merged[key] = default
    return merged


def as_record(fields: dict[str, Any], record_id: Any = None) -> dict[str, Any]:
    """Wrap a row in the {id, fields} shape of the remote document API."""
    rid = record_id if record_id is not None else fields.get("id")
    return {"id": str(rid) if rid is not None else None, "fields": {**fields, "id": rid}}


def normalize_medication_taken(value: Any) -> str:
    if value is None:
        return MEDICATION_NOT_TRACKED
    raw = str(value).strip().lower()
    if raw in {"yes", "taken", "true"}:
        return MEDICATION_TAKEN
    if raw in {"no", "missed", "false"}:
        return MEDICATION_MISSED
    return MEDICATION_NOT_TRACKED


def linked_record_id(value: Any) -> Any:
    """Unwrap the remote API's linked-record list ["rec123"] to "rec123"."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    if isinstance(value, str) and value.startswith("{") and value.endswith("}"):
        return value.strip("{}").replace('"', "")
    return value


def coerce_flag(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    raw = str(value).strip().lower()
    if not raw:
        return None
    return raw in {"true", "yes", "1", "t", "y"}


def coerce_checkin_flags(row: dict[str, Any]) -> dict[str, Any]:
    for key in CHECKIN_FLAG_FIELDS:
        if key in row:
            row[key] = coerce_flag(row[key])
    return row


def checkin_values(data: dict[str, Any], columns: Iterable[str]) -> dict[str, Any]:
    """One value per column; keys missing from data map to None.

    A same-day resubmission writes all of them, replacing the earlier row.
    """
    values = {column: data.get(column) for column in columns}
    if "medication_taken" in values:
        values["medication_taken"] = normalize_medication_taken(data.get("medication_taken"))
    return coerce_checkin_flags(values)
