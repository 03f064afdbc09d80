"""Idempotent schema setup for the relational and embedded backends.

Both runners only ever add: tables are created if missing and new
daily_checkins columns are appended. Nothing is renamed or dropped, so
running either twice leaves the schema unchanged.
"""

import logging
import sqlite3
from typing import Any

import psycopg
from psycopg.types.json import Json

from .models import EVENT_TYPES
from .schema import CHECKIN_ADDITIVE_COLUMNS

logger = logging.getLogger(__name__)

# Postgres column types that differ from the portable ones in schema.py.
_PG_TYPE_OVERRIDES: dict[str, str] = {
    "side_effects": "TEXT[]",
    "coping_strategies": "TEXT[]",
}

PHQ4_QUESTIONS: list[dict[str, Any]] = [
    {"id": "q1", "text": "Feeling nervous, anxious or on edge", "subscale": "anxiety"},
    {"id": "q2", "text": "Not being able to stop or control worrying", "subscale": "anxiety"},
    {"id": "q3", "text": "Little interest or pleasure in doing things", "subscale": "depression"},
    {"id": "q4", "text": "Feeling down, depressed or hopeless", "subscale": "depression"},
]

PHQ4_SCORING_LOGIC: dict[str, Any] = {
    "scale": [0, 3],
    "subscales": {"anxiety": ["q1", "q2"], "depression": ["q3", "q4"]},
    "severity": {"minimal": [0, 2], "mild": [3, 5], "moderate": [6, 8], "severe": [9, 12]},
}

_event_type_list = ", ".join(f"'{et}'" for et in EVENT_TYPES)

RELATIONAL_TABLES: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email TEXT UNIQUE NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        user_id UUID PRIMARY KEY REFERENCES users (id),
        nickname TEXT NOT NULL DEFAULT 'User',
        confidence_meds INTEGER DEFAULT 5,
        confidence_costs INTEGER DEFAULT 5,
        confidence_overall INTEGER DEFAULT 5,
        primary_need TEXT,
        cycle_stage TEXT,
        timezone TEXT DEFAULT 'America/Los_Angeles',
        email_opt_in BOOLEAN DEFAULT true,
        status TEXT DEFAULT 'active',
        baseline_completed BOOLEAN DEFAULT false,
        onboarding_path TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_checkins (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        mood_today TEXT NOT NULL,
        confidence_today INTEGER NOT NULL,
        primary_concern_today TEXT,
        user_note TEXT,
        date_submitted DATE NOT NULL DEFAULT CURRENT_DATE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (user_id, date_submitted)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS health_events (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        event_type TEXT NOT NULL CHECK (event_type IN ({_event_type_list})),
        event_subtype TEXT,
        event_data JSONB NOT NULL DEFAULT '{{}}',
        occurred_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        correlation_id UUID,
        source TEXT DEFAULT 'web_app',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS insights (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        insight_type TEXT NOT NULL,
        insight_category TEXT DEFAULT 'recommendation',
        title TEXT,
        message TEXT,
        priority INTEGER DEFAULT 5,
        trigger_type TEXT DEFAULT 'system',
        trigger_data JSONB DEFAULT '{}',
        status TEXT DEFAULT 'active',
        expires_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assessment_definitions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        active BOOLEAN NOT NULL DEFAULT true,
        questions JSONB NOT NULL DEFAULT '[]',
        scoring_logic JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (name, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assessment_responses (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        assessment_id UUID NOT NULL REFERENCES assessment_definitions (id),
        health_event_id UUID REFERENCES health_events (id),
        responses JSONB NOT NULL,
        scores JSONB NOT NULL DEFAULT '{}',
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_medications (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        medication_name TEXT NOT NULL,
        medication_type TEXT,
        active BOOLEAN NOT NULL DEFAULT true,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS medication_adherence (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES users (id),
        medication_id UUID NOT NULL REFERENCES user_medications (id),
        health_event_id UUID REFERENCES health_events (id),
        taken_time TIMESTAMPTZ,
        status TEXT NOT NULL,
        notes TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_health_events_user_time "
    "ON health_events (user_id, occurred_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_health_events_correlation "
    "ON health_events (correlation_id)",
    "CREATE INDEX IF NOT EXISTS idx_insights_user ON insights (user_id, created_at DESC)",
)


def relational_column_type(column: str) -> str:
    return _PG_TYPE_OVERRIDES.get(column, CHECKIN_ADDITIVE_COLUMNS[column])


async def apply_relational_migrations(conn: psycopg.AsyncConnection[Any]) -> None:
    """Create missing tables, add missing check-in columns, seed PHQ-4."""
    async with conn.transaction():
        for statement in RELATIONAL_TABLES:
            await conn.execute(statement)
        for column in CHECKIN_ADDITIVE_COLUMNS:
            await conn.execute(
                f"ALTER TABLE daily_checkins ADD COLUMN IF NOT EXISTS "
                f"{column} {relational_column_type(column)}"
            )
        await conn.execute(
            """
            INSERT INTO assessment_definitions (name, version, questions, scoring_logic)
            VALUES ('PHQ-4', 1, %s, %s)
            ON CONFLICT (name, version) DO NOTHING
            """,
            (Json(PHQ4_QUESTIONS), Json(PHQ4_SCORING_LOGIC)),
        )
    logger.info("Relational migrations applied")


# --- Embedded (SQLite) ---

EMBEDDED_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    nickname TEXT NOT NULL,
    confidence_meds INTEGER DEFAULT 5,
    confidence_costs INTEGER DEFAULT 5,
    confidence_overall INTEGER DEFAULT 5,
    primary_need TEXT,
    cycle_stage TEXT,
    top_concern TEXT,
    timezone TEXT,
    email_opt_in BOOLEAN DEFAULT 1,
    status TEXT DEFAULT 'active',
    medication_status TEXT,
    medication_status_updated DATETIME,
    baseline_completed BOOLEAN DEFAULT 0,
    baseline_submission_date DATE,
    onboarding_path TEXT,
    last_checkin_date DATE,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS daily_checkins (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    mood_today TEXT NOT NULL,
    confidence_today INTEGER NOT NULL,
    primary_concern_today TEXT,
    user_note TEXT,
    date_submitted DATE NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users (id)
);

CREATE TABLE IF NOT EXISTS insights (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    insight_type TEXT NOT NULL,
    insight_title TEXT,
    insight_message TEXT,
    insight_id TEXT,
    date DATE NOT NULL,
    mood_trend TEXT,
    confidence_trend TEXT,
    top_concerns TEXT,
    triggered_by TEXT,
    context_data TEXT,
    status TEXT DEFAULT 'active',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users (id)
);

CREATE TABLE IF NOT EXISTS insight_engagement (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    insight_type TEXT NOT NULL,
    action TEXT NOT NULL,
    insight_id TEXT,
    timestamp DATE NOT NULL,
    date_submitted DATE NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (user_id) REFERENCES users (id)
);

CREATE INDEX IF NOT EXISTS idx_users_email ON users (email);
CREATE INDEX IF NOT EXISTS idx_checkins_user_date ON daily_checkins (user_id, date_submitted DESC);
CREATE INDEX IF NOT EXISTS idx_insights_user ON insights (user_id);
"""


def embedded_columns(db: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in db.execute(f"PRAGMA table_info({table})")}


def apply_embedded_migrations(db: sqlite3.Connection) -> list[str]:
    """Create missing tables and add missing check-in columns.

    Returns the columns added by this run; empty when already up to date.
    """
    db.executescript(EMBEDDED_SCHEMA)
    existing = embedded_columns(db, "daily_checkins")
    added: list[str] = []
    for column, sql_type in CHECKIN_ADDITIVE_COLUMNS.items():
        if column in existing:
            continue
        try:
            db.execute(f"ALTER TABLE daily_checkins ADD COLUMN {column} {sql_type}")
        except sqlite3.OperationalError as exc:
            if "duplicate column name" not in str(exc):
                raise
            logger.debug("Column %s already present", column)
            continue
        added.append(column)
    db.commit()
    if added:
        logger.info("Added daily_checkins columns: %s", ", ".join(added))
    return added
