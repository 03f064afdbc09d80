"""Embedded backend: a local SQLite file laid out like the remote tables.

sqlite3 is blocking, so every statement runs on one dedicated worker
thread. The connection is created on that thread and never leaves it,
which also serializes writes the way SQLite expects.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from ..compat_view import parse_checkin_date, require_checkin_fields
from ..errors import ConflictError, NotFoundError, StoreError, ValidationError
from ..metrics import record_checkin_written
from ..migrations import apply_embedded_migrations, embedded_columns
from ..schema import (
    CHECKIN_LIST_FIELDS,
    CHECKIN_WRITABLE_FIELDS,
    USER_PROFILE_DEFAULTS,
    as_record,
    checkin_values,
    coerce_checkin_flags,
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

T = TypeVar("T")

_BOOLEAN_USER_FIELDS = ("email_opt_in", "baseline_completed")


def generate_record_id() -> str:
    """Remote-style id: ``rec`` + epoch millis + 9 random hex chars."""
    return f"rec{int(time.time() * 1000)}{uuid.uuid4().hex[:9]}"


def _today() -> str:
    return datetime.now(tz=UTC).date().isoformat()


def _encode(value: Any) -> Any:
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(list(value) if isinstance(value, tuple) else value)
    return value


def _decode_checkin(row: sqlite3.Row) -> dict[str, Any]:
    out = coerce_checkin_flags(dict(row))
    for key in CHECKIN_LIST_FIELDS:
        raw = out.get(key)
        if isinstance(raw, str) and raw.startswith("["):
            try:
                out[key] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Undecodable %s on check-in %s", key, out.get("id"))
    return out


def _decode_user(row: sqlite3.Row) -> dict[str, Any]:
    user = dict(row)
    for key in _BOOLEAN_USER_FIELDS:
        if user.get(key) is not None:
            user[key] = bool(user[key])
    return with_legacy_defaults(user)


class SQLiteAdapter(StoreAdapter):
    backend = "sqlite"

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = str(path)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="journal-sqlite")
        self._db: sqlite3.Connection | None = None
        self.added_columns: list[str] = []

    @classmethod
    async def open(cls, path: str | Path) -> "SQLiteAdapter":
        """Open (creating if needed) the database file and migrate it."""
        adapter = cls(path)
        await adapter._call(adapter._connect)
        logger.info("SQLite store ready at %s", adapter._path)
        return adapter

    @property
    def path(self) -> str:
        return self._path

    def _connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        db = sqlite3.connect(self._path)
        db.row_factory = sqlite3.Row
        db.execute("PRAGMA journal_mode=WAL")
        self._db = db
        self.added_columns = apply_embedded_migrations(db)

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args))

    @property
    def db(self) -> sqlite3.Connection:
        if self._db is None:
            raise StoreError("SQLite store is not open")
        return self._db

    # --- users ---

    def _select_user(self, column: str, value: Any) -> dict[str, Any] | None:
        row = self.db.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
        return _decode_user(row) if row else None

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        return await self._call(self._select_user, "email", email)

    async def find_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        return await self._call(self._select_user, "id", linked_record_id(user_id))

    def _insert_user(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email")
        if not email:
            raise ValidationError("User requires email")
        if self._select_user("email", email) is not None:
            raise ConflictError(f"User with email {email} already exists")

        fields = project("Users", data)
        for key, default in USER_PROFILE_DEFAULTS.items():
            if fields.get(key) is None:
                fields[key] = default
        fields.pop("created_at", None)
        fields = {"id": generate_record_id(), **fields}

        columns = list(fields)
        try:
            with self.db:
                self.db.execute(
                    f"INSERT INTO users ({', '.join(columns)}) "
                    f"VALUES ({', '.join(['?'] * len(columns))})",
                    [_encode(fields[c]) for c in columns],
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"User with email {email} already exists") from exc
        return self._select_user("id", fields["id"])

    async def create_user(self, data: dict[str, Any]) -> dict[str, Any]:
        user = await self._call(self._insert_user, data)
        logger.info("User created", extra={"journal_user_id": user["id"]})
        return user

    def _update_user(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        fields = project("Users", data)
        fields.pop("created_at", None)
        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            try:
                with self.db:
                    self.db.execute(
                        f"UPDATE users SET {assignments} WHERE id = ?",
                        [*(_encode(v) for v in fields.values()), user_id],
                    )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"User with email {fields.get('email')} already exists") from exc
        user = self._select_user("id", user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    async def update_user(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._call(self._update_user, linked_record_id(user_id), data)

    # --- check-ins ---

    def _upsert_checkin(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError("Check-in requires user_id")
        require_checkin_fields(data)

        existing_columns = embedded_columns(self.db, "daily_checkins")
        fields: dict[str, Any] = {
            "user_id": user_id,
            "date_submitted": parse_checkin_date(data.get("date_submitted")).isoformat(),
        }
        fields.update(checkin_values(
            data, [c for c in CHECKIN_WRITABLE_FIELDS if c in existing_columns]
        ))

        with self.db:
            existing = self.db.execute(
                "SELECT id FROM daily_checkins WHERE user_id = ? AND date_submitted = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (user_id, fields["date_submitted"]),
            ).fetchone()
            if existing is not None:
                record_id = existing["id"]
                assignments = ", ".join(f"{k} = ?" for k in fields)
                self.db.execute(
                    f"UPDATE daily_checkins SET {assignments} WHERE id = ?",
                    [*(_encode(v) for v in fields.values()), record_id],
                )
            else:
                record_id = generate_record_id()
                columns = ["id", *fields]
                self.db.execute(
                    f"INSERT INTO daily_checkins ({', '.join(columns)}) "
                    f"VALUES ({', '.join(['?'] * len(columns))})",
                    [record_id, *(_encode(v) for v in fields.values())],
                )
            self.db.execute(
                "UPDATE users SET last_checkin_date = ? WHERE id = ?",
                (fields["date_submitted"], user_id),
            )

        row = self.db.execute("SELECT * FROM daily_checkins WHERE id = ?", (record_id,)).fetchone()
        return _decode_checkin(row)

    async def create_checkin(self, data: dict[str, Any]) -> dict[str, Any]:
        row = await self._call(self._upsert_checkin, data)
        record_checkin_written(self.backend)
        return as_record(row)

    def _select_checkins(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        rows = self.db.execute(
            "SELECT * FROM daily_checkins WHERE user_id = ? "
            "ORDER BY date_submitted DESC, created_at DESC, rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [_decode_checkin(r) for r in rows]

    async def get_user_checkins(
        self, user_id: str, limit: int = DEFAULT_CHECKIN_LIMIT
    ) -> dict[str, Any]:
        rows = await self._call(self._select_checkins, linked_record_id(user_id), limit)
        return self.records(rows)

    def _select_recent(self, limit: int) -> list[dict[str, Any]]:
        rows = self.db.execute(
            """
            SELECT dc.*, u.email AS user_email, u.nickname AS nickname
            FROM daily_checkins dc
            LEFT JOIN users u ON u.id = dc.user_id
            ORDER BY dc.date_submitted DESC, dc.created_at DESC, dc.rowid DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [_decode_checkin(r) for r in rows]

    async def get_recent_checkins(self, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]:
        return self.records(await self._call(self._select_recent, limit))

    # --- insights and engagement ---

    def _insert(self, table: str, schema_name: str, data: dict[str, Any], **defaults: Any) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError(f"{schema_name} record requires user_id")
        fields = project(schema_name, data)
        for key, default in defaults.items():
            if fields.get(key) is None:
                fields[key] = default
        fields["user_id"] = user_id
        record_id = generate_record_id()
        columns = ["id", *fields]
        with self.db:
            self.db.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) "
                f"VALUES ({', '.join(['?'] * len(columns))})",
                [record_id, *(_encode(v) for v in fields.values())],
            )
        return {**data, **fields, "id": record_id}

    async def create_insight(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = await self._call(
            functools.partial(
                self._insert, "insights", "Insights", data,
                insight_type="general", date=_today(), status="active",
            )
        )
        return as_record(fields)

    def _select_insights(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        rows = self.db.execute(
            "SELECT * FROM insights WHERE user_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    async def get_user_insights(
        self, user_id: str, limit: int = DEFAULT_INSIGHT_LIMIT
    ) -> dict[str, Any]:
        rows = await self._call(self._select_insights, linked_record_id(user_id), limit)
        return self.records(rows)

    async def create_engagement(self, data: dict[str, Any]) -> dict[str, Any]:
        today = _today()
        fields = await self._call(
            functools.partial(
                self._insert, "insight_engagement", "InsightEngagement", data,
                timestamp=today, date_submitted=today,
            )
        )
        return as_record(fields)

    # --- utilities ---

    def _stats(self) -> dict[str, int]:
        return {
            name: self.db.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for name, table in (
                ("users", "users"),
                ("checkins", "daily_checkins"),
                ("insights", "insights"),
            )
        }

    async def get_stats(self) -> dict[str, int]:
        return await self._call(self._stats)

    def _clear(self) -> None:
        with self.db:
            for table in ("insight_engagement", "insights", "daily_checkins", "users"):
                self.db.execute(f"DELETE FROM {table}")

    async def clear_all_data(self) -> None:
        await self._call(self._clear)
        logger.info("All local database data cleared")

    def _query(self, sql: str, params: Any) -> list[dict[str, Any]]:
        with self.db:
            cur = self.db.execute(sql, params if params is not None else ())
            return [dict(r) for r in cur.fetchall()]

    async def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        return await self._call(self._query, sql, params)

    async def _close(self) -> None:
        if self._db is not None:
            await self._call(self._db.close)
            self._db = None
        self._executor.shutdown(wait=True)
