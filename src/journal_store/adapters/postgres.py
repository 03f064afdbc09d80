"""Relational backend: PostgreSQL through one shared connection pool."""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from ..compat import CompatibilityService
from ..config import SchemaMode
from ..errors import ConflictError, NotFoundError, ValidationError
from ..event_store import EventStore
from ..insights import insert_legacy_insight, select_user_insights
from ..schema import USER_PROFILE_DEFAULTS, as_record, linked_record_id, with_legacy_defaults
from .base import (
    DEFAULT_CHECKIN_LIMIT,
    DEFAULT_INSIGHT_LIMIT,
    DEFAULT_RECENT_LIMIT,
    StoreAdapter,
)

logger = logging.getLogger(__name__)

PROFILE_COLUMNS: tuple[str, ...] = (
    "nickname",
    "confidence_meds",
    "confidence_costs",
    "confidence_overall",
    "primary_need",
    "cycle_stage",
    "timezone",
    "email_opt_in",
    "status",
    "baseline_completed",
    "onboarding_path",
)

_USER_SELECT = f"""
    SELECT u.id, u.email, u.created_at, u.updated_at,
           {', '.join(f'p.{c}' for c in PROFILE_COLUMNS)}
    FROM users u
    LEFT JOIN user_profiles p ON p.user_id = u.id
"""


def _present_user(row: dict[str, Any]) -> dict[str, Any]:
    user = dict(row)
    if user.get("id") is not None:
        user["id"] = str(user["id"])
    return with_legacy_defaults(user)


class PostgresAdapter(StoreAdapter):
    backend = "postgres"

    def __init__(self, pool: AsyncConnectionPool, compat: CompatibilityService) -> None:
        super().__init__()
        self._pool = pool
        self._compat = compat

    @property
    def schema_mode(self) -> SchemaMode:
        return self._compat.mode

    @property
    def compat(self) -> CompatibilityService:
        return self._compat

    @property
    def event_store(self) -> EventStore:
        """V2 event store; ConfigurationError while running V1."""
        return self._compat.event_store

    # --- users ---

    async def _fetch_user(self, where: str, value: Any) -> dict[str, Any] | None:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(f"{_USER_SELECT} WHERE {where} = %s", (value,))
                row = await cur.fetchone()
        return _present_user(row) if row else None

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        return await self._fetch_user("u.email", email)

    async def find_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        return await self._fetch_user("u.id::text", str(user_id))

    async def create_user(self, data: dict[str, Any]) -> dict[str, Any]:
        email = data.get("email")
        if not email:
            raise ValidationError("User requires email")

        profile = {"nickname": data.get("nickname") or USER_PROFILE_DEFAULTS["nickname"]}
        for column in PROFILE_COLUMNS:
            if column == "nickname":
                continue
            value = data.get(column)
            profile[column] = value if value is not None else USER_PROFILE_DEFAULTS.get(column)

        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor(row_factory=dict_row) as cur:
                        await cur.execute(
                            "INSERT INTO users (email) VALUES (%s) "
                            "RETURNING id, email, created_at, updated_at",
                            (email,),
                        )
                        user = await cur.fetchone()
                    columns = ["user_id", *profile.keys()]
                    await conn.execute(
                        f"INSERT INTO user_profiles ({', '.join(columns)}) "
                        f"VALUES ({', '.join(['%s'] * len(columns))})",
                        (user["id"], *profile.values()),
                    )
        except psycopg.errors.UniqueViolation as exc:
            raise ConflictError(f"User with email {email} already exists") from exc

        logger.info("User created", extra={"journal_user_id": str(user["id"])})
        return _present_user({**user, **profile})

    async def update_user(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]:
        user_updates = {k: v for k, v in data.items() if k == "email"}
        profile_updates = {k: v for k, v in data.items() if k in PROFILE_COLUMNS}
        ignored = sorted(set(data) - set(user_updates) - set(profile_updates))
        if ignored:
            logger.debug("Ignoring user fields without a relational column: %s", ignored)

        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    if user_updates:
                        await conn.execute(
                            "UPDATE users SET email = %s, updated_at = now() WHERE id::text = %s",
                            (user_updates["email"], str(user_id)),
                        )
                    if profile_updates:
                        assignments = ", ".join(f"{k} = %s" for k in profile_updates)
                        await conn.execute(
                            f"UPDATE user_profiles SET {assignments}, updated_at = now() "
                            f"WHERE user_id::text = %s",
                            (*profile_updates.values(), str(user_id)),
                        )
        except psycopg.errors.UniqueViolation as exc:
            raise ConflictError(f"User with email {user_updates.get('email')} already exists") from exc

        user = await self.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    # --- check-ins ---

    async def create_checkin(self, data: dict[str, Any]) -> dict[str, Any]:
        user_id = linked_record_id(data.get("user_id"))
        if not user_id:
            raise ValidationError("Check-in requires user_id")
        fields = {k: v for k, v in data.items() if k != "user_id"}
        row = await self._compat.create_daily_checkin(str(user_id), fields)
        return as_record(row)

    async def get_user_checkins(
        self, user_id: str, limit: int = DEFAULT_CHECKIN_LIMIT
    ) -> dict[str, Any]:
        rows = await self._compat.get_daily_checkins(str(user_id), limit=limit)
        return self.records(rows)

    async def get_recent_checkins(self, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]:
        return self.records(await self._compat.get_recent_checkins(limit))

    async def get_analytics(self, user_id: str, timeframe: str = "week") -> dict[str, Any]:
        return await self._compat.get_analytics(str(user_id), timeframe)

    # --- insights ---

    async def create_insight(self, data: dict[str, Any]) -> dict[str, Any]:
        async with self._pool.connection() as conn:
            row = await insert_legacy_insight(conn, data)
        return as_record(row)

    async def get_user_insights(
        self, user_id: str, limit: int = DEFAULT_INSIGHT_LIMIT
    ) -> dict[str, Any]:
        async with self._pool.connection() as conn:
            rows = await select_user_insights(conn, str(user_id), limit=limit)
        return self.records(rows)

    # --- raw access ---

    async def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(sql, params)
                if cur.description is None:
                    return []
                return await cur.fetchall()

    async def _close(self) -> None:
        await self._pool.close()
