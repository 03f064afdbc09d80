"""Storage adapter contract shared by every backend."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..schema import as_record

logger = logging.getLogger(__name__)

DEFAULT_CHECKIN_LIMIT = 30
DEFAULT_RECENT_LIMIT = 100
DEFAULT_INSIGHT_LIMIT = 30


class StoreAdapter(ABC):
    """One interface over the relational, embedded and remote backends.

    Users come back as plain dicts carrying the legacy fields. Check-ins
    and insights come back in the remote record shape ``{"id", "fields"}``,
    listings as ``{"records": [...]}``.
    """

    backend: str

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def find_user_by_email(self, email: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def find_user_by_id(self, user_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def create_user(self, data: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def update_user(self, user_id: str, data: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def create_checkin(self, data: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def get_user_checkins(
        self, user_id: str, limit: int = DEFAULT_CHECKIN_LIMIT
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def get_recent_checkins(self, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]: ...

    @abstractmethod
    async def create_insight(self, data: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    async def get_user_insights(
        self, user_id: str, limit: int = DEFAULT_INSIGHT_LIMIT
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def query(self, sql: str, params: Any = None) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def _close(self) -> None: ...

    async def close(self) -> None:
        """Release backend resources. Later calls do nothing."""
        if self._closed:
            return
        self._closed = True
        await self._close()
        logger.info("%s store closed", self.backend)

    @staticmethod
    def records(rows: list[dict[str, Any]]) -> dict[str, Any]:
        return {"records": [as_record(row) for row in rows]}
