import logging
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from .models import EVENT_TYPES

logger = logging.getLogger(__name__)

# Handler signature: async def handler(conn: AsyncConnection, event: dict) -> None
SideEffectFn = Callable[[psycopg.AsyncConnection[Any], dict[str, Any]], Awaitable[None]]

# Multiple handlers per event_type, dispatched in registration order
_side_effects: dict[str, list[SideEffectFn]] = {}


def side_effect(*event_types: str) -> Callable[[SideEffectFn], SideEffectFn]:
    """Register a side-effect handler run after an event of these types is written.

    Usage:
        @side_effect("mood")
        async def flag_distress(conn, event):
            ...
    """

    def decorator(fn: SideEffectFn) -> SideEffectFn:
        for et in event_types:
            if et not in EVENT_TYPES:
                raise ValueError(f"Unknown event_type={et!r} for side effect {fn.__name__}")
            _side_effects.setdefault(et, []).append(fn)
            logger.info("Registered side effect %s for event_type=%s", fn.__name__, et)
        return fn

    return decorator


def get_side_effects(event_type: str) -> list[SideEffectFn]:
    return _side_effects.get(event_type, [])


def registered_event_types() -> list[str]:
    return list(_side_effects.keys())
