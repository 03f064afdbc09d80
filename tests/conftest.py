"""Shared fakes for the psycopg pool/connection surface the store uses."""

import itertools
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import pytest

from journal_store.metrics import reset_metrics

Responder = Callable[[str, Any], list[dict[str, Any]]]


class FakeTransaction:
    """Mimics psycopg's async transaction context manager (savepoint)."""

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.conn.rollbacks += 1
        return False  # don't suppress exceptions


class FakeCursor:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self._rows: list[dict[str, Any]] = []
        self.description = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def execute(self, query, params=None):
        self._rows = self.conn.run(query, params)
        self.description = [("col",)] if self._rows else None

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """Records every statement; ``responder(query, params)`` supplies rows."""

    def __init__(self, responder: Responder | None = None):
        self.responder = responder or (lambda query, params: [])
        self.executed: list[tuple[str, Any]] = []
        self.transactions = 0
        self.rollbacks = 0

    def run(self, query, params):
        self.executed.append((query, params))
        return self.responder(query, params)

    def cursor(self, row_factory=None):
        return FakeCursor(self)

    def transaction(self):
        return FakeTransaction(self)

    async def execute(self, query, params=None):
        self.run(query, params)

    def queries(self, fragment: str) -> list[tuple[str, Any]]:
        return [(q, p) for q, p in self.executed if fragment in q]


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.connections_opened = 0
        self.open_calls = 0
        self.close_calls = 0

    @asynccontextmanager
    async def connection(self):
        self.connections_opened += 1
        yield self.conn

    async def open(self, wait=False, timeout=30.0):
        self.open_calls += 1

    async def close(self):
        self.close_calls += 1


def health_event_responder(extra: Responder | None = None) -> Responder:
    """Turn INSERT INTO health_events into a returned row, like RETURNING *."""
    ids = itertools.count(1)

    def respond(query, params):
        if "INSERT INTO health_events" in query:
            user_id, event_type, subtype, data, occurred_at, correlation_id, source = params
            return [{
                "id": f"evt-{next(ids)}",
                "user_id": user_id,
                "event_type": event_type,
                "event_subtype": subtype,
                "event_data": data.obj,
                "occurred_at": occurred_at,
                "correlation_id": correlation_id,
                "source": source,
                "created_at": datetime.now(tz=UTC),
            }]
        if extra is not None:
            return extra(query, params)
        return []

    return respond


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fake_conn():
    return FakeConnection(health_event_responder())


@pytest.fixture
def fake_pool(fake_conn):
    return FakePool(fake_conn)
