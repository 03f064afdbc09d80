"""Tests for the V1/V2 compatibility service."""

from datetime import UTC, date, datetime, timedelta

import psycopg
import pytest

from conftest import FakeConnection, FakePool, health_event_responder

from journal_store.compat import (
    V1_WRITABLE_COLUMNS,
    CompatibilityService,
    V1CheckinStrategy,
    V2CheckinStrategy,
    analytics_window,
)
from journal_store.compat_view import day_start
from journal_store.config import SchemaMode
from journal_store.errors import ConfigurationError, ConflictError, ValidationError
from journal_store.event_store import EventStore

TODAY = date(2025, 3, 10)
T0 = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


def _mood(user, day, corr, mood, created, confidence=5):
    return {
        "id": f"{corr}-mood",
        "user_id": user,
        "event_type": "mood",
        "event_subtype": "daily_checkin",
        "event_data": {"mood": mood, "confidence": confidence},
        "occurred_at": day_start(day),
        "correlation_id": corr,
        "created_at": created,
    }


def _med(user, day, corr, status, created):
    return {
        "id": f"{corr}-med",
        "user_id": user,
        "event_type": "medication",
        "event_subtype": "daily_status",
        "event_data": {"status": status},
        "occurred_at": day_start(day),
        "correlation_id": corr,
        "created_at": created,
    }


def _events_responder(events):
    def respond(query, params):
        if query.lstrip().startswith("SELECT * FROM health_events"):
            return list(events)
        return []
    return respond


class TestConstruction:
    def test_v2_requires_event_store(self, fake_pool):
        with pytest.raises(ConfigurationError, match="EventStore"):
            CompatibilityService(fake_pool, use_v2=True)

    def test_strategy_fixed_at_construction(self, fake_pool):
        v1 = CompatibilityService(fake_pool, use_v2=False)
        v2 = CompatibilityService(fake_pool, use_v2=True, event_store=EventStore(fake_pool))
        assert isinstance(v1._strategy, V1CheckinStrategy)
        assert isinstance(v2._strategy, V2CheckinStrategy)
        assert v1.mode is SchemaMode.V1_ONLY
        assert v2.mode is SchemaMode.V2_ACTIVE

    def test_event_store_unavailable_in_v1(self, fake_pool):
        service = CompatibilityService(fake_pool, use_v2=False, event_store=EventStore(fake_pool))
        with pytest.raises(ConfigurationError, match="USE_SCHEMA_V2"):
            service.event_store


class TestV1:
    @pytest.mark.asyncio
    async def test_upsert_on_user_and_date(self):
        def respond(query, params):
            if "INSERT INTO daily_checkins" in query:
                return [{"id": "1a", "user_id": "u1", "date_submitted": TODAY,
                         "mood_today": "hopeful", "medication_taken": "not tracked"}]
            return []

        conn = FakeConnection(respond)
        service = CompatibilityService(FakePool(conn), use_v2=False)
        row = await service.create_daily_checkin(
            "u1", {"mood_today": "hopeful", "confidence_today": 7, "date_submitted": "2025-03-10"}
        )

        query, params = conn.executed[0]
        assert "ON CONFLICT (user_id, date_submitted) DO UPDATE" in query
        assert params[0] == "u1"
        assert params[1] == TODAY
        assert "not tracked" in params
        assert row["date_submitted"] == "2025-03-10"
        assert conn.queries("health_events") == []

    @pytest.mark.asyncio
    async def test_resubmission_writes_every_column(self):
        conn = FakeConnection(lambda query, params: [{"id": 1, "user_id": "u1", "date_submitted": TODAY}])
        service = CompatibilityService(FakePool(conn), use_v2=False)
        await service.create_daily_checkin("u1", {
            "mood_today": "confident", "confidence_today": 8, "date_submitted": "2025-03-10",
        })

        query, params = conn.executed[0]
        for column in ("user_note", "side_effects", "coping_strategies", "anxiety_level", "missed_doses"):
            assert f"{column} = EXCLUDED.{column}" in query
            assert params[2 + V1_WRITABLE_COLUMNS.index(column)] is None

    @pytest.mark.asyncio
    async def test_partner_flag_bound_and_read_as_bool(self):
        def respond(query, params):
            if "INSERT INTO daily_checkins" in query:
                # Tables created before the column was BOOLEAN hold text.
                return [{"id": 1, "user_id": "u1", "date_submitted": TODAY, "partner_involved_today": "true"}]
            return []

        conn = FakeConnection(respond)
        service = CompatibilityService(FakePool(conn), use_v2=False)
        row = await service.create_daily_checkin("u1", {
            "mood_today": "hopeful", "confidence_today": 7, "partner_involved_today": "yes",
        })
        _, params = conn.executed[0]
        assert params[2 + V1_WRITABLE_COLUMNS.index("partner_involved_today")] is True
        assert row["partner_involved_today"] is True

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_conflict(self):
        def respond(query, params):
            raise psycopg.errors.UniqueViolation("duplicate key")

        service = CompatibilityService(FakePool(FakeConnection(respond)), use_v2=False)
        with pytest.raises(ConflictError, match="Check-in already exists"):
            await service.create_daily_checkin("u1", {"mood_today": "hopeful", "confidence_today": 7})

    @pytest.mark.asyncio
    async def test_missing_required_field(self, fake_pool, fake_conn):
        service = CompatibilityService(fake_pool, use_v2=False)
        with pytest.raises(ValidationError):
            await service.create_daily_checkin("u1", {"mood_today": "hopeful"})
        assert fake_conn.executed == []

    @pytest.mark.asyncio
    async def test_get_daily_checkins_filters_in_sql(self, fake_pool, fake_conn):
        service = CompatibilityService(fake_pool, use_v2=False)
        await service.get_daily_checkins("u1", "2025-03-01", "2025-03-10", limit=5)
        query, params = fake_conn.executed[0]
        assert "date_submitted >= %s" in query
        assert "date_submitted <= %s" in query
        assert "ORDER BY date_submitted DESC" in query
        assert params == ["u1", date(2025, 3, 1), date(2025, 3, 10), 5]


class TestV2:
    @pytest.mark.asyncio
    async def test_create_returns_v1_shape(self, fake_pool):
        service = CompatibilityService(fake_pool, use_v2=True, event_store=EventStore(fake_pool))
        row = await service.create_daily_checkin("u1", {
            "mood_today": "hopeful",
            "confidence_today": 7,
            "medication_taken": "yes",
            "date_submitted": "2025-03-10",
        })
        assert row["mood_today"] == "hopeful"
        assert row["confidence_today"] == 7
        assert row["medication_taken"] == "yes"
        assert row["date_submitted"] == "2025-03-10"
        assert fake_pool.conn.queries("daily_checkins") == []

    @pytest.mark.asyncio
    async def test_duplicate_day_returns_one_row_latest_wins(self):
        events = [
            _mood("u1", TODAY, "c-early", "defeated", T0),
            _mood("u1", TODAY, "c-late", "hopeful", T0 + timedelta(hours=2)),
            _mood("u1", TODAY - timedelta(days=1), "c-prev", "uncertain", T0 - timedelta(days=1)),
        ]
        pool = FakePool(FakeConnection(_events_responder(events)))
        service = CompatibilityService(pool, use_v2=True, event_store=EventStore(pool))

        rows = await service.get_daily_checkins("u1")
        assert [r["date_submitted"] for r in rows] == ["2025-03-10", "2025-03-09"]
        assert rows[0]["mood_today"] == "hopeful"

    @pytest.mark.asyncio
    async def test_limit_applied_after_reconstruction(self):
        events = [
            _mood("u1", TODAY, "c1", "defeated", T0),
            _mood("u1", TODAY, "c2", "hopeful", T0 + timedelta(minutes=5)),
            _mood("u1", TODAY - timedelta(days=1), "c3", "uncertain", T0 - timedelta(days=1)),
        ]
        pool = FakePool(FakeConnection(_events_responder(events)))
        service = CompatibilityService(pool, use_v2=True, event_store=EventStore(pool))
        rows = await service.get_daily_checkins("u1", limit=2)
        assert len(rows) == 2
        assert len({r["date_submitted"] for r in rows}) == 2


class TestAnalyticsParity:
    def _history(self):
        moods = ["defeated", "defeated", "defeated", "hopeful", "optimistic"]
        meds = ["yes", "no", "yes", "yes", "not tracked"]
        days = [TODAY - timedelta(days=4 - i) for i in range(5)]
        return list(zip(days, moods, meds))

    @pytest.mark.asyncio
    async def test_v1_and_v2_agree(self):
        history = self._history()

        v1_rows = [
            {"id": str(i), "user_id": "u1", "date_submitted": d, "mood_today": m,
             "medication_taken": med, "created_at": T0}
            for i, (d, m, med) in enumerate(history)
        ]
        v1_rows.reverse()  # SQL returns newest first

        def v1_respond(query, params):
            if "FROM daily_checkins" in query:
                return list(v1_rows)
            return []

        events = []
        for i, (d, m, med) in enumerate(history):
            created = datetime.combine(d, T0.timetz())
            events.append(_mood("u1", d, f"c{i}", m, created))
            if med != "not tracked":
                events.append(_med("u1", d, f"c{i}", "taken" if med == "yes" else "missed", created))

        v1 = CompatibilityService(FakePool(FakeConnection(v1_respond)), use_v2=False)
        v2_pool = FakePool(FakeConnection(_events_responder(events)))
        v2 = CompatibilityService(v2_pool, use_v2=True, event_store=EventStore(v2_pool))

        a1 = await v1.get_analytics("u1", "week", today=TODAY)
        a2 = await v2.get_analytics("u1", "week", today=TODAY)

        assert a1["mood_trend"] == a2["mood_trend"] == 3.33
        assert a1["adherence_rate"] == a2["adherence_rate"] == 75
        assert a1["total_checkins"] == a2["total_checkins"] == 5
        assert a1["days"] == a2["days"] == 7

    @pytest.mark.asyncio
    async def test_unknown_timeframe(self, fake_pool):
        service = CompatibilityService(fake_pool, use_v2=False)
        with pytest.raises(ValidationError):
            await service.get_analytics("u1", "decade")


def test_analytics_window_inclusive():
    days, start, end = analytics_window("week", TODAY)
    assert days == 7
    assert start == date(2025, 3, 3)
    assert end == TODAY
