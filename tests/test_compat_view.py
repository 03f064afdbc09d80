"""Tests for check-in decomposition and event-group reconstruction."""

from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from journal_store.analytics import MOOD_SCALE
from journal_store.compat_view import (
    day_start,
    decompose_checkin,
    filter_checkins,
    format_group,
    order_checkins,
    parse_checkin_date,
    reconstruct_checkins,
)
from journal_store.errors import ValidationError
from journal_store.models import validate_event_payload

DAY = date(2025, 3, 10)
BASE = datetime(2025, 3, 10, 8, 0, tzinfo=UTC)


def _event(event_type, data, *, user="u1", day=DAY, corr="c1", created=BASE, eid=None):
    return {
        "id": eid or f"{corr}-{event_type}",
        "user_id": user,
        "event_type": event_type,
        "event_subtype": None,
        "event_data": data,
        "occurred_at": day_start(day),
        "correlation_id": corr,
        "created_at": created,
    }


def _store(fields, *, corr="c1", created=BASE, user="u1"):
    """Decompose like the event store does and return the rows it would persist."""
    day = parse_checkin_date(fields.get("date_submitted"))
    return [
        _event(p.event_type, validate_event_payload(p.event_type, p.payload),
               user=user, day=day, corr=corr, created=created)
        for p in decompose_checkin(fields)
    ]


class TestDecompose:
    def test_full_checkin_order(self):
        planned = decompose_checkin({
            "mood_today": "hopeful",
            "confidence_today": 7,
            "medication_taken": "no",
            "missed_doses": 2,
            "side_effects": ["nausea"],
            "coping_strategies": ["walk"],
        })
        assert [p.event_type for p in planned] == ["mood", "medication", "symptom", "note"]
        assert planned[0].event_subtype == "daily_checkin"
        assert planned[1].payload == {"status": "missed", "missed_doses": 2}
        assert planned[2].payload == {"symptoms": ["nausea"], "related_to": "medication"}
        assert planned[3].payload == {"strategies": ["walk"], "context": "daily_checkin"}

    def test_untracked_medication_and_empty_lists_skipped(self):
        planned = decompose_checkin({
            "mood_today": "hopeful",
            "confidence_today": 7,
            "medication_taken": "not tracked",
            "side_effects": [],
        })
        assert [p.event_type for p in planned] == ["mood"]

    def test_mood_payload_field_names(self):
        mood = decompose_checkin({
            "mood_today": "hopeful",
            "confidence_today": 6,
            "user_note": "fine",
            "primary_concern_today": "cost",
            "anxiety_level": 3,
        })[0]
        assert mood.payload == {
            "mood": "hopeful",
            "confidence": 6,
            "note": "fine",
            "primary_concern": "cost",
            "anxiety_level": 3,
        }

    @pytest.mark.parametrize("missing", ["mood_today", "confidence_today"])
    def test_required_fields(self, missing):
        fields = {"mood_today": "hopeful", "confidence_today": 7}
        fields.pop(missing)
        with pytest.raises(ValidationError, match=missing):
            decompose_checkin(fields)


class TestRoundTrip:
    def test_core_fields_survive(self):
        fields = {
            "mood_today": "hopeful",
            "confidence_today": 7,
            "medication_taken": "yes",
            "user_note": "slept well",
            "date_submitted": "2025-03-10",
            "side_effects": ["headache"],
            "coping_strategies": ["journaling"],
        }
        rows = reconstruct_checkins(_store(fields))
        assert len(rows) == 1
        row = rows[0]
        for key in ("mood_today", "confidence_today", "medication_taken", "user_note", "date_submitted"):
            assert row[key] == fields[key]
        assert row["side_effects"] == ["headache"]
        assert row["coping_strategies"] == ["journaling"]
        assert row["id"] == "c1"

    def test_missed_medication(self):
        rows = reconstruct_checkins(_store({
            "mood_today": "defeated",
            "confidence_today": 3,
            "medication_taken": "no",
            "missed_doses": 2,
        }))
        assert rows[0]["medication_taken"] == "no"
        assert rows[0]["missed_doses"] == 2

    def test_no_medication_event_means_not_tracked(self):
        rows = reconstruct_checkins(_store({"mood_today": "hopeful", "confidence_today": 7}))
        assert rows[0]["medication_taken"] == "not tracked"

    def test_partner_flag_comes_back_as_bool(self):
        rows = reconstruct_checkins(_store({
            "mood_today": "hopeful", "confidence_today": 7, "partner_involved_today": "yes",
        }))
        assert rows[0]["partner_involved_today"] is True


class TestGrouping:
    def test_group_without_mood_yields_nothing(self):
        assert format_group("c1", [_event("medication", {"status": "taken"})]) is None
        assert reconstruct_checkins([_event("medication", {"status": "taken"})]) == []

    def test_events_without_correlation_form_own_groups(self):
        mood = _event("mood", {"mood": "hopeful", "confidence": 7}, corr=None, eid="m1")
        med = _event("medication", {"status": "taken"}, corr=None, eid="x1")
        rows = reconstruct_checkins([mood, med])
        assert len(rows) == 1
        assert rows[0]["medication_taken"] == "not tracked"
        assert rows[0]["id"] == "event:m1"

    def test_most_recent_group_wins(self):
        early = _store({"mood_today": "defeated", "confidence_today": 2}, corr="c-early", created=BASE)
        late = _store(
            {"mood_today": "hopeful", "confidence_today": 8},
            corr="c-late", created=BASE + timedelta(hours=4),
        )
        for events in (early + late, late + early):
            rows = reconstruct_checkins(events)
            assert len(rows) == 1
            assert rows[0]["mood_today"] == "hopeful"
            assert rows[0]["id"] == "c-late"

    def test_equal_timestamps_break_on_correlation_id(self):
        a = _store({"mood_today": "defeated", "confidence_today": 2}, corr="aaa")
        b = _store({"mood_today": "hopeful", "confidence_today": 8}, corr="bbb")
        assert reconstruct_checkins(b + a)[0]["id"] == "bbb"
        assert reconstruct_checkins(a + b)[0]["id"] == "bbb"

    def test_created_at_is_latest_in_group(self):
        events = [
            _event("mood", {"mood": "hopeful"}, created=BASE),
            _event("medication", {"status": "taken"}, created=BASE + timedelta(seconds=3)),
        ]
        assert format_group("c1", events)["created_at"] == BASE + timedelta(seconds=3)

    def test_separate_users_same_day_kept(self):
        events = _store({"mood_today": "hopeful", "confidence_today": 7}, user="u1", corr="c1")
        events += _store({"mood_today": "hopeful", "confidence_today": 7}, user="u2", corr="c2")
        assert {r["user_id"] for r in reconstruct_checkins(events)} == {"u1", "u2"}


_MOODS = sorted(MOOD_SCALE)


@st.composite
def checkin_groups(draw):
    specs = draw(st.lists(
        st.tuples(
            st.sampled_from(["u1", "u2"]),
            st.integers(min_value=0, max_value=3),
            st.integers(min_value=0, max_value=500),
            st.sampled_from(_MOODS),
        ),
        max_size=12,
    ))
    events = []
    for i, (user, offset, seconds, mood) in enumerate(specs):
        events.extend(_store(
            {
                "mood_today": mood,
                "confidence_today": 5,
                "medication_taken": "yes" if i % 2 else "no",
                "date_submitted": (DAY + timedelta(days=offset)).isoformat(),
            },
            user=user,
            corr=f"c{i:03d}",
            created=BASE + timedelta(seconds=seconds),
        ))
    return specs, events


class TestReconstructionProperties:
    @given(checkin_groups())
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_at_most_one_row_per_user_day(self, generated):
        specs, events = generated
        rows = reconstruct_checkins(events)
        keys = [(r["user_id"], r["date_submitted"]) for r in rows]
        assert len(keys) == len(set(keys))
        assert len(rows) == len({(user, offset) for user, offset, _, _ in specs})

    @given(checkin_groups(), st.data())
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_independent_of_row_order(self, generated, data):
        _, events = generated
        shuffled = data.draw(st.permutations(events))
        assert reconstruct_checkins(shuffled) == reconstruct_checkins(events)


class TestOrderingAndFilter:
    def test_order_date_then_created_desc(self):
        rows = [
            {"id": "a", "date_submitted": "2025-03-09", "created_at": BASE},
            {"id": "b", "date_submitted": "2025-03-10", "created_at": BASE},
            {"id": "c", "date_submitted": "2025-03-10", "created_at": BASE + timedelta(hours=1)},
        ]
        assert [r["id"] for r in order_checkins(rows)] == ["c", "b", "a"]

    def test_filter_inclusive_bounds_and_limit(self):
        rows = [{"date_submitted": f"2025-03-{d:02d}"} for d in (12, 11, 10, 9)]
        kept = filter_checkins(rows, start_date=date(2025, 3, 10), end_date=date(2025, 3, 11))
        assert [r["date_submitted"] for r in kept] == ["2025-03-11", "2025-03-10"]
        assert len(filter_checkins(rows, limit=2)) == 2


class TestParseDate:
    def test_variants(self):
        assert parse_checkin_date("2025-03-10") == DAY
        assert parse_checkin_date("2025-03-10T23:00:00Z") == DAY
        assert parse_checkin_date(datetime(2025, 3, 10, 5, tzinfo=UTC)) == DAY
        assert parse_checkin_date(DAY) == DAY
        assert parse_checkin_date(None, default=DAY) == DAY

    def test_offset_string_matches_datetime(self):
        aware = datetime(2025, 10, 18, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert parse_checkin_date("2025-10-18T23:30:00-05:00") == date(2025, 10, 19)
        assert parse_checkin_date(aware) == parse_checkin_date(aware.isoformat())

    @pytest.mark.parametrize("value", ["10/03/2025", "2025-03-10xyz", "2025-03-10 garbage"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError, match="YYYY-MM-DD"):
            parse_checkin_date(value)
