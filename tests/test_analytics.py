"""Tests for mood scoring, mood trend and adherence rate."""

import pytest

from journal_store.analytics import (
    adherence_rate,
    mood_to_number,
    mood_trend,
    mood_trend_from_scores,
    summarize_checkins,
    timeframe_days,
)
from journal_store.errors import ValidationError


class TestMoodToNumber:
    def test_full_scale(self):
        assert mood_to_number("devastated") == 1
        assert mood_to_number("uncertain") == 6
        assert mood_to_number("empowered") == 10

    def test_case_and_whitespace_insensitive(self):
        assert mood_to_number("  Hopeful ") == 7

    def test_unknown_is_none_not_default(self):
        assert mood_to_number("very tough") is None
        assert mood_to_number(None) is None
        assert mood_to_number(5) is None


class TestMoodTrend:
    def test_recent_window_against_earlier(self):
        # [3,3,3,7,9]: recent mean 6.33, earlier mean 3
        assert mood_trend_from_scores([3, 3, 3, 7, 9]) == 3.33

    def test_labels_in_chronological_order(self):
        moods = ["defeated", "defeated", "defeated", "hopeful", "optimistic"]
        assert mood_trend(moods) == 3.33

    def test_fewer_than_two_scored(self):
        assert mood_trend([]) == 0.0
        assert mood_trend(["hopeful"]) == 0.0
        assert mood_trend(["hopeful", "very tough", None]) == 0.0

    def test_no_earlier_scores_uses_zero_baseline(self):
        assert mood_trend_from_scores([4, 6]) == 5.0

    def test_unscored_dropped_before_windowing(self):
        assert mood_trend(["defeated", "??", "hopeful", "hopeful", "hopeful"]) == 4.0


class TestAdherenceRate:
    def test_seventy_percent(self):
        values = ["yes"] * 7 + ["no"] * 3 + ["not tracked"] * 5
        assert adherence_rate(values) == 70

    def test_nothing_tracked(self):
        assert adherence_rate(["not tracked", None, ""]) is None
        assert adherence_rate([]) is None

    def test_rounds_half_up(self):
        assert adherence_rate(["yes"] * 5 + ["no"] * 3) == 63
        assert adherence_rate(["yes", "no"]) == 50


class TestTimeframes:
    @pytest.mark.parametrize("timeframe,days", [("week", 7), ("month", 30), ("quarter", 90)])
    def test_known(self, timeframe, days):
        assert timeframe_days(timeframe) == days

    def test_unknown_rejected(self):
        with pytest.raises(ValidationError, match="Unknown timeframe"):
            timeframe_days("fortnight")


def test_summarize_checkins_shape():
    rows = [
        {"mood_today": "defeated", "medication_taken": "yes"},
        {"mood_today": "hopeful", "medication_taken": "no"},
    ]
    summary = summarize_checkins("week", 7, rows)
    assert summary == {
        "timeframe": "week",
        "days": 7,
        "checkins": rows,
        "total_checkins": 2,
        "mood_trend": 5.0,
        "adherence_rate": 50,
    }
