"""Summary statistics shared by both schema paths.

V1 and V2 feed these functions independently (flat rows vs. reconstructed
event groups); the numbers must come out identical for the same history.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any

from .errors import ValidationError
from .schema import MEDICATION_MISSED, MEDICATION_TAKEN

TIMEFRAME_DAYS: dict[str, int] = {"week": 7, "month": 30, "quarter": 90}

MOOD_SCALE: dict[str, int] = {
    "devastated": 1,
    "heartbroken": 2,
    "defeated": 3,
    "struggling": 4,
    "discouraged": 5,
    "uncertain": 6,
    "hopeful": 7,
    "confident": 8,
    "optimistic": 9,
    "empowered": 10,
}

_RECENT_WINDOW = 3


def timeframe_days(timeframe: str) -> int:
    try:
        return TIMEFRAME_DAYS[timeframe]
    except KeyError:
        raise ValidationError(
            f"Unknown timeframe {timeframe!r} (expected one of {sorted(TIMEFRAME_DAYS)})"
        ) from None


def mood_to_number(mood: Any) -> int | None:
    """Ordinal score for a mood label; unknown labels score None, not a default."""
    if not isinstance(mood, str):
        return None
    return MOOD_SCALE.get(mood.strip().lower())


def _mean(values: list[int]) -> float:
    return sum(values) / len(values)


def mood_trend_from_scores(scores: list[int]) -> float:
    if len(scores) < 2:
        return 0.0
    recent = scores[-_RECENT_WINDOW:]
    earlier = scores[:-_RECENT_WINDOW]
    baseline = _mean(earlier) if earlier else 0.0
    return round(_mean(recent) - baseline, 2)


def mood_trend(moods: Iterable[Any]) -> float:
    """mean(last min(3, N) scored moods) - mean(remaining scored moods).

    ``moods`` must be in chronological order. Unscored labels are dropped
    before windowing. Fewer than two scored moods give 0.0.
    """
    scores = [s for s in (mood_to_number(m) for m in moods) if s is not None]
    return mood_trend_from_scores(scores)


def adherence_rate(medication_values: Iterable[Any]) -> int | None:
    """Percentage of tracked entries marked taken; None when nothing was tracked."""
    taken = 0
    missed = 0
    for value in medication_values:
        if value == MEDICATION_TAKEN:
            taken += 1
        elif value == MEDICATION_MISSED:
            missed += 1
    tracked = taken + missed
    if tracked == 0:
        return None
    # half-up, so 62.5 reports as 63
    return math.floor(taken / tracked * 100 + 0.5)


def summarize_checkins(
    timeframe: str, days: int, rows: list[dict[str, Any]]
) -> dict[str, Any]:
    """Build the analytics payload from V1-shaped rows in chronological order."""
    return {
        "timeframe": timeframe,
        "days": days,
        "checkins": rows,
        "total_checkins": len(rows),
        "mood_trend": mood_trend(r.get("mood_today") for r in rows),
        "adherence_rate": adherence_rate(r.get("medication_taken") for r in rows),
    }
