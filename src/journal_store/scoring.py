"""Assessment scoring functions keyed by assessment name."""

from collections.abc import Callable
from typing import Any

ScoringFn = Callable[[dict[str, Any]], dict[str, Any]]

_scorers: dict[str, ScoringFn] = {}


def scorer(name: str) -> Callable[[ScoringFn], ScoringFn]:
    def decorator(fn: ScoringFn) -> ScoringFn:
        if name in _scorers:
            raise ValueError(f"Duplicate scorer for assessment={name!r}")
        _scorers[name] = fn
        return fn

    return decorator


def _answer(responses: dict[str, Any], key: str) -> int:
    value = responses.get(key)
    if isinstance(value, bool) or value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def phq4_severity(total: int) -> str:
    if total >= 9:
        return "severe"
    if total >= 6:
        return "moderate"
    if total >= 3:
        return "mild"
    return "minimal"


@scorer("PHQ-4")
def score_phq4(responses: dict[str, Any]) -> dict[str, Any]:
    anxiety = _answer(responses, "q1") + _answer(responses, "q2")
    depression = _answer(responses, "q3") + _answer(responses, "q4")
    total = anxiety + depression
    return {
        "total": total,
        "anxiety": anxiety,
        "depression": depression,
        "severity": phq4_severity(total),
    }


def score_assessment(name: str, responses: dict[str, Any]) -> dict[str, Any]:
    """Score responses for a defined assessment. Names without a scorer score to {}."""
    fn = _scorers.get(name)
    if fn is None:
        return {}
    return fn(responses)


def registered_assessments() -> list[str]:
    return list(_scorers.keys())
