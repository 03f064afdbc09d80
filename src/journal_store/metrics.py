"""In-memory store metrics.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "events_written": {},
    "checkins_written": {},
    "side_effects": {},
}


def record_event_written(event_type: str) -> None:
    bucket = _metrics["events_written"]
    bucket[event_type] = bucket.get(event_type, 0) + 1


def record_checkin_written(backend: str) -> None:
    bucket = _metrics["checkins_written"]
    bucket[backend] = bucket.get(backend, 0) + 1


def record_side_effect(handler_name: str, duration_ms: float, success: bool) -> None:
    """Record a single side-effect handler invocation with timing."""
    h = _metrics["side_effects"].setdefault(handler_name, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    h["invocations"] += 1
    h["total_duration_ms"] += duration_ms
    if success:
        h["successes"] += 1
    else:
        h["failures"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "events_written": dict(_metrics["events_written"]),
        "checkins_written": dict(_metrics["checkins_written"]),
        "side_effects": {
            name: dict(stats)
            for name, stats in _metrics["side_effects"].items()
        },
    }


def reset_metrics() -> None:
    for bucket in _metrics.values():
        bucket.clear()
