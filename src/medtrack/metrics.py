"""In-memory reconciliation metrics.

Asyncio is single-threaded, so plain dicts need no locking.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "reconciliation_runs": 0,
    "reconciliation_failures": 0,
    "missed_doses_recorded": 0,
    "doses_recorded": 0,
    "doses_taken": 0,
    "triggers": {},
}

_last_reconciliation: dict | None = None


def record_trigger_invocation(
    trigger: str,
    duration_ms: float,
    success: bool,
    missed_recorded: int = 0,
) -> None:
    """Record one reconciliation trigger (startup, poll, notify payload) with timing."""
    global _last_reconciliation
    _last_reconciliation = {
        "trigger": trigger,
        "finished_at": time.time(),
        "success": success,
        "missed_recorded": missed_recorded,
        "duration_ms": round(duration_ms, 1),
    }
    t = _metrics["triggers"].setdefault(trigger, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    t["invocations"] += 1
    t["total_duration_ms"] += duration_ms
    if success:
        t["successes"] += 1
    else:
        t["failures"] += 1


def record_reconciliation_run(missed_recorded: int, success: bool) -> None:
    _metrics["reconciliation_runs"] += 1
    _metrics["missed_doses_recorded"] += missed_recorded
    if not success:
        _metrics["reconciliation_failures"] += 1


def record_dose_recorded(taken: bool) -> None:
    _metrics["doses_recorded"] += 1
    if taken:
        _metrics["doses_taken"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "reconciliation_runs": _metrics["reconciliation_runs"],
        "reconciliation_failures": _metrics["reconciliation_failures"],
        "missed_doses_recorded": _metrics["missed_doses_recorded"],
        "doses_recorded": _metrics["doses_recorded"],
        "doses_taken": _metrics["doses_taken"],
        "triggers": {
            name: dict(stats)
            for name, stats in _metrics["triggers"].items()
        },
        "last_reconciliation": dict(_last_reconciliation) if _last_reconciliation else None,
    }
