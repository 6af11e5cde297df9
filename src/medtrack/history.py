"""Dose history lookups, adherence summaries and the daily dose view."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Literal

from .models import DoseEvent, Medication
from .schedule import is_active, to_local, todays_dose_instants

DoseStatus = Literal["taken", "missed", "overdue", "due", "upcoming"]


def find_event_at(
    history: Iterable[DoseEvent],
    medication_id: str,
    day: date,
    hour: int,
    minute: int,
) -> DoseEvent | None:
    """Return the event for ``medication_id`` at day/hour/minute, if any.

    Timestamps are compared by their local wall-clock components, not by
    elapsed time, so seconds and sub-seconds are ignored.
    """
    for event in history:
        if event.medication_id != medication_id:
            continue
        local = to_local(event.timestamp)
        if local.date() == day and local.hour == hour and local.minute == minute:
            return event
    return None


def find_matching_event(
    history: Iterable[DoseEvent],
    medication_id: str,
    when: datetime,
) -> DoseEvent | None:
    local = to_local(when)
    return find_event_at(history, medication_id, local.date(), local.hour, local.minute)


def todays_events(history: Iterable[DoseEvent], now: datetime) -> list[DoseEvent]:
    today = to_local(now).date()
    return [event for event in history if to_local(event.timestamp).date() == today]


def adherence_summary(
    events: Iterable[DoseEvent],
    medication_id: str | None = None,
) -> dict[str, Any]:
    """Count taken vs. missed/skipped events; percentage is None when empty."""
    selected = [
        event for event in events
        if medication_id is None or event.medication_id == medication_id
    ]
    if not selected:
        return {"recorded": 0, "taken": 0, "missed": 0, "adherence_pct": None}
    taken = sum(1 for event in selected if event.taken)
    return {
        "recorded": len(selected),
        "taken": taken,
        "missed": len(selected) - taken,
        "adherence_pct": round(100.0 * taken / len(selected), 1),
    }


@dataclass(frozen=True)
class ScheduledDose:
    """One label of one active medication, placed on today's timeline."""

    medication_id: str
    name: str
    dosage: str
    label: str
    scheduled_at: datetime
    status: DoseStatus
    event_id: str | None = None


def _dose_status(
    event: DoseEvent | None,
    scheduled_at: datetime,
    now: datetime,
    grace: timedelta,
) -> DoseStatus:
    if event is not None:
        return "taken" if event.taken else "missed"
    if scheduled_at + grace < now:
        return "overdue"
    if scheduled_at <= now:
        return "due"
    return "upcoming"


def build_daily_schedule(
    medications: Sequence[Medication],
    history: Sequence[DoseEvent],
    now: datetime,
    grace: timedelta = timedelta(minutes=2),
) -> list[ScheduledDose]:
    """Today's doses for every active medication, ordered by scheduled time."""
    local_now = to_local(now)
    doses: list[ScheduledDose] = []
    for medication in medications:
        if not is_active(medication, local_now):
            continue
        for label, scheduled_at in todays_dose_instants(medication, local_now):
            event = find_matching_event(history, medication.id, scheduled_at)
            doses.append(
                ScheduledDose(
                    medication_id=medication.id,
                    name=medication.name,
                    dosage=medication.dosage,
                    label=label,
                    scheduled_at=scheduled_at,
                    status=_dose_status(event, scheduled_at, local_now, grace),
                    event_id=event.id if event is not None else None,
                )
            )
    doses.sort(key=lambda dose: dose.scheduled_at)
    return doses
