"""Treatment windows and daily dose instants.

All comparisons use the device's local wall clock. Aware datetimes are
converted to the local zone and compared naive; naive datetimes are taken
as already local.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone

from .models import Medication
from .time_labels import parse_time_label

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    return datetime.now()


def to_local(value: datetime) -> datetime:
    """Wall-clock view of ``value`` in the local zone, without tzinfo."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def window_end(medication: Medication) -> datetime | None:
    """End of the treatment window, or None when the duration is indefinite.

    Days are added as fixed 24h spans on the absolute instant, so a window
    crossing a DST change ends an hour off the start's wall-clock time.
    """
    if medication.is_indefinite:
        return None
    start = medication.start_date
    if start.tzinfo is None:
        start = start.astimezone()
    end = start.astimezone(timezone.utc) + timedelta(days=medication.duration)
    return to_local(end)


def is_active(medication: Medication, now: datetime) -> bool:
    """Whether ``now`` is inside the medication's treatment window.

    Only the upper bound is checked. A medication whose start date is still
    in the future counts as active.
    """
    end = window_end(medication)
    if end is None:
        return True
    return not to_local(now) > end


def instant_on_day(day: date, hour: int, minute: int) -> datetime | None:
    """``day`` at hour:minute with zero seconds, or None if out of range."""
    try:
        return datetime(day.year, day.month, day.day, hour, minute, 0, 0)
    except ValueError:
        return None


def dose_instants_for_day(times: Iterable[str], day: date) -> list[tuple[str, datetime]]:
    """Expand time labels into ``(label, instant)`` pairs for one calendar day.

    Each label yields at most one instant. Unparseable labels are dropped.
    """
    instants: list[tuple[str, datetime]] = []
    for label in times:
        parsed = parse_time_label(label)
        if parsed is None:
            logger.debug("Skipping unparseable time label %r", label)
            continue
        instant = instant_on_day(day, *parsed)
        if instant is None:
            logger.debug("Skipping out-of-range time label %r", label)
            continue
        instants.append((label, instant))
    return instants


def todays_dose_instants(medication: Medication, now: datetime) -> list[tuple[str, datetime]]:
    return dose_instants_for_day(medication.times, to_local(now).date())


def next_occurrence(hour: int, minute: int, now: datetime) -> datetime | None:
    """Today's hour:minute, or tomorrow's when today's has already passed."""
    local = to_local(now)
    candidate = instant_on_day(local.date(), hour, minute)
    if candidate is None:
        return None
    if candidate < local:
        candidate += timedelta(days=1)
    return candidate
