"""Dose reconciliation: explicit taken/skipped recording and missed-dose inference.

A pass reads every medication and the full dose history, and for each active
medication label whose grace period has elapsed today without a recorded
event, writes a ``taken=False`` event at the scheduled instant. Matching is by
(medication, local day, hour, minute), so repeated passes on the same day do
not insert duplicates.

History and supply are written separately with no transaction around them.
Two overlapping passes can both see "no event" and insert one each.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .history import (
    ScheduledDose,
    adherence_summary,
    build_daily_schedule,
    find_event_at,
    find_matching_event,
    todays_events,
)
from .metrics import record_dose_recorded, record_reconciliation_run
from .models import DoseEvent
from .schedule import instant_on_day, is_active, local_now, to_local
from .store import DoseHistoryRepository, MedicationRepository, RecordStore
from .supply import decrement_supply
from .time_labels import parse_time_label

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = timedelta(minutes=2)


@dataclass
class ReconciliationResult:
    """Outcome of one missed-dose pass."""

    medications_checked: int = 0
    inactive_skipped: int = 0
    labels_checked: int = 0
    unparseable_labels: int = 0
    missed_recorded: list[DoseEvent] = field(default_factory=list)
    failed: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "medications_checked": self.medications_checked,
            "inactive_skipped": self.inactive_skipped,
            "labels_checked": self.labels_checked,
            "unparseable_labels": self.unparseable_labels,
            "missed_recorded": len(self.missed_recorded),
            "failed": self.failed,
        }


class DoseReconciler:
    def __init__(
        self,
        store: RecordStore,
        *,
        grace_period: timedelta = DEFAULT_GRACE_PERIOD,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.medications = MedicationRepository(store)
        self.history = DoseHistoryRepository(store)
        self.grace_period = grace_period
        self.clock = clock

    def _now(self) -> datetime:
        return to_local(self.clock())

    async def record_dose(
        self,
        medication_id: str,
        taken: bool,
        timestamp: datetime,
    ) -> DoseEvent:
        """Record a taken/skipped dose for the scheduled instant ``timestamp``.

        An existing event at the same local day/hour/minute is updated in
        place; otherwise a new one is inserted. A taken dose then decrements
        the medication's supply (never below zero). Failures propagate.
        """
        try:
            history = await self.history.list_all()
            event = find_matching_event(history, medication_id, timestamp)
            if event is not None:
                event.taken = taken
            else:
                event = DoseEvent(medication_id=medication_id, timestamp=timestamp, taken=taken)
            await self.history.upsert(event)
            record_dose_recorded(taken)

            if taken:
                await self._decrement_supply(medication_id)
        except Exception:
            logger.exception("Error recording dose (medication_id=%s)", medication_id)
            raise

        logger.info(
            "Recorded dose medication_id=%s at=%s taken=%s",
            medication_id,
            event.timestamp.isoformat(),
            taken,
        )
        return event

    async def _decrement_supply(self, medication_id: str) -> None:
        medication = await self.medications.get(medication_id)
        if medication is None:
            logger.debug("No medication %s for supply decrement", medication_id)
            return
        updated = decrement_supply(medication)
        if updated is None:
            return
        await self.medications.update(updated)

    async def check_and_record_missed_doses(self) -> ReconciliationResult:
        """Mark each of today's doses past grace with no recorded event as missed.

        Errors are logged and end the pass; events already written stay, and
        the next pass picks up where this one stopped.
        """
        result = ReconciliationResult()
        now = self._now()
        today = now.date()

        try:
            medications = await self.medications.list_all()
            history = await self.history.list_all()

            for medication in medications:
                if not is_active(medication, now):
                    result.inactive_skipped += 1
                    continue
                result.medications_checked += 1

                for label in medication.times:
                    parsed = parse_time_label(label)
                    scheduled = instant_on_day(today, *parsed) if parsed is not None else None
                    if scheduled is None:
                        result.unparseable_labels += 1
                        continue
                    result.labels_checked += 1

                    if not scheduled + self.grace_period < now:
                        continue

                    hour, minute = parsed
                    if find_event_at(history, medication.id, today, hour, minute) is not None:
                        continue

                    event = await self.record_dose(medication.id, False, scheduled)
                    history.append(event)
                    result.missed_recorded.append(event)
        except Exception:
            result.failed = True
            logger.exception("Error checking missed doses")

        record_reconciliation_run(len(result.missed_recorded), not result.failed)
        if result.missed_recorded:
            logger.info(
                "Missed-dose pass recorded %d missed dose(s) across %d active medication(s)",
                len(result.missed_recorded),
                result.medications_checked,
            )
        return result

    async def todays_doses(self) -> list[DoseEvent]:
        try:
            history = await self.history.list_all()
        except Exception:
            logger.exception("Error getting today's doses")
            return []
        return todays_events(history, self._now())

    async def daily_schedule(self) -> list[ScheduledDose]:
        try:
            medications = await self.medications.list_all()
            history = await self.history.list_all()
        except Exception:
            logger.exception("Error building daily schedule")
            return []
        return build_daily_schedule(medications, history, self._now(), self.grace_period)

    async def adherence(self, medication_id: str | None = None) -> dict[str, Any]:
        try:
            history = await self.history.list_all()
        except Exception:
            logger.exception("Error reading dose history for adherence")
            history = []
        return adherence_summary(history, medication_id)
