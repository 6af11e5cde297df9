"""Medication lifecycle: add, edit, delete, refill and reset.

Store writes come first and their failures propagate. Reminder changes
follow a successful write and never fail the operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from .models import Medication
from .notifications import ReminderPlanner
from .schedule import local_now
from .store import (
    DOSE_HISTORY_KEY,
    MEDICATIONS_KEY,
    MedicationRepository,
    RecordStore,
)
from .supply import refill_supply

logger = logging.getLogger(__name__)


class MedicationService:
    def __init__(
        self,
        store: RecordStore,
        reminders: ReminderPlanner | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.store = store
        self.medications = MedicationRepository(store)
        self.reminders = reminders
        self.clock = clock

    async def list_medications(self) -> list[Medication]:
        try:
            return await self.medications.list_all()
        except Exception:
            logger.exception("Error getting medications")
            return []

    async def get_medication(self, medication_id: str) -> Medication | None:
        try:
            return await self.medications.get(medication_id)
        except Exception:
            logger.exception("Error getting medication %s", medication_id)
            return None

    async def add_medication(self, medication: Medication) -> Medication:
        try:
            await self.medications.upsert(medication)
        except Exception:
            logger.exception("Error adding medication %s", medication.id)
            raise
        logger.info("Added medication %s (%d time label(s))", medication.id, len(medication.times))
        if self.reminders is not None:
            await self.reminders.schedule_medication_reminder(medication)
            await self.reminders.schedule_refill_reminder(medication)
        return medication

    async def update_medication(self, medication: Medication) -> bool:
        """Replace a medication wholesale. Unknown ids are ignored."""
        try:
            updated = await self.medications.update(medication)
        except Exception:
            logger.exception("Error updating medication %s", medication.id)
            raise
        if not updated:
            logger.info("Update ignored; no medication %s", medication.id)
            return False
        if self.reminders is not None:
            await self.reminders.update_medication_reminders(medication)
        return True

    async def delete_medication(self, medication_id: str) -> bool:
        """Remove a medication. Its dose history is left in place."""
        try:
            deleted = await self.medications.delete(medication_id)
        except Exception:
            logger.exception("Error deleting medication %s", medication_id)
            raise
        if self.reminders is not None:
            await self.reminders.cancel_medication_reminders(medication_id)
        return deleted

    async def record_refill(self, medication_id: str, amount: int | None = None) -> Medication | None:
        try:
            medication = await self.medications.get(medication_id)
            if medication is None:
                return None
            refilled = refill_supply(medication, self.clock(), amount)
            await self.medications.update(refilled)
        except Exception:
            logger.exception("Error recording refill for medication %s", medication_id)
            raise
        logger.info(
            "Refilled medication %s: supply %d -> %d",
            medication_id,
            medication.current_supply,
            refilled.current_supply,
        )
        return refilled

    async def clear_all_data(self) -> None:
        try:
            await self.store.remove(MEDICATIONS_KEY, DOSE_HISTORY_KEY)
        except Exception:
            logger.exception("Error clearing data")
            raise
