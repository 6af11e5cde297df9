"""Tests for dose recording and missed-dose reconciliation."""

from datetime import datetime, timedelta

import pytest

from medtrack.models import DoseEvent, Medication
from medtrack.reconciliation import DoseReconciler
from medtrack.store import (
    DOSE_HISTORY_KEY,
    MEDICATIONS_KEY,
    DoseHistoryRepository,
    InMemoryRecordStore,
    MedicationRepository,
)

TODAY_8AM = datetime(2026, 3, 10, 8, 0)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _FailingStore(InMemoryRecordStore):
    def __init__(self, fail_reads: bool = False, fail_writes: bool = False) -> None:
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    async def read_all(self, collection):
        if self.fail_reads:
            raise RuntimeError("store unavailable")
        return await super().read_all(collection)

    async def write_all(self, collection, records):
        if self.fail_writes:
            raise RuntimeError("store unavailable")
        await super().write_all(collection, records)


def _med(med_id: str = "m1", **overrides) -> Medication:
    data = {
        "id": med_id,
        "name": "Metformin",
        "dosage": "500 mg",
        "times": ["08:00"],
        "start_date": TODAY_8AM - timedelta(days=1),
        "duration": -1,
        "current_supply": 5,
        "total_supply": 30,
    }
    data.update(overrides)
    return Medication(**data)


async def _setup(now: datetime, *meds: Medication, store=None):
    store = store or InMemoryRecordStore()
    await MedicationRepository(store).save_all(meds)
    reconciler = DoseReconciler(store, clock=_Clock(now))
    return store, reconciler


async def _history(store) -> list[DoseEvent]:
    return await DoseHistoryRepository(store).list_all()


async def _supply(store, med_id: str = "m1") -> int:
    med = await MedicationRepository(store).get(med_id)
    return med.current_supply


class TestRecordDose:
    async def test_taken_decrements_supply_and_records_event(self):
        store, reconciler = await _setup(TODAY_8AM, _med(current_supply=5))

        event = await reconciler.record_dose("m1", True, TODAY_8AM)

        assert await _supply(store) == 4
        [stored] = await _history(store)
        assert stored.id == event.id
        assert stored.taken is True
        assert (stored.timestamp.date(), stored.timestamp.hour, stored.timestamp.minute) == (
            TODAY_8AM.date(),
            8,
            0,
        )

    async def test_taken_with_empty_supply_stays_at_zero(self):
        store, reconciler = await _setup(TODAY_8AM, _med(current_supply=0))
        await reconciler.record_dose("m1", True, TODAY_8AM)
        assert await _supply(store) == 0

    async def test_skipped_does_not_touch_supply(self):
        store, reconciler = await _setup(TODAY_8AM, _med(current_supply=5))
        await reconciler.record_dose("m1", False, TODAY_8AM)
        assert await _supply(store) == 5

    async def test_reconfirming_updates_in_place_with_one_decrement(self):
        store, reconciler = await _setup(TODAY_8AM, _med(current_supply=5))

        missed = await reconciler.record_dose("m1", False, TODAY_8AM)
        confirmed = await reconciler.record_dose("m1", True, TODAY_8AM + timedelta(seconds=30))

        history = await _history(store)
        assert len(history) == 1
        assert confirmed.id == missed.id
        assert history[0].taken is True
        assert history[0].timestamp == TODAY_8AM
        assert await _supply(store) == 4

    async def test_different_minutes_are_separate_events(self):
        store, reconciler = await _setup(TODAY_8AM, _med())
        await reconciler.record_dose("m1", True, TODAY_8AM)
        await reconciler.record_dose("m1", True, TODAY_8AM + timedelta(minutes=1))
        assert len(await _history(store)) == 2

    async def test_unknown_medication_records_event_without_supply_change(self):
        store, reconciler = await _setup(TODAY_8AM, _med())
        await reconciler.record_dose("deleted-med", True, TODAY_8AM)
        assert [e.medication_id for e in await _history(store)] == ["deleted-med"]
        assert await _supply(store) == 5

    async def test_store_failure_propagates(self):
        reconciler = DoseReconciler(_FailingStore(fail_writes=True), clock=_Clock(TODAY_8AM))
        with pytest.raises(RuntimeError, match="store unavailable"):
            await reconciler.record_dose("m1", True, TODAY_8AM)

    async def test_malformed_records_survive_recording(self):
        store, reconciler = await _setup(TODAY_8AM, _med(current_supply=5))
        await store.write_all(
            MEDICATIONS_KEY,
            [*await store.read_all(MEDICATIONS_KEY), {"id": "m2", "name": "", "startDate": ""}],
        )
        await store.write_all(DOSE_HISTORY_KEY, [{"id": "old", "timestamp": None}])

        await reconciler.record_dose("m1", True, TODAY_8AM)

        assert [r["id"] for r in await store.read_all(MEDICATIONS_KEY)] == ["m1", "m2"]
        assert [r["id"] for r in await store.read_all(DOSE_HISTORY_KEY)][0] == "old"
        assert len(await store.read_all(DOSE_HISTORY_KEY)) == 2
        assert await _supply(store) == 4


class TestCheckAndRecordMissedDoses:
    async def test_records_missed_dose_after_grace(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 8, 3), _med())

        result = await reconciler.check_and_record_missed_doses()

        [event] = await _history(store)
        assert event.taken is False
        assert event.timestamp == TODAY_8AM
        assert len(result.missed_recorded) == 1
        assert result.failed is False
        assert await _supply(store) == 5

    async def test_nothing_recorded_within_grace(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 8, 1), _med())
        result = await reconciler.check_and_record_missed_doses()
        assert await _history(store) == []
        assert result.missed_recorded == []
        assert result.labels_checked == 1

    async def test_grace_boundary_is_strict(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 8, 2), _med())
        await reconciler.check_and_record_missed_doses()
        assert await _history(store) == []

    async def test_second_pass_is_idempotent(self):
        med = _med(times=["08:00", "09:30 AM", "01:00 PM"])
        store, reconciler = await _setup(datetime(2026, 3, 10, 14, 0), med)

        first = await reconciler.check_and_record_missed_doses()
        second = await reconciler.check_and_record_missed_doses()

        history = await _history(store)
        assert len(history) == 3
        assert sorted((e.timestamp.hour, e.timestamp.minute) for e in history) == [
            (8, 0),
            (9, 30),
            (13, 0),
        ]
        assert len(first.missed_recorded) == 3
        assert second.missed_recorded == []

    async def test_existing_taken_event_is_left_alone(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 9, 0), _med())
        await reconciler.record_dose("m1", True, TODAY_8AM)

        await reconciler.check_and_record_missed_doses()

        [event] = await _history(store)
        assert event.taken is True

    async def test_finished_course_gets_no_missed_events(self):
        med = _med(start_date=datetime(2026, 2, 28, 8, 0), duration=7)
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), med)

        result = await reconciler.check_and_record_missed_doses()

        assert await _history(store) == []
        assert result.inactive_skipped == 1
        assert result.medications_checked == 0

    async def test_indefinite_course_from_long_ago_is_reconciled(self):
        med = _med(start_date=datetime(2025, 2, 3, 8, 0), duration=-1)
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), med)
        await reconciler.check_and_record_missed_doses()
        assert len(await _history(store)) == 1

    async def test_future_start_date_still_accumulates_missed_doses(self):
        med = _med(start_date=datetime(2026, 3, 20), duration=7)
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), med)
        await reconciler.check_and_record_missed_doses()
        assert len(await _history(store)) == 1

    async def test_unparseable_labels_are_skipped(self):
        med = _med(times=["soon", "25:00", "08:00"])
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), med)

        result = await reconciler.check_and_record_missed_doses()

        assert result.unparseable_labels == 2
        assert result.labels_checked == 1
        assert len(await _history(store)) == 1

    async def test_orphaned_events_do_not_block_other_medications(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), _med("m1"))
        await reconciler.record_dose("gone", False, TODAY_8AM)

        await reconciler.check_and_record_missed_doses()

        history = await _history(store)
        assert sorted(e.medication_id for e in history) == ["gone", "m1"]

    async def test_only_todays_instants_are_considered(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), _med())
        await reconciler.record_dose("m1", True, TODAY_8AM - timedelta(days=1))

        await reconciler.check_and_record_missed_doses()

        history = await _history(store)
        assert len(history) == 2
        assert any(e.timestamp == TODAY_8AM and e.taken is False for e in history)

    async def test_read_failure_is_absorbed(self):
        store = _FailingStore(fail_reads=True)
        reconciler = DoseReconciler(store, clock=_Clock(datetime(2026, 3, 10, 12, 0)))

        result = await reconciler.check_and_record_missed_doses()

        assert result.failed is True
        assert result.missed_recorded == []

    async def test_custom_grace_period(self):
        store = InMemoryRecordStore()
        await MedicationRepository(store).save_all([_med()])
        reconciler = DoseReconciler(
            store,
            grace_period=timedelta(minutes=30),
            clock=_Clock(datetime(2026, 3, 10, 8, 20)),
        )
        await reconciler.check_and_record_missed_doses()
        assert await _history(store) == []


class TestReadViews:
    async def test_todays_doses(self):
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), _med())
        await reconciler.record_dose("m1", True, TODAY_8AM)
        await reconciler.record_dose("m1", True, TODAY_8AM - timedelta(days=1))

        today = await reconciler.todays_doses()

        assert [e.timestamp for e in today] == [TODAY_8AM]

    async def test_daily_schedule_and_adherence(self):
        med = _med(times=["08:00", "06:00 PM"])
        store, reconciler = await _setup(datetime(2026, 3, 10, 12, 0), med)
        await reconciler.record_dose("m1", True, TODAY_8AM)

        schedule = await reconciler.daily_schedule()
        adherence = await reconciler.adherence("m1")

        assert [d.status for d in schedule] == ["taken", "upcoming"]
        assert adherence["adherence_pct"] == 100.0

    async def test_read_views_degrade_to_empty(self):
        reconciler = DoseReconciler(_FailingStore(fail_reads=True))
        assert await reconciler.todays_doses() == []
        assert await reconciler.daily_schedule() == []
        assert (await reconciler.adherence())["recorded"] == 0
