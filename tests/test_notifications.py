"""Tests for reminder planning and the Postgres-backed notification scheduler."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from medtrack.models import Medication
from medtrack.notifications import (
    NotificationConfig,
    NotificationRequest,
    PostgresNotificationScheduler,
    ReminderPlanner,
    ScheduledNotification,
)


class _RecordingScheduler:
    """In-test scheduler that keeps requests in a dict."""

    def __init__(self) -> None:
        self.scheduled: dict[str, NotificationRequest] = {}
        self._next = 0

    async def schedule_daily(self, request: NotificationRequest) -> str:
        self._next += 1
        identifier = f"n{self._next}"
        self.scheduled[identifier] = request
        return identifier

    async def list_scheduled(self) -> list[ScheduledNotification]:
        return [ScheduledNotification(i, r) for i, r in self.scheduled.items()]

    async def cancel(self, identifier: str) -> None:
        self.scheduled.pop(identifier, None)


def _med(**overrides) -> Medication:
    data = {
        "id": "m1",
        "name": "Amoxicillin",
        "dosage": "250 mg",
        "times": ["08:00", "08:00 PM"],
        "start_date": datetime(2026, 3, 1),
        "reminder_enabled": True,
        "refill_reminder": True,
    }
    data.update(overrides)
    return Medication(**data)


@pytest.fixture
def scheduler():
    return _RecordingScheduler()


@pytest.fixture
def planner(scheduler):
    return ReminderPlanner(scheduler, NotificationConfig())


class TestReminderPlanner:
    async def test_one_daily_request_per_label(self, planner, scheduler):
        ids = await planner.schedule_medication_reminder(_med())

        assert len(ids) == 2
        requests = [scheduler.scheduled[i] for i in ids]
        assert [(r.hour, r.minute) for r in requests] == [(8, 0), (20, 0)]
        assert all(r.repeats for r in requests)
        assert requests[0].title == "Medication Reminder"
        assert requests[0].body == "Time to take Amoxicillin (250 mg)"
        assert requests[0].data == {"medicationId": "m1"}

    async def test_disabled_reminders_schedule_nothing(self, planner, scheduler):
        assert await planner.schedule_medication_reminder(_med(reminder_enabled=False)) == []
        assert await planner.schedule_refill_reminder(_med(refill_reminder=False)) is None
        assert scheduler.scheduled == {}

    async def test_unparseable_and_out_of_range_labels_are_skipped(self, planner, scheduler):
        ids = await planner.schedule_medication_reminder(_med(times=["later", "24:30", "07:15"]))
        assert [(scheduler.scheduled[i].hour, scheduler.scheduled[i].minute) for i in ids] == [(7, 15)]

    async def test_refill_check_uses_configured_time(self, scheduler):
        planner = ReminderPlanner(scheduler, NotificationConfig(refill_check_hour=18, refill_check_minute=30))
        identifier = await planner.schedule_refill_reminder(_med())
        request = scheduler.scheduled[identifier]
        assert (request.kind, request.hour, request.minute) == ("refill-check", 18, 30)
        assert request.data == {"medicationId": "m1", "type": "refill-check"}

    async def test_cancel_only_touches_tagged_requests(self, planner, scheduler):
        await planner.schedule_medication_reminder(_med(id="m1"))
        await planner.schedule_medication_reminder(_med(id="m2"))

        cancelled = await planner.cancel_medication_reminders("m1")

        assert cancelled == 2
        assert {r.medication_id for r in scheduler.scheduled.values()} == {"m2"}

    async def test_update_replaces_existing_requests(self, planner, scheduler):
        await planner.update_medication_reminders(_med())
        await planner.update_medication_reminders(_med(times=["09:00"]))

        kinds = sorted((r.kind, r.hour) for r in scheduler.scheduled.values())
        assert kinds == [("dose", 9), ("refill-check", 9)]

    async def test_scheduler_failures_are_absorbed(self):
        failing = AsyncMock()
        failing.schedule_daily = AsyncMock(side_effect=RuntimeError("no permission"))
        failing.list_scheduled = AsyncMock(side_effect=RuntimeError("no permission"))
        planner = ReminderPlanner(failing, NotificationConfig())

        assert await planner.schedule_medication_reminder(_med()) == []
        assert await planner.schedule_refill_reminder(_med()) is None
        assert await planner.cancel_medication_reminders("m1") == 0


def test_notification_config_from_env(monkeypatch):
    monkeypatch.setenv("MEDTRACK_REFILL_CHECK_HOUR", "30")
    monkeypatch.setenv("MEDTRACK_REFILL_CHECK_MINUTE", "abc")
    config = NotificationConfig.from_env()
    assert config.refill_check_hour == 23
    assert config.refill_check_minute == 0


def test_notification_config_presentation():
    presentation = NotificationConfig().presentation()
    assert presentation["should_show_alert"] is True
    assert presentation["channel"]["vibration_pattern"] == [0, 250, 250, 250]


class _MockContext:
    def __init__(self, value):
        self._value = value

    async def __aenter__(self):
        return self._value

    async def __aexit__(self, *args):
        return False


class TestPostgresNotificationScheduler:
    async def test_schedule_daily_inserts_next_fire_time(self):
        conn = AsyncMock()
        scheduler = PostgresNotificationScheduler(
            "postgresql://test",
            NotificationConfig(),
            clock=lambda: datetime(2026, 3, 10, 12, 0),
        )
        request = NotificationRequest(
            medication_id="m1", kind="dose", title="t", body="b", hour=8, minute=0,
            data={"medicationId": "m1"},
        )
        with patch(
            "medtrack.notifications.psycopg.AsyncConnection.connect",
            new_callable=AsyncMock,
            return_value=_MockContext(conn),
        ):
            identifier = await scheduler.schedule_daily(request)

        params = conn.execute.await_args.args[1]
        assert params[0] == identifier
        assert params[1:8] == ("m1", "dose", "t", "b", 8, 0, True)
        assert params[8] == datetime(2026, 3, 11, 8, 0)
        assert params[9].obj["data"] == {"medicationId": "m1"}
        conn.commit.assert_awaited_once()

    async def test_list_scheduled_maps_rows(self):
        cursor = AsyncMock()
        cursor.fetchall = AsyncMock(return_value=[
            {
                "identifier": "abc",
                "medication_id": "m1",
                "kind": "dose",
                "title": "Medication Reminder",
                "body": "Time to take X (1 pill)",
                "hour": 8,
                "minute": 0,
                "repeats": True,
                "payload": {"data": {"medicationId": "m1"}},
            }
        ])
        conn = AsyncMock()
        conn.cursor = MagicMock(return_value=_MockContext(cursor))
        scheduler = PostgresNotificationScheduler("postgresql://test", NotificationConfig())

        with patch(
            "medtrack.notifications.psycopg.AsyncConnection.connect",
            new_callable=AsyncMock,
            return_value=_MockContext(conn),
        ):
            [scheduled] = await scheduler.list_scheduled()

        assert scheduled.identifier == "abc"
        assert scheduled.request.data == {"medicationId": "m1"}
        assert (scheduled.request.hour, scheduled.request.minute) == (8, 0)
