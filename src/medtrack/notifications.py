"""Daily dose and refill reminders.

The core hands the scheduler a medication id, display text and parsed
(hour, minute) pairs; delivery belongs to whatever process consumes the
``scheduled_notifications`` table. Presentation settings live in a
``NotificationConfig`` built once at startup and passed in explicitly.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .schedule import local_now, next_occurrence
from .time_labels import parse_time_label

logger = logging.getLogger(__name__)

NotificationKind = Literal["dose", "refill-check"]

NOTIFICATION_DDL = """
CREATE TABLE IF NOT EXISTS scheduled_notifications (
    identifier TEXT PRIMARY KEY,
    medication_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    title TEXT NOT NULL,
    body TEXT NOT NULL,
    hour INTEGER NOT NULL,
    minute INTEGER NOT NULL,
    repeats BOOLEAN NOT NULL DEFAULT TRUE,
    next_fire_at TIMESTAMP,
    payload JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class NotificationConfig:
    show_alert: bool = True
    play_sound: bool = True
    set_badge: bool = True
    channel_id: str = "default"
    channel_name: str = "default"
    channel_importance: str = "max"
    vibration_pattern: tuple[int, ...] = (0, 250, 250, 250)
    sound: str = "default"
    light_color: str = "#1a8e2d"
    reminder_title: str = "Medication Reminder"
    refill_title: str = "Refill Check"
    refill_check_hour: int = 9
    refill_check_minute: int = 0

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        return cls(
            refill_check_hour=min(23, max(0, _env_int("MEDTRACK_REFILL_CHECK_HOUR", 9))),
            refill_check_minute=min(59, max(0, _env_int("MEDTRACK_REFILL_CHECK_MINUTE", 0))),
        )

    def presentation(self) -> dict[str, Any]:
        return {
            "should_show_alert": self.show_alert,
            "should_play_sound": self.play_sound,
            "should_set_badge": self.set_badge,
            "sound": self.sound,
            "channel": {
                "id": self.channel_id,
                "name": self.channel_name,
                "importance": self.channel_importance,
                "vibration_pattern": list(self.vibration_pattern),
                "light_color": self.light_color,
            },
        }


class ReminderSubject(Protocol):
    """What reminder planning needs from a medication, and nothing more."""

    id: str
    name: str
    dosage: str
    times: list[str]
    reminder_enabled: bool
    refill_reminder: bool


@dataclass(frozen=True)
class NotificationRequest:
    medication_id: str
    kind: NotificationKind
    title: str
    body: str
    hour: int
    minute: int
    repeats: bool = True
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScheduledNotification:
    identifier: str
    request: NotificationRequest


class NotificationScheduler(Protocol):
    async def schedule_daily(self, request: NotificationRequest) -> str: ...

    async def list_scheduled(self) -> list[ScheduledNotification]: ...

    async def cancel(self, identifier: str) -> None: ...


async def ensure_notification_schema(conn: psycopg.AsyncConnection[Any]) -> None:
    await conn.execute(NOTIFICATION_DDL)
    await conn.commit()
    logger.info("Notification schema ensured")


class PostgresNotificationScheduler:
    """Persist repeating daily reminders for a delivery process to fire."""

    def __init__(
        self,
        database_url: str,
        config: NotificationConfig,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.database_url = database_url
        self.config = config
        self.clock = clock

    async def schedule_daily(self, request: NotificationRequest) -> str:
        identifier = uuid.uuid4().hex
        next_fire_at = next_occurrence(request.hour, request.minute, self.clock())
        payload = {"data": request.data, **self.config.presentation()}
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            await conn.execute(
                """
                INSERT INTO scheduled_notifications (
                    identifier, medication_id, kind, title, body,
                    hour, minute, repeats, next_fire_at, payload
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    identifier,
                    request.medication_id,
                    request.kind,
                    request.title,
                    request.body,
                    request.hour,
                    request.minute,
                    request.repeats,
                    next_fire_at,
                    Json(payload),
                ),
            )
            await conn.commit()
        return identifier

    async def list_scheduled(self) -> list[ScheduledNotification]:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT identifier, medication_id, kind, title, body,
                           hour, minute, repeats, payload
                    FROM scheduled_notifications
                    ORDER BY hour, minute, identifier
                    """
                )
                rows = await cur.fetchall()
        return [
            ScheduledNotification(
                identifier=row["identifier"],
                request=NotificationRequest(
                    medication_id=row["medication_id"],
                    kind=row["kind"],
                    title=row["title"],
                    body=row["body"],
                    hour=int(row["hour"]),
                    minute=int(row["minute"]),
                    repeats=bool(row["repeats"]),
                    data=(row["payload"] or {}).get("data") or {},
                ),
            )
            for row in rows
        ]

    async def cancel(self, identifier: str) -> None:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            await conn.execute(
                "DELETE FROM scheduled_notifications WHERE identifier = %s",
                (identifier,),
            )
            await conn.commit()


class ReminderPlanner:
    """Translate medications into scheduler requests.

    Planning failures are logged and never raised: a medication edit must
    not fail because a reminder could not be (re)scheduled.
    """

    def __init__(self, scheduler: NotificationScheduler, config: NotificationConfig) -> None:
        self.scheduler = scheduler
        self.config = config

    def dose_requests(self, subject: ReminderSubject) -> list[NotificationRequest]:
        requests: list[NotificationRequest] = []
        for label in subject.times:
            parsed = parse_time_label(label)
            if parsed is None:
                logger.debug("No reminder for unparseable label %r (medication_id=%s)", label, subject.id)
                continue
            hour, minute = parsed
            if not (0 <= hour <= 23 and 0 <= minute <= 59):
                logger.debug("No reminder for out-of-range label %r (medication_id=%s)", label, subject.id)
                continue
            requests.append(
                NotificationRequest(
                    medication_id=subject.id,
                    kind="dose",
                    title=self.config.reminder_title,
                    body=f"Time to take {subject.name} ({subject.dosage})",
                    hour=hour,
                    minute=minute,
                    data={"medicationId": subject.id},
                )
            )
        return requests

    async def schedule_medication_reminder(self, subject: ReminderSubject) -> list[str]:
        if not subject.reminder_enabled:
            return []
        identifiers: list[str] = []
        try:
            for request in self.dose_requests(subject):
                identifiers.append(await self.scheduler.schedule_daily(request))
        except Exception:
            logger.exception("Error scheduling medication reminder (medication_id=%s)", subject.id)
        return identifiers

    async def schedule_refill_reminder(self, subject: ReminderSubject) -> str | None:
        if not subject.refill_reminder:
            return None
        request = NotificationRequest(
            medication_id=subject.id,
            kind="refill-check",
            title=self.config.refill_title,
            body=f"Checking refill status for {subject.name}",
            hour=self.config.refill_check_hour,
            minute=self.config.refill_check_minute,
            data={"medicationId": subject.id, "type": "refill-check"},
        )
        try:
            return await self.scheduler.schedule_daily(request)
        except Exception:
            logger.exception("Error scheduling refill reminder (medication_id=%s)", subject.id)
            return None

    async def cancel_medication_reminders(self, medication_id: str) -> int:
        """Cancel every scheduled request tagged with ``medication_id``."""
        cancelled = 0
        try:
            for scheduled in await self.scheduler.list_scheduled():
                if scheduled.request.data.get("medicationId") == medication_id:
                    await self.scheduler.cancel(scheduled.identifier)
                    cancelled += 1
        except Exception:
            logger.exception("Error canceling medication reminders (medication_id=%s)", medication_id)
        return cancelled

    async def update_medication_reminders(self, subject: ReminderSubject) -> None:
        await self.cancel_medication_reminders(subject.id)
        await self.schedule_medication_reminder(subject)
        await self.schedule_refill_reminder(subject)
