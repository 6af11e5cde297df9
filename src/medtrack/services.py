"""Wiring: one store, one reconciler, one medication service per process."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .config import Config
from .medications import MedicationService
from .notifications import (
    NotificationConfig,
    NotificationScheduler,
    PostgresNotificationScheduler,
    ReminderPlanner,
)
from .reconciliation import DoseReconciler
from .store import PostgresRecordStore, RecordStore


@dataclass(frozen=True)
class Services:
    store: RecordStore
    reconciler: DoseReconciler
    medications: MedicationService
    reminders: ReminderPlanner


def build_services(
    config: Config,
    notification_config: NotificationConfig,
    *,
    store: RecordStore | None = None,
    scheduler: NotificationScheduler | None = None,
) -> Services:
    store = store or PostgresRecordStore(config.database_url)
    scheduler = scheduler or PostgresNotificationScheduler(config.database_url, notification_config)
    reminders = ReminderPlanner(scheduler, notification_config)
    return Services(
        store=store,
        reconciler=DoseReconciler(store, grace_period=timedelta(minutes=config.grace_minutes)),
        medications=MedicationService(store, reminders),
        reminders=reminders,
    )
