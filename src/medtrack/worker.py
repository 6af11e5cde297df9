import asyncio
import logging
import signal
import time
from datetime import timedelta
from typing import Any

import psycopg

from .config import Config
from .logging import log_context
from .metrics import record_trigger_invocation
from .notifications import ensure_notification_schema
from .reconciliation import DoseReconciler, ReconciliationResult
from .store import PostgresRecordStore, ensure_record_store_schema

logger = logging.getLogger(__name__)

TRIGGER_CHANNEL = "medtrack_triggers"


async def send_trigger(conn: psycopg.AsyncConnection[Any], trigger: str = "foreground") -> None:
    """Ask running workers for an immediate reconciliation pass."""
    await conn.execute("SELECT pg_notify(%s, %s)", (TRIGGER_CHANNEL, trigger))
    await conn.commit()


class Worker:
    """Runs missed-dose reconciliation on a timer and on demand.

    The poll loop is the periodic wake. The listen loop reacts to
    ``pg_notify('medtrack_triggers', ...)`` sent when the app comes to the
    foreground or the user asks for a refresh.
    """

    def __init__(self, config: Config, reconciler: DoseReconciler | None = None) -> None:
        self.config = config
        self.reconciler = reconciler or DoseReconciler(
            PostgresRecordStore(config.database_url),
            grace_period=timedelta(minutes=config.grace_minutes),
        )
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """Main entry point: run listen + poll loops until shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._request_shutdown)

        logger.info(
            "Worker starting (poll_interval=%.1fs, grace=%dmin)",
            self.config.poll_interval_seconds,
            self.config.grace_minutes,
        )
        if self.config.listen_database_url != self.config.database_url:
            logger.info("Worker LISTEN uses dedicated database URL")

        async with await psycopg.AsyncConnection.connect(
            self.config.database_url
        ) as conn:
            await ensure_record_store_schema(conn)
            try:
                await ensure_notification_schema(conn)
            except Exception as exc:
                logger.warning("Notification schema bootstrap skipped: %s", exc)

        await self.reconcile("startup")

        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._listen_loop())
            tg.create_task(self._poll_loop())

    def _request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()

    async def _listen_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                async with await psycopg.AsyncConnection.connect(
                    self.config.listen_database_url, autocommit=True
                ) as conn:
                    await conn.execute(f"LISTEN {TRIGGER_CHANNEL}")
                    logger.info("Listening on %s channel", TRIGGER_CHANNEL)

                    while not self._shutdown.is_set():
                        gen = conn.notifies(
                            timeout=self.config.poll_interval_seconds
                        )
                        async for notify in gen:
                            await self.reconcile(notify.payload or "notify")
                            if self._shutdown.is_set():
                                break
            except psycopg.OperationalError:
                if self._shutdown.is_set():
                    break
                logger.warning("LISTEN connection lost, reconnecting in 5s")
                await asyncio.sleep(5)

        logger.info("Listen loop stopped")

    async def _poll_loop(self) -> None:
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown.wait(),
                    timeout=self.config.poll_interval_seconds,
                )
                break
            except TimeoutError:
                pass

            await self.reconcile("poll")

        logger.info("Poll loop stopped")

    async def reconcile(self, trigger: str) -> ReconciliationResult:
        """One missed-dose pass, timed and attributed to ``trigger``."""
        started = time.monotonic()
        result = await self.reconciler.check_and_record_missed_doses()
        duration_ms = (time.monotonic() - started) * 1000
        record_trigger_invocation(
            trigger, duration_ms, not result.failed, len(result.missed_recorded)
        )

        level = logging.WARNING if result.failed else logging.INFO
        logger.log(
            level,
            "Reconciliation pass %s (trigger=%s, missed_recorded=%d, %.1fms)",
            "failed" if result.failed else "completed",
            trigger,
            len(result.missed_recorded),
            duration_ms,
            extra=log_context(trigger=trigger, duration_ms=round(duration_ms, 1), **result.as_dict()),
        )
        return result
