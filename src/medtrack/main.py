"""medtrack worker: periodic and on-demand missed-dose reconciliation."""

import asyncio
import logging

from .config import Config
from .health import start_health_server
from .logging import setup_logging
from .notifications import NotificationConfig
from .services import build_services
from .worker import Worker


def main() -> None:
    config = Config.from_env()
    setup_logging(config.log_format)

    logger = logging.getLogger(__name__)
    logger.info("medtrack worker starting")
    logger.info("Log format: %s", config.log_format)
    logger.info("Health port: %d", config.health_port)
    logger.info("Grace period: %d minute(s)", config.grace_minutes)

    asyncio.run(_run(config))


async def _run(config: Config) -> None:
    logger = logging.getLogger(__name__)

    health_server = await start_health_server(
        config.health_port, config.database_url, config.poll_interval_seconds
    )
    logger.info("Health server started")

    services = build_services(config, NotificationConfig.from_env())
    try:
        worker = Worker(config, services.reconciler)
        await worker.run()
    finally:
        health_server.close()
        await health_server.wait_closed()


if __name__ == "__main__":
    main()
