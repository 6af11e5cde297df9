import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    database_url: str
    listen_database_url: str
    poll_interval_seconds: float = 60.0
    grace_minutes: int = 2
    health_port: int = 8081
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        return cls(
            database_url=database_url,
            listen_database_url=os.environ.get("MEDTRACK_LISTEN_DATABASE_URL") or database_url,
            poll_interval_seconds=float(os.environ.get("MEDTRACK_POLL_INTERVAL", "60.0")),
            grace_minutes=max(0, int(os.environ.get("MEDTRACK_GRACE_MINUTES", "2"))),
            health_port=int(os.environ.get("MEDTRACK_HEALTH_PORT", "8081")),
            log_format=os.environ.get("MEDTRACK_LOG_FORMAT", "json"),
        )
