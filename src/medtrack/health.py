"""Worker health endpoint.

``GET /health`` reports record-store reachability and how recent and how
successful the last reconciliation pass was. ``GET /metrics`` returns the
raw counters. Served with asyncio.start_server, no web framework.
"""

import asyncio
import json
import logging
import time

import psycopg

from .metrics import get_metrics

logger = logging.getLogger(__name__)

_STATUS_LINES = {
    200: "HTTP/1.1 200 OK",
    404: "HTTP/1.1 404 Not Found",
    503: "HTTP/1.1 503 Service Unavailable",
}

# a pass older than this many poll intervals counts as stale
STALE_AFTER_INTERVALS = 3


async def _check_store(db_url: str) -> str:
    """Read the record_store table with a 2s timeout. Returns 'ok' or 'error'."""
    try:
        async with asyncio.timeout(2):
            async with await psycopg.AsyncConnection.connect(
                db_url, autocommit=True
            ) as conn:
                await conn.execute("SELECT 1 FROM record_store LIMIT 1")
        return "ok"
    except Exception:
        return "error"


def _reconciliation_status(
    last: dict | None, stale_after: float | None, now: float
) -> tuple[str, dict | None]:
    if last is None:
        return "pending", None
    age = round(now - last["finished_at"], 1)
    summary = {**last, "age_seconds": age}
    if not last["success"]:
        return "failed", summary
    if stale_after is not None and age > stale_after:
        return "stale", summary
    return "ok", summary


def build_health_body(
    store_status: str,
    metrics: dict,
    *,
    stale_after: float | None = None,
    now: float | None = None,
) -> tuple[bool, dict]:
    """Health payload.

    The endpoint is unhealthy (503) only when the store is unreachable. A
    failed or stale last reconciliation pass reports ``degraded`` but keeps
    the worker in rotation; the next poll retries it.
    """
    reconciliation, last = _reconciliation_status(
        metrics.get("last_reconciliation"),
        stale_after,
        time.time() if now is None else now,
    )
    healthy = store_status == "ok"
    degraded = not healthy or reconciliation in ("failed", "stale")
    return healthy, {
        "status": "degraded" if degraded else "ok",
        "uptime_seconds": metrics["uptime_seconds"],
        "store": store_status,
        "reconciliation": reconciliation,
        "last_reconciliation": last,
        "missed_doses_recorded": metrics["missed_doses_recorded"],
        "reconciliation_failures": metrics["reconciliation_failures"],
    }


async def _handle_request(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    db_url: str,
    stale_after: float | None,
) -> None:
    try:
        request_line = await asyncio.wait_for(reader.readline(), timeout=5)
        parts = request_line.decode("utf-8", errors="replace").strip().split()
        path = parts[1] if len(parts) >= 2 else "/"

        if path == "/health":
            healthy, payload = build_health_body(
                await _check_store(db_url), get_metrics(), stale_after=stale_after
            )
            status = 200 if healthy else 503
        elif path == "/metrics":
            status, payload = 200, get_metrics()
        else:
            status, payload = 404, {"error": "not_found"}

        body = json.dumps(payload)
        writer.write(
            f"{_STATUS_LINES[status]}\r\nContent-Type: application/json\r\n"
            f"Content-Length: {len(body)}\r\n\r\n{body}".encode()
        )
        await writer.drain()
    except Exception:
        logger.debug("Health endpoint request error", exc_info=True)
    finally:
        writer.close()
        await writer.wait_closed()


async def start_health_server(
    port: int, db_url: str, poll_interval_seconds: float | None = None
) -> asyncio.Server:
    """Start the health HTTP server. Returns the asyncio.Server for lifecycle management."""
    stale_after = (
        poll_interval_seconds * STALE_AFTER_INTERVALS
        if poll_interval_seconds is not None
        else None
    )

    async def handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await _handle_request(reader, writer, db_url, stale_after)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    logger.info("Health endpoint listening on port %d", port)
    return server
