"""Structured logging for medtrack.

Controlled via MEDTRACK_LOG_FORMAT env var: "json" (default) or "text".
Context travels on records as ``medtrack_*`` extras; build them with
``log_context`` so JSON output groups them under "context".
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

_EXTRA_PREFIX = "medtrack_"


def log_context(**fields: Any) -> dict[str, Any]:
    """``extra=`` mapping for a log call: ``log_context(trigger="poll")``."""
    return {f"{_EXTRA_PREFIX}{key}": value for key, value in fields.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with record context nested under "context"."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key[len(_EXTRA_PREFIX):]: value
            for key, value in record.__dict__.items()
            if key.startswith(_EXTRA_PREFIX)
        }
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(entry, default=str)


def setup_logging(log_format: str, level: int = logging.INFO) -> None:
    """Replace root handlers with a single stderr handler in the chosen format."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root.addHandler(handler)
