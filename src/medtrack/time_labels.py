"""Time label parsing: "HH:MM" (24-hour) or "HH:MM AM/PM" (12-hour)."""

from __future__ import annotations

_PERIOD_TOKENS = ("AM", "PM")


def _clock_component(text: str) -> int:
    """One clock field. Blank reads as 0; underscores and non-ASCII digits are rejected."""
    text = text.strip()
    if not text:
        return 0
    if "_" in text or not text.isascii():
        raise ValueError(f"invalid clock component: {text!r}")
    return int(text)


def _split_clock(text: str) -> tuple[int, int] | None:
    """Hour and minute from the first two ":"-separated fields; extra fields are ignored."""
    parts = text.split(":")
    if len(parts) < 2:
        return None
    try:
        return _clock_component(parts[0]), _clock_component(parts[1])
    except ValueError:
        return None


def is_twelve_hour(label: str) -> bool:
    return any(token in label for token in _PERIOD_TOKENS)


def to_twenty_four_hour(hour: int, period: str | None) -> int:
    """Apply the AM/PM rule. Only "PM" and "AM" (exact case) change the hour."""
    if period == "PM" and hour != 12:
        return hour + 12
    if period == "AM" and hour == 12:
        return 0
    return hour


def parse_time_label(label: str) -> tuple[int, int] | None:
    """Parse a time label into ``(hour, minute)``.

    Returns None for anything unparseable; callers skip such labels.
    Hour and minute are not range-checked.
    """
    if not isinstance(label, str):
        return None

    if is_twelve_hour(label):
        tokens = label.split(" ")
        period = tokens[1] if len(tokens) > 1 else None
        clock = _split_clock(tokens[0])
        if clock is None:
            return None
        hour, minute = clock
        return to_twenty_four_hour(hour, period), minute

    return _split_clock(label)


def format_time_label(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"
