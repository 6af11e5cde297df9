"""Medication and dose-event models with Pydantic validation for stored records.

Both collections are persisted as JSON arrays with camelCase keys
(``startDate``, ``reminderEnabled``, ``medicationId``...). Models accept either
spelling on input and always dump camelCase.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

INDEFINITE_DURATION = -1


def new_record_id() -> str:
    """Short opaque id for new medications and dose events."""
    return uuid.uuid4().hex[:9]


def parse_duration_days(raw: Any) -> int:
    """Normalize a stored duration to a day count.

    Accepts ints or strings whose first token is an int ("7 days", "-1").
    A string that does not start with an integer ("Ongoing") is indefinite.
    """
    if isinstance(raw, bool):
        raise ValueError("duration must be a day count, not a boolean")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        value = int(raw)
    elif isinstance(raw, str):
        tokens = raw.strip().split(" ")
        try:
            value = int(tokens[0])
        except ValueError:
            return INDEFINITE_DURATION
    else:
        raise ValueError(f"Unsupported duration value: {raw!r}")

    if value < INDEFINITE_DURATION:
        raise ValueError("duration must be >= 0, or -1 for indefinite")
    return value


def _parse_instant(raw: Any) -> Any:
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    if isinstance(raw, date) and not isinstance(raw, datetime):
        return datetime.combine(raw, datetime.min.time())
    return raw


class StoredRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )

    def to_record(self) -> dict[str, Any]:
        """JSON-ready dict in the persisted (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Medication(StoredRecord):
    """A prescribed medication and its daily schedule."""

    id: str = Field(default_factory=new_record_id)
    name: str
    dosage: str = ""
    times: list[str] = Field(default_factory=list)
    start_date: datetime
    duration: int = INDEFINITE_DURATION
    color: str = ""
    reminder_enabled: bool = True
    current_supply: int = Field(default=0, ge=0)
    total_supply: int = Field(default=0, ge=0)
    refill_at: int = 0
    refill_reminder: bool = False
    last_refill_date: datetime | None = None

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be empty")
        return v

    @field_validator("duration", mode="before")
    @classmethod
    def normalize_duration(cls, v: Any) -> int:
        return parse_duration_days(v)

    @field_validator("start_date", "last_refill_date", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        return _parse_instant(v)

    @property
    def is_indefinite(self) -> bool:
        return self.duration == INDEFINITE_DURATION


class DoseEvent(StoredRecord):
    """A taken, skipped or missed dose at a scheduled instant."""

    id: str = Field(default_factory=new_record_id)
    medication_id: str
    timestamp: datetime
    taken: bool

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        return _parse_instant(v)
