"""
Shared models for Resiliency App.

Field names on the wire follow the test driver's JSON encoding
(``maxFailureCount``, ``Count``, ``TimeSeen``); Python attributes are snake_case.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_UNITS: dict[str, int] = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def duration_to_nanoseconds(value: timedelta) -> int:
    return (value.days * 86_400 + value.seconds) * 1_000_000_000 + value.microseconds * 1_000


MAX_DURATION_NS = duration_to_nanoseconds(timedelta.max)


def parse_duration(value: str) -> int:
    """
    Parse a duration string such as ``"500ms"``, ``"1.5s"`` or ``"1m30s"``.

    Returns whole nanoseconds; fractions of a nanosecond are truncated. A bare
    ``"0"`` is accepted as zero. Negative durations are rejected.
    """
    text = value.strip()
    if text == "0":
        return 0
    if not text:
        raise ValueError("empty duration")

    total = Decimal(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {value!r}")
        number, unit = match.groups()
        total += Decimal(number) * _DURATION_UNITS[unit]
        pos = match.end()
    return int(total)


class FailureDescription(BaseModel):
    """Failure parameters carried by every request under test."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., description="Scenario id grouping all attempts of one test")
    max_failure_count: int | None = Field(
        default=None,
        ge=0,
        alias="maxFailureCount",
        description="Attempts (0-indexed) that fail before one may succeed",
    )
    timeout_ns: int | None = Field(
        default=None,
        alias="timeout",
        description="Stall in nanoseconds applied to failing attempts instead of an error",
    )

    @field_validator("timeout_ns", mode="before")
    @classmethod
    def _coerce_timeout(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValueError("timeout must be a duration")
        if isinstance(value, timedelta):
            nanoseconds = duration_to_nanoseconds(value)
        elif isinstance(value, int):
            # Integer durations are nanoseconds.
            nanoseconds = value
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("timeout must be finite")
            nanoseconds = int(value)
        elif isinstance(value, str):
            nanoseconds = parse_duration(value)
        else:
            raise ValueError("timeout must be a duration")

        if nanoseconds < 0:
            raise ValueError("timeout must not be negative")
        if nanoseconds > MAX_DURATION_NS:
            raise ValueError("timeout out of range")
        return nanoseconds

    @property
    def timeout(self) -> timedelta | None:
        """The stall as a timedelta, truncated to whole microseconds."""
        if self.timeout_ns is None:
            return None
        return timedelta(microseconds=self.timeout_ns // 1_000)

    def to_wire(self) -> dict[str, Any]:
        """JSON body used when forwarding this description downstream."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AttemptRecord(BaseModel):
    """One observed attempt for a scenario id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    sequence_number: int = Field(..., ge=0, alias="Count")
    observed_at: datetime = Field(..., alias="TimeSeen")


class CloudEventEnvelope(BaseModel):
    """Pub/sub delivery envelope. ``data`` must hold a FailureDescription."""

    id: str | None = None
    source: str | None = None
    type: str | None = None
    topic: str | None = None
    pubsubname: str | None = None
    datacontenttype: str | None = None
    data: FailureDescription


class PubsubStatus(str, Enum):
    """Delivery acknowledgement understood by the sidecar."""

    SUCCESS = "SUCCESS"
    RETRY = "RETRY"
    DROP = "DROP"


class PubsubResponse(BaseModel):
    status: PubsubStatus
    message: str | None = None


class Subscription(BaseModel):
    """Programmatic topic subscription served on ``/dapr/subscribe``."""

    pubsubname: str
    topic: str
    route: str
