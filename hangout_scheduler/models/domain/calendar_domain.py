"""
Calendar Domain Models
Value objects for free/busy data and availability results.
Used by the availability engine and the calendar access provider.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_api_datetime(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp from the Calendar API."""
    if not value:
        return None
    try:
        return _ensure_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


@dataclass(frozen=True, slots=True, order=True)
class BusyInterval:
    """Half-open [start, end) block during which a user is unavailable."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Busy interval ends before it starts: {self.start} > {self.end}")

    @classmethod
    def from_api(cls, data: dict) -> "BusyInterval | None":
        """Build from a freeBusy ``{"start": ..., "end": ...}`` entry, None if malformed."""
        start = parse_api_datetime(data.get("start"))
        end = parse_api_datetime(data.get("end"))
        if start is None or end is None or end < start:
            return None
        return cls(start=start, end=end)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return max(self.start, start) < min(self.end, end)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True, slots=True, order=True)
class TimeWindow:
    """A candidate slot of the requested duration; an availability window once checked."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() / 60)

    def overlaps(self, other: "TimeWindow | BusyInterval") -> bool:
        return max(self.start, other.start) < min(self.end, other.end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes(),
        }


class AvailabilityMode(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED_SAMPLE = "unverified_sample"


@dataclass(slots=True)
class AvailabilityResult:
    """
    Outcome of a mutual availability query.

    A verified result with no windows means both parties are busy across the
    whole business window. An unverified sample means at least one calendar
    could not be read and the windows are suggestions only.
    """

    windows: list[TimeWindow]
    mode: AvailabilityMode
    range_start: datetime
    range_end: datetime
    duration: timedelta
    unverified_user_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_verified(self) -> bool:
        return self.mode is AvailabilityMode.VERIFIED

    def earliest(self) -> TimeWindow | None:
        return self.windows[0] if self.windows else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "mode": self.mode.value,
            "verified": self.is_verified,
            "unverified_user_ids": list(self.unverified_user_ids),
            "range": {
                "start": self.range_start.isoformat(),
                "end": self.range_end.isoformat(),
            },
            "duration_minutes": int(self.duration.total_seconds() / 60),
            "windows": [window.to_dict() for window in self.windows],
            "window_count": len(self.windows),
        }


class CalendarCredential(BaseModel):
    """Live calendar access credential for one user."""

    user_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def is_expired(self) -> bool:
        """Check if access token is expired."""
        if not self.expires_at:
            return False
        return datetime.now(UTC) >= _ensure_aware(self.expires_at)

    def needs_refresh(self, buffer_minutes: int = 5) -> bool:
        """Check if token should be refreshed soon."""
        if not self.expires_at:
            return False
        buffer_time = datetime.now(UTC) + timedelta(minutes=buffer_minutes)
        return buffer_time >= _ensure_aware(self.expires_at)
