"""
Hangout Domain Models
The durable hangout request record, its status machine and derived views.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class HangoutStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class ResponseDecision(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


TERMINAL_STATUSES = frozenset(
    {HangoutStatus.DECLINED, HangoutStatus.CANCELLED, HangoutStatus.COMPLETED}
)

ALLOWED_TRANSITIONS: dict[HangoutStatus, frozenset[HangoutStatus]] = {
    HangoutStatus.PENDING: frozenset(
        {HangoutStatus.ACCEPTED, HangoutStatus.DECLINED, HangoutStatus.CANCELLED}
    ),
    HangoutStatus.ACCEPTED: frozenset({HangoutStatus.CANCELLED, HangoutStatus.COMPLETED}),
    HangoutStatus.DECLINED: frozenset(),
    HangoutStatus.CANCELLED: frozenset(),
    HangoutStatus.COMPLETED: frozenset(),
}


def can_transition(current: HangoutStatus, target: HangoutStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Persona(BaseModel):
    """Display persona a user attaches to a hangout."""

    id: str
    name: str
    user_id: str
    is_default: bool = False


class HangoutRequest(BaseModel):
    """A proposed, accepted, declined, cancelled or completed hangout between two users."""

    id: str
    title: str
    description: str = ""
    start_date: datetime
    end_date: datetime
    location: str | None = None
    creator_user_id: str
    creator_persona_id: str
    invitee_user_id: str
    invitee_persona_id: str
    status: HangoutStatus = HangoutStatus.PENDING
    created_at: datetime
    updated_at: datetime

    # First event id obtained on either calendar
    calendar_event_id: str | None = None
    # Per-party event ids; each calendar assigns its own
    calendar_event_ids: dict[str, str] = Field(default_factory=dict)

    def party_ids(self) -> tuple[str, str]:
        return (self.creator_user_id, self.invitee_user_id)

    def involves(self, user_id: str) -> bool:
        return user_id in self.party_ids()

    def counterpart_of(self, user_id: str) -> str:
        return self.invitee_user_id if user_id == self.creator_user_id else self.creator_user_id

    def has_calendar_event(self) -> bool:
        return self.calendar_event_id is not None or bool(self.calendar_event_ids)

    def event_id_for(self, user_id: str) -> str | None:
        """
        Event id on this party's calendar.

        Records that only carry the single shared id use it for both parties;
        once per-party ids exist, a party without one has no event.
        """
        if self.calendar_event_ids:
            return self.calendar_event_ids.get(user_id)
        return self.calendar_event_id

    def has_ended(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return self.end_date <= now

    def is_effectively_completed(self, now: datetime | None = None) -> bool:
        """Accepted and already over, or explicitly completed."""
        if self.status is HangoutStatus.COMPLETED:
            return True
        return self.status is HangoutStatus.ACCEPTED and self.has_ended(now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return self.model_dump(mode="json")


class HangoutBuckets(BaseModel):
    """Pending / upcoming / past partition of a user's hangouts."""

    pending: list[HangoutRequest] = Field(default_factory=list)
    upcoming: list[HangoutRequest] = Field(default_factory=list)
    past: list[HangoutRequest] = Field(default_factory=list)


def partition_hangouts(
    requests: list[HangoutRequest], now: datetime | None = None
) -> HangoutBuckets:
    """
    Split requests into the three views shown to a user.

    pending: pending requests, soonest first.
    upcoming: accepted requests that have not started yet, soonest first.
    past: accepted-and-started, completed, declined or cancelled, latest first.
    """
    now = now or datetime.now(UTC)

    pending = [r for r in requests if r.status is HangoutStatus.PENDING]
    upcoming = [
        r for r in requests if r.status is HangoutStatus.ACCEPTED and r.start_date > now
    ]
    past = [
        r
        for r in requests
        if (r.status is HangoutStatus.ACCEPTED and r.start_date <= now)
        or r.status in TERMINAL_STATUSES
    ]

    return HangoutBuckets(
        pending=sorted(pending, key=lambda r: r.start_date),
        upcoming=sorted(upcoming, key=lambda r: r.start_date),
        past=sorted(past, key=lambda r: r.start_date, reverse=True),
    )
