"""
Hangout API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from hangout_scheduler.models.domain.calendar_domain import AvailabilityResult
from hangout_scheduler.models.domain.hangout_domain import HangoutBuckets, HangoutRequest


class TimeWindowResponse(BaseModel):
    start: datetime = Field(..., description="Window start")
    end: datetime = Field(..., description="Window end")
    duration_minutes: int = Field(..., description="Window length in minutes")


class AvailabilityResponse(BaseModel):
    """Response for a mutual availability lookup."""

    verified: bool = Field(..., description="False when any calendar could not be read")
    mode: str = Field(..., description="verified or unverified_sample")
    unverified_user_ids: list[str] = Field(
        default_factory=list, description="Users whose calendars could not be read"
    )
    range_start: datetime = Field(..., description="Scan range start")
    range_end: datetime = Field(..., description="Scan range end")
    windows: list[TimeWindowResponse] = Field(..., description="Candidate windows, earliest first")

    @classmethod
    def from_result(cls, result: AvailabilityResult) -> "AvailabilityResponse":
        return cls(
            verified=result.is_verified,
            mode=result.mode.value,
            unverified_user_ids=list(result.unverified_user_ids),
            range_start=result.range_start,
            range_end=result.range_end,
            windows=[
                TimeWindowResponse(
                    start=w.start, end=w.end, duration_minutes=w.duration_minutes()
                )
                for w in result.windows
            ],
        )


class HangoutResponse(BaseModel):
    """Single hangout request."""

    hangout: HangoutRequest = Field(..., description="The hangout record")
    has_calendar_event: bool = Field(..., description="Whether any calendar event exists")

    @classmethod
    def from_domain(cls, request: HangoutRequest) -> "HangoutResponse":
        return cls(hangout=request, has_calendar_event=request.has_calendar_event())


class HangoutListResponse(BaseModel):
    """A user's hangouts split into the three display views."""

    pending: list[HangoutRequest] = Field(..., description="Awaiting a response, soonest first")
    upcoming: list[HangoutRequest] = Field(..., description="Accepted and ahead, soonest first")
    past: list[HangoutRequest] = Field(..., description="Finished or closed, latest first")
    total_count: int = Field(..., description="Total hangouts across all views")

    @classmethod
    def from_buckets(cls, buckets: HangoutBuckets) -> "HangoutListResponse":
        return cls(
            pending=buckets.pending,
            upcoming=buckets.upcoming,
            past=buckets.past,
            total_count=len(buckets.pending) + len(buckets.upcoming) + len(buckets.past),
        )


class DeleteHangoutResponse(BaseModel):
    success: bool = Field(..., description="Whether a record was removed")
    hangout_id: str = Field(..., description="Id of the deleted hangout")
