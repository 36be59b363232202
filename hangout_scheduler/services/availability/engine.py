"""
Availability engine for mutual scheduling.
Finds fixed-length windows in which two users are both free, based on each
user's calendar free/busy data, and falls back to an explicitly unverified
sample when a calendar cannot be read.
"""

import asyncio
from datetime import UTC, datetime, timedelta, tzinfo

from hangout_scheduler.config import settings
from hangout_scheduler.exceptions import (
    AccessUnavailable,
    CalendarTransportError,
    ValidationError,
)
from hangout_scheduler.infrastructure.observability.logging import get_logger
from hangout_scheduler.models.domain.calendar_domain import (
    AvailabilityMode,
    AvailabilityResult,
    BusyInterval,
    TimeWindow,
)
from hangout_scheduler.services.availability.intervals import (
    filter_free_windows,
    generate_candidate_slots,
    local_days,
    merge_intervals,
)
from hangout_scheduler.services.calendar.access_provider import CalendarAccessProvider

logger = get_logger(__name__)

WEEKEND = {5, 6}


def _as_utc(value: datetime, field: str) -> datetime:
    if value.tzinfo is None:
        raise ValidationError(f"{field} must be timezone-aware", field=field)
    return value.astimezone(UTC)


class AvailabilityEngine:
    """
    Computes mutual availability for two users over a scan range.

    Business hours, the slot grid and the local zone are policy, read from
    settings once at construction time.
    """

    def __init__(
        self,
        calendar_provider: CalendarAccessProvider,
        tz: tzinfo | None = None,
        day_start_hour: int | None = None,
        day_end_hour: int | None = None,
        step_minutes: int | None = None,
    ):
        self.calendar_provider = calendar_provider
        self.tz = tz or settings.scheduling_tz()
        self.day_start_hour = (
            settings.BUSINESS_DAY_START_HOUR if day_start_hour is None else day_start_hour
        )
        self.day_end_hour = settings.BUSINESS_DAY_END_HOUR if day_end_hour is None else day_end_hour
        self.step_minutes = settings.SLOT_GRID_MINUTES if step_minutes is None else step_minutes

    def default_scan_range(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        """Now through the end of the local day AVAILABILITY_SCAN_DAYS ahead."""
        now = (now or datetime.now(UTC)).astimezone(self.tz)
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start_of_today + timedelta(days=settings.AVAILABILITY_SCAN_DAYS + 1)
        return now.astimezone(UTC), end.astimezone(UTC)

    async def find_availability(
        self,
        user_a: str,
        user_b: str,
        range_start: datetime,
        range_end: datetime,
        duration: timedelta,
    ) -> AvailabilityResult:
        """
        Find windows of exactly ``duration`` in which both users are free.

        Args:
            user_a: First party's user id
            user_b: Second party's user id
            range_start: Start of the scan range (inclusive)
            range_end: End of the scan range (exclusive)
            duration: Requested window length, strictly positive

        Returns:
            AvailabilityResult: verified windows, or an unverified sample when
            either calendar could not be read

        Raises:
            ValidationError: On bad duration, empty range or identical users
        """
        range_start, range_end = self._validate_query(
            user_a, user_b, range_start, range_end, duration
        )

        busy_a, busy_b = await asyncio.gather(
            self._fetch_busy(user_a, range_start, range_end),
            self._fetch_busy(user_b, range_start, range_end),
        )

        unverified = tuple(
            user_id for user_id, busy in ((user_a, busy_a), (user_b, busy_b)) if busy is None
        )

        if unverified:
            known_busy = [interval for busy in (busy_a, busy_b) if busy for interval in busy]
            windows = self._unverified_sample(range_start, range_end, duration, known_busy)

            logger.warning(
                "Availability unverified, returning sample",
                user_a=user_a,
                user_b=user_b,
                unverified_user_ids=list(unverified),
                sample_size=len(windows),
            )

            return AvailabilityResult(
                windows=windows,
                mode=AvailabilityMode.UNVERIFIED_SAMPLE,
                range_start=range_start,
                range_end=range_end,
                duration=duration,
                unverified_user_ids=unverified,
            )

        merged = merge_intervals([*busy_a, *busy_b])
        candidates = generate_candidate_slots(
            range_start,
            range_end,
            duration,
            self.tz,
            self.day_start_hour,
            self.day_end_hour,
            self.step_minutes,
        )
        windows = filter_free_windows(candidates, merged)

        logger.info(
            "Mutual availability computed",
            user_a=user_a,
            user_b=user_b,
            busy_blocks=len(merged),
            candidates=len(candidates),
            windows=len(windows),
            duration_minutes=int(duration.total_seconds() / 60),
        )

        return AvailabilityResult(
            windows=windows,
            mode=AvailabilityMode.VERIFIED,
            range_start=range_start,
            range_end=range_end,
            duration=duration,
        )

    async def is_user_free(self, user_id: str, start: datetime, end: datetime) -> bool | None:
        """
        Check one user's own calendar for the window [start, end).

        Returns:
            True if free, False if any busy block overlaps, None if the
            calendar could not be read
        """
        start = _as_utc(start, "start")
        end = _as_utc(end, "end")
        if end <= start:
            raise ValidationError("end must be after start", field="end", user_id=user_id)

        busy = await self._fetch_busy(user_id, start, end)
        if busy is None:
            return None

        window = TimeWindow(start=start, end=end)
        return not any(window.overlaps(interval) for interval in busy)

    def _validate_query(
        self,
        user_a: str,
        user_b: str,
        range_start: datetime,
        range_end: datetime,
        duration: timedelta,
    ) -> tuple[datetime, datetime]:
        if not isinstance(duration, timedelta) or duration <= timedelta(0):
            raise ValidationError("duration must be a positive timedelta", field="duration")
        if not user_a or not user_b:
            raise ValidationError("both user ids are required", field="user_id")
        if user_a == user_b:
            raise ValidationError("availability needs two different users", field="user_id")

        range_start = _as_utc(range_start, "range_start")
        range_end = _as_utc(range_end, "range_end")
        if range_end <= range_start:
            raise ValidationError("range_end must be after range_start", field="range_end")

        return range_start, range_end

    async def _fetch_busy(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[BusyInterval] | None:
        """Busy intervals for one user, or None when the calendar is unknown."""
        try:
            if not await self.calendar_provider.has_access(user_id):
                logger.info("No calendar connected", user_id=user_id)
                return None
            return await self.calendar_provider.get_busy_intervals(user_id, start, end)
        except AccessUnavailable as e:
            logger.info("Calendar access unavailable", user_id=user_id, error=str(e))
            return None
        except CalendarTransportError as e:
            logger.warning(
                "Calendar busy lookup failed",
                user_id=user_id,
                error=str(e),
                status_code=e.status_code,
            )
            return None
        except Exception as e:
            logger.error(
                "Unexpected error fetching busy intervals",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    def _unverified_sample(
        self,
        range_start: datetime,
        range_end: datetime,
        duration: timedelta,
        known_busy: list[BusyInterval],
    ) -> list[TimeWindow]:
        """
        Deterministic weekday sample used when a calendar can't be read.

        Picks up to DEGRADED_SLOTS_PER_DAY evenly spaced slots from a narrower
        daytime window, then drops any that clash with the party whose
        calendar is known.
        """
        per_day = settings.DEGRADED_SLOTS_PER_DAY
        sample: list[TimeWindow] = []

        for day in local_days(range_start, range_end, self.tz):
            if day.weekday() in WEEKEND:
                continue

            day_start = datetime.combine(day, datetime.min.time(), tzinfo=self.tz)
            day_candidates = generate_candidate_slots(
                max(range_start, day_start.astimezone(UTC)),
                min(range_end, (day_start + timedelta(days=1)).astimezone(UTC)),
                duration,
                self.tz,
                settings.DEGRADED_SAMPLE_START_HOUR,
                settings.DEGRADED_SAMPLE_END_HOUR,
                self.step_minutes,
            )
            if not day_candidates:
                continue

            count = min(per_day, len(day_candidates))
            picks = sorted({int((i + 0.5) * len(day_candidates) / count) for i in range(count)})
            sample.extend(day_candidates[idx] for idx in picks)

        return filter_free_windows(sample, merge_intervals(known_busy))
