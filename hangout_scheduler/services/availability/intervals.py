"""
Interval arithmetic for free/busy data.

All intervals are half-open [start, end). Two intervals that merely touch
are merged into one busy block, but a slot that ends exactly when a busy
block starts does not conflict with it.
"""

from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from hangout_scheduler.models.domain.calendar_domain import BusyInterval, TimeWindow


def merge_intervals(intervals: Iterable[BusyInterval]) -> list[BusyInterval]:
    """
    Merge busy intervals into a minimal sorted list of disjoint blocks.

    An interval joins the current run when it starts at or before the run's
    end. Running the result through again returns it unchanged.
    """
    merged: list[BusyInterval] = []

    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = BusyInterval(start=last.start, end=interval.end)
        else:
            merged.append(interval)

    return merged


def conflicts(window: TimeWindow, busy: BusyInterval) -> bool:
    return max(window.start, busy.start) < min(window.end, busy.end)


def filter_free_windows(
    candidates: Iterable[TimeWindow], merged_busy: list[BusyInterval]
) -> list[TimeWindow]:
    """
    Keep candidates that overlap no busy block.

    ``merged_busy`` must be sorted and disjoint (output of ``merge_intervals``),
    which lets the scan advance a single cursor instead of testing every pair.
    """
    free: list[TimeWindow] = []
    cursor = 0

    for window in sorted(candidates):
        # Busy blocks ending at or before this window can't touch it or any later one
        while cursor < len(merged_busy) and merged_busy[cursor].end <= window.start:
            cursor += 1

        blocked = False
        idx = cursor
        while idx < len(merged_busy) and merged_busy[idx].start < window.end:
            if conflicts(window, merged_busy[idx]):
                blocked = True
                break
            idx += 1

        if not blocked:
            free.append(window)

    return free


def local_days(range_start: datetime, range_end: datetime, tz: tzinfo) -> list[date]:
    """Every local calendar day touched by [range_start, range_end)."""
    first = range_start.astimezone(tz).date()
    last = range_end.astimezone(tz).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def local_boundary(day: date, hour: int, minute: int, tz: tzinfo) -> datetime:
    """Wall-clock time on ``day`` in ``tz``; hour 24 means midnight of the next day."""
    if hour >= 24:
        return datetime.combine(day + timedelta(days=1), time(0, minute), tzinfo=tz)
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def generate_candidate_slots(
    range_start: datetime,
    range_end: datetime,
    duration: timedelta,
    tz: tzinfo,
    day_start_hour: int,
    day_end_hour: int,
    step_minutes: int,
) -> list[TimeWindow]:
    """
    Build the fixed grid of candidate slots.

    One slot per ``step_minutes`` boundary between ``day_start_hour`` and
    ``day_end_hour`` local time, kept only when it ends inside the business
    window and lies inside the overall range.
    """
    slots: dict[datetime, TimeWindow] = {}
    step = timedelta(minutes=step_minutes)

    for day in local_days(range_start, range_end, tz):
        window_open = local_boundary(day, day_start_hour, 0, tz)
        window_close = local_boundary(day, day_end_hour, 0, tz)

        boundary = window_open
        while boundary < window_close:
            # Durations are added in absolute time so DST shifts don't stretch slots
            slot_start = boundary.astimezone(UTC)
            slot_end = slot_start + duration
            if slot_end <= window_close and slot_start >= range_start and slot_end <= range_end:
                slots.setdefault(slot_start, TimeWindow(start=slot_start, end=slot_end))
            boundary = boundary + step

    return [slots[key] for key in sorted(slots)]
