"""
Slot generation and conflict checks.

Both are pure: no storage access, no clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from app.core.scheduling.types import WorkingDay


@dataclass(frozen=True)
class TimeSlot:
    """Candidate interval [starts_at, ends_at)."""

    starts_at: datetime
    ends_at: datetime

    def overlaps(self, starts_at: datetime, ends_at: datetime) -> bool:
        return intervals_overlap(self.starts_at, self.ends_at, starts_at, ends_at)


def generate_slots(
    day: date,
    window: WorkingDay,
    duration_minutes: int,
    tz: tzinfo,
) -> list[TimeSlot]:
    """Consecutive slots of fixed length covering a working window.

    Slots start at the window start and step by the duration. A trailing
    slot that would end after the window end is dropped.

    Args:
        day: Local calendar day
        window: Working window for that day
        duration_minutes: Slot length
        tz: Clinic timezone

    Returns:
        Slots ordered by start time
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    step = timedelta(minutes=duration_minutes)
    window_start = datetime.combine(day, window.start, tzinfo=tz)
    window_end = datetime.combine(day, window.end, tzinfo=tz)

    slots = []
    current = window_start
    while current + step <= window_end:
        slots.append(TimeSlot(starts_at=current, ends_at=current + step))
        current += step
    return slots


def intervals_overlap(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval overlap: touching intervals do not conflict."""
    return a_start < b_end and a_end > b_start


def has_conflict(
    starts_at: datetime,
    ends_at: datetime,
    booked: Iterable[tuple[datetime, datetime]],
) -> bool:
    """Does [starts_at, ends_at) overlap any booked interval."""
    return any(
        intervals_overlap(starts_at, ends_at, b_start, b_end)
        for b_start, b_end in booked
    )


def free_slots(
    candidates: Iterable[TimeSlot],
    booked: Iterable[tuple[datetime, datetime]],
) -> list[TimeSlot]:
    """Candidates that overlap no booked interval."""
    booked = list(booked)
    return [slot for slot in candidates if not has_conflict(slot.starts_at, slot.ends_at, booked)]
