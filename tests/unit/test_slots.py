"""Tests for slot generation and conflict checks."""

import pytest
from datetime import date, time
from zoneinfo import ZoneInfo

from app.core.scheduling.slots import (
    TimeSlot,
    free_slots,
    generate_slots,
    has_conflict,
    intervals_overlap,
)
from app.core.scheduling.types import WorkingDay
from tests.fakes import local

BOGOTA = ZoneInfo("America/Bogota")
MONDAY = date(2026, 2, 16)


class TestGenerateSlots:
    """Test fixed-length slot generation."""

    def test_covers_window(self):
        """Test 08:00-12:00 with 30 minutes gives 8 slots."""
        slots = generate_slots(MONDAY, WorkingDay(time(8, 0), time(12, 0)), 30, BOGOTA)

        assert len(slots) == 8
        assert slots[0].starts_at == local(2026, 2, 16, 8, 0)
        assert slots[-1].ends_at == local(2026, 2, 16, 12, 0)

    def test_slots_are_consecutive(self):
        slots = generate_slots(MONDAY, WorkingDay(time(8, 0), time(10, 0)), 20, BOGOTA)

        for previous, current in zip(slots, slots[1:]):
            assert previous.ends_at == current.starts_at

    def test_drops_partial_trailing_slot(self):
        """Test a window that is not a multiple of the duration."""
        slots = generate_slots(MONDAY, WorkingDay(time(8, 0), time(9, 45)), 30, BOGOTA)

        assert len(slots) == 3
        assert slots[-1].ends_at == local(2026, 2, 16, 9, 30)

    def test_window_shorter_than_duration(self):
        slots = generate_slots(MONDAY, WorkingDay(time(8, 0), time(8, 20)), 30, BOGOTA)

        assert slots == []

    @pytest.mark.parametrize("duration", [0, -15])
    def test_rejects_non_positive_duration(self, duration):
        with pytest.raises(ValueError):
            generate_slots(MONDAY, WorkingDay(time(8, 0), time(12, 0)), duration, BOGOTA)

    def test_slots_are_timezone_aware(self):
        slots = generate_slots(MONDAY, WorkingDay(time(8, 0), time(9, 0)), 30, BOGOTA)

        assert all(s.starts_at.utcoffset() is not None for s in slots)
        # 08:00 Bogota is 13:00 UTC
        assert slots[0].starts_at.astimezone(ZoneInfo("UTC")).hour == 13


class TestConflicts:
    """Test half-open interval overlap."""

    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(
            local(2026, 2, 16, 9, 0), local(2026, 2, 16, 9, 30),
            local(2026, 2, 16, 9, 30), local(2026, 2, 16, 10, 0),
        )

    def test_partial_overlap(self):
        assert intervals_overlap(
            local(2026, 2, 16, 9, 0), local(2026, 2, 16, 9, 30),
            local(2026, 2, 16, 9, 15), local(2026, 2, 16, 9, 45),
        )

    def test_containment_overlaps(self):
        assert intervals_overlap(
            local(2026, 2, 16, 9, 0), local(2026, 2, 16, 11, 0),
            local(2026, 2, 16, 9, 30), local(2026, 2, 16, 10, 0),
        )

    def test_has_conflict_against_list(self):
        booked = [
            (local(2026, 2, 16, 8, 0), local(2026, 2, 16, 8, 30)),
            (local(2026, 2, 16, 10, 0), local(2026, 2, 16, 10, 30)),
        ]

        assert has_conflict(local(2026, 2, 16, 10, 15), local(2026, 2, 16, 10, 45), booked)
        assert not has_conflict(local(2026, 2, 16, 8, 30), local(2026, 2, 16, 9, 0), booked)
        assert not has_conflict(local(2026, 2, 16, 8, 30), local(2026, 2, 16, 9, 0), [])

    def test_free_slots_hides_partially_overlapped_slot(self):
        """Test a 15-minute offset booking blocks both slots it touches."""
        candidates = generate_slots(MONDAY, WorkingDay(time(8, 0), time(10, 0)), 30, BOGOTA)
        booked = [(local(2026, 2, 16, 8, 45), local(2026, 2, 16, 9, 15))]

        free = free_slots(candidates, booked)

        starts = [s.starts_at for s in free]
        assert local(2026, 2, 16, 8, 30) not in starts
        assert local(2026, 2, 16, 9, 0) not in starts
        assert starts == [
            local(2026, 2, 16, 8, 0),
            local(2026, 2, 16, 9, 30),
        ]

    def test_timeslot_overlaps(self):
        slot = TimeSlot(local(2026, 2, 16, 9, 0), local(2026, 2, 16, 9, 30))

        assert slot.overlaps(local(2026, 2, 16, 9, 29), local(2026, 2, 16, 10, 0))
        assert not slot.overlaps(local(2026, 2, 16, 9, 30), local(2026, 2, 16, 10, 0))
