"""Tests for slot discretization and per-slot occupancy."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from portflow.domain.slot_grid import LoadBands, LoadLevel, SlotGrid, SlotLoad, resolve_timezone


UTC = timezone.utc
DAY = date(2030, 6, 10)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2030, 6, 10, hour, minute, tzinfo=UTC)


def test_hourly_grid_covers_the_whole_day() -> None:
    grid = SlotGrid(DAY, "UTC", 60)
    slots = list(grid)

    assert len(slots) == 24
    assert slots[0] == (_at(0), _at(1))
    assert slots[-1][1] == datetime(2030, 6, 11, tzinfo=UTC)
    for (_, end), (next_start, _) in zip(slots, slots[1:]):
        assert end == next_start


def test_last_slot_is_truncated_when_duration_does_not_divide_day() -> None:
    grid = SlotGrid(DAY, "UTC", 100)
    slots = list(grid)

    assert len(slots) == 15
    last_start, last_end = slots[-1]
    assert last_start == _at(23, 20)
    assert last_end == datetime(2030, 6, 11, tzinfo=UTC)
    assert last_end - last_start == timedelta(minutes=40)


def test_grid_is_restartable() -> None:
    grid = SlotGrid(DAY, "UTC", 30)
    assert list(grid) == list(grid)
    assert len(grid) == 48


def test_local_day_follows_port_timezone() -> None:
    grid = SlotGrid(DAY, "Europe/Paris", 60)

    assert grid.day_start == datetime(2030, 6, 9, 22, 0, tzinfo=UTC)
    assert grid.day_end == datetime(2030, 6, 10, 22, 0, tzinfo=UTC)
    assert len(grid) == 24


def test_spring_forward_day_has_one_slot_less() -> None:
    grid = SlotGrid(date(2030, 3, 31), "Europe/Paris", 60)
    assert len(grid) == 23


def test_alignment_and_slot_lookup() -> None:
    grid = SlotGrid(DAY, "UTC", 60)

    assert grid.is_aligned(_at(8))
    assert not grid.is_aligned(_at(8, 15))
    assert grid.slot_for(_at(8, 15)) == (_at(8), _at(9))
    assert grid.slot_for(datetime(2030, 6, 11, 0, 30, tzinfo=UTC)) is None


def test_containing_uses_local_day_of_instant() -> None:
    grid = SlotGrid.containing(datetime(2030, 6, 9, 23, 30, tzinfo=UTC), "Europe/Paris", 60)
    assert grid.day == DAY


def test_availability_sums_weighted_bookings_per_slot() -> None:
    grid = SlotGrid(DAY, "UTC", 60)
    loads = [
        SlotLoad(slot_start=_at(8), slots_count=2),
        SlotLoad(slot_start=_at(8), slots_count=1),
        SlotLoad(slot_start=_at(9), slots_count=1),
        SlotLoad(slot_start=datetime(2030, 6, 11, 8, tzinfo=UTC), slots_count=5),
    ]

    slots = list(grid.availability(loads, max_capacity=2))

    by_start = {slot.slot_start: slot for slot in slots}
    assert by_start[_at(8)].booked_count == 3
    assert by_start[_at(8)].available_count == 0
    assert by_start[_at(8)].is_overbooked
    assert by_start[_at(9)].booked_count == 1
    assert by_start[_at(9)].available_count == 1
    assert sum(slot.booked_count for slot in slots) == 4


def test_load_bands_classification() -> None:
    bands = LoadBands(high_percent=70.0, near_full_percent=95.0)

    assert bands.classify(13, 20) == LoadLevel.AVAILABLE
    assert bands.classify(14, 20) == LoadLevel.HIGH
    assert bands.classify(19, 20) == LoadLevel.NEAR_FULL
    assert bands.classify(25, 20) == LoadLevel.NEAR_FULL


@pytest.mark.parametrize("minutes", [0, -30, 1441])
def test_invalid_slot_duration_raises(minutes: int) -> None:
    with pytest.raises(ValueError):
        SlotGrid(DAY, "UTC", minutes)


def test_unknown_timezone_raises() -> None:
    with pytest.raises(ValueError):
        resolve_timezone("Mars/Olympus_Mons")
