"""Deterministic slot discretization of a port-local day."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from portflow.domain.constraints import validate_slot_duration
from portflow.domain.models import SlotAvailability
from portflow.utils.timeutils import ensure_aware


class LoadLevel:
    AVAILABLE = "AVAILABLE"
    HIGH = "HIGH"
    NEAR_FULL = "NEAR_FULL"


@dataclass(frozen=True)
class LoadBands:
    high_percent: float = 70.0
    near_full_percent: float = 95.0

    def classify(self, booked: int, capacity: int) -> str:
        percent = (booked / capacity) * 100.0 if capacity else 100.0
        if percent >= self.near_full_percent:
            return LoadLevel.NEAR_FULL
        if percent >= self.high_percent:
            return LoadLevel.HIGH
        return LoadLevel.AVAILABLE


@dataclass(frozen=True)
class SlotLoad:
    """Minimal booking projection the grid needs to compute occupancy."""

    slot_start: datetime
    slots_count: int


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone '{name}'") from exc


class SlotGrid:
    """Slots of one local day: ``[day_start + k*d, day_start + (k+1)*d)``.

    Iterating yields ``(start, end)`` pairs in UTC, ordered by start. The last
    slot is truncated at local midnight when the duration does not divide the
    day. Each iteration regenerates the sequence, so a grid can be walked any
    number of times.
    """

    def __init__(self, day: date, tz_name: str, slot_duration_minutes: int) -> None:
        validate_slot_duration(slot_duration_minutes)
        self.day = day
        self.tz_name = tz_name
        self._tz = resolve_timezone(tz_name)
        self.slot_duration = timedelta(minutes=slot_duration_minutes)

    @classmethod
    def containing(
        cls,
        instant: datetime,
        tz_name: str,
        slot_duration_minutes: int,
    ) -> "SlotGrid":
        """Grid of the port-local day that ``instant`` falls on."""
        local = ensure_aware(instant).astimezone(resolve_timezone(tz_name))
        return cls(local.date(), tz_name, slot_duration_minutes)

    @property
    def day_start(self) -> datetime:
        return datetime.combine(self.day, time(0), tzinfo=self._tz).astimezone(timezone.utc)

    @property
    def day_end(self) -> datetime:
        next_day = self.day + timedelta(days=1)
        return datetime.combine(next_day, time(0), tzinfo=self._tz).astimezone(timezone.utc)

    def __iter__(self) -> Iterator[tuple[datetime, datetime]]:
        # Step in absolute time so DST days yield 23 or 25 hourly slots.
        day_end = self.day_end
        start = self.day_start
        while start < day_end:
            end = start + self.slot_duration
            yield start, min(end, day_end)
            start = end

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def starts(self) -> list[datetime]:
        return [start for start, _ in self]

    def is_aligned(self, instant: datetime) -> bool:
        target = ensure_aware(instant).astimezone(timezone.utc)
        return any(start == target for start, _ in self)

    def slot_for(self, instant: datetime) -> tuple[datetime, datetime] | None:
        target = ensure_aware(instant).astimezone(timezone.utc)
        for start, end in self:
            if start <= target < end:
                return start, end
        return None

    def availability(
        self,
        loads: Iterable[SlotLoad],
        max_capacity: int,
        bands: LoadBands | None = None,
    ) -> Iterator[SlotAvailability]:
        """Yield per-slot occupancy for the given active bookings.

        Bookings whose start falls outside this day are ignored.
        """
        bands = bands or LoadBands()
        slots = list(self)
        starts = [start for start, _ in slots]
        booked = [0] * len(slots)
        for load in loads:
            instant = ensure_aware(load.slot_start).astimezone(timezone.utc)
            index = bisect_right(starts, instant) - 1
            if index < 0 or instant >= slots[index][1]:
                continue
            booked[index] += load.slots_count

        for (start, end), count in zip(slots, booked):
            yield SlotAvailability(
                slot_start=start,
                slot_end=end,
                booked_count=count,
                available_count=max(0, max_capacity - count),
                max_capacity=max_capacity,
                load_level=bands.classify(count, max_capacity),
            )
