"""Slot grid reads: per-slot occupancy of a terminal day."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional

from portflow.domain.errors import NotFound, ValidationError
from portflow.domain.models import BookingStatus, Port, SlotAvailability, Terminal
from portflow.domain.slot_grid import LoadBands, SlotGrid, SlotLoad, resolve_timezone
from portflow.repository.data_repository import DataRepository
from portflow.utils.config import Settings, get_settings
from portflow.utils.timeutils import Clock, ensure_aware, parse_iso, to_utc_iso, utc_now


@dataclass(frozen=True)
class SlotPlacement:
    """Where a booking lands: grid interval plus the booking's own end."""

    grid_start: datetime
    grid_end: datetime
    booking_end: datetime

    @property
    def window(self) -> tuple[str, str]:
        return to_utc_iso(self.grid_start), to_utc_iso(self.grid_end)


class TerminalDay:
    """Restartable view of one terminal day.

    Each iteration re-reads the current bookings, so the sequence always
    reflects live occupancy and never caches across walks.
    """

    def __init__(
        self,
        repository: DataRepository,
        terminal: Terminal,
        grid: SlotGrid,
        bands: LoadBands,
    ) -> None:
        self._repository = repository
        self.terminal = terminal
        self.grid = grid
        self._bands = bands

    def __iter__(self) -> Iterator[SlotAvailability]:
        bookings = self._repository.list_terminal_bookings(
            self.terminal.terminal_id,
            window_start=to_utc_iso(self.grid.day_start),
            window_end=to_utc_iso(self.grid.day_end),
            statuses=BookingStatus.OCCUPYING,
        )
        loads = (
            SlotLoad(slot_start=parse_iso(booking.slot_start), slots_count=booking.slots_count)
            for booking in bookings
        )
        yield from self.grid.availability(loads, self.terminal.max_capacity, self._bands)


class SlotService:
    """Derives slots from port settings and live booking occupancy."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings, clock=clock)
        self._clock = clock
        self._bands = LoadBands(
            high_percent=self._settings.load_level_high_percent,
            near_full_percent=self._settings.load_level_near_full_percent,
        )

    def resolve_terminal(
        self,
        terminal_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> tuple[Terminal, Port]:
        terminal = self._repository.get_terminal(terminal_id, conn=conn)
        if terminal is None:
            raise NotFound(f"Terminal '{terminal_id}' not found")
        port = self._repository.get_port(terminal.port_id, conn=conn)
        if port is None:
            raise NotFound(f"Port '{terminal.port_id}' not found")
        return terminal, port

    def local_today(self, port: Port) -> date:
        return self._clock().astimezone(resolve_timezone(port.timezone)).date()

    def list_slots(self, terminal_id: str, day: date | None = None) -> TerminalDay:
        terminal, port = self.resolve_terminal(terminal_id)
        target_day = day or self.local_today(port)
        grid = SlotGrid(target_day, port.timezone, port.slot_duration_minutes)
        return TerminalDay(self._repository, terminal, grid, self._bands)

    def place(self, port: Port, slot_start: datetime) -> SlotPlacement:
        """Validate that ``slot_start`` is a slot boundary of its local day."""
        start = ensure_aware(slot_start)
        grid = SlotGrid.containing(start, port.timezone, port.slot_duration_minutes)
        interval = grid.slot_for(start)
        if interval is None or interval[0] != start:
            raise ValidationError(
                f"slotStart {to_utc_iso(start)} is not aligned to a "
                f"{port.slot_duration_minutes}-minute slot boundary"
            )
        return SlotPlacement(
            grid_start=interval[0],
            grid_end=interval[1],
            booking_end=interval[0] + timedelta(minutes=port.slot_duration_minutes),
        )

    def slot_of(self, port: Port, instant: datetime) -> tuple[datetime, datetime]:
        grid = SlotGrid.containing(instant, port.timezone, port.slot_duration_minutes)
        interval = grid.slot_for(instant)
        if interval is None:  # pragma: no cover - every instant falls in its own local day
            raise ValidationError("instant falls outside the local day grid")
        return interval

    def occupancy(
        self,
        terminal_id: str,
        placement: SlotPlacement,
        *,
        statuses: tuple[str, ...] = BookingStatus.OCCUPYING,
        exclude_booking_id: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        window_start, window_end = placement.window
        return self._repository.sum_slot_load(
            terminal_id,
            window_start,
            window_end,
            statuses,
            exclude_booking_id=exclude_booking_id,
            conn=conn,
        )
