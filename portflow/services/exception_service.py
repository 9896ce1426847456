"""Operator exception detection and real-time terminal status.

Everything here is recomputed per call from the current booking set; the
operator dashboard polls, so there is no cache and no background job.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Optional

from portflow.domain.models import (
    Booking,
    BookingException,
    BookingStatus,
    ExceptionType,
    Port,
    Severity,
    Terminal,
)
from portflow.domain.slot_grid import SlotGrid
from portflow.repository.data_repository import DataRepository
from portflow.services.slot_service import SlotService
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, parse_iso, to_utc_iso, utc_now


logger = get_logger(__name__)


class ExceptionDetectionService:
    """Scans a terminal's bookings for capacity and timing anomalies."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        slot_service: Optional[SlotService] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings, clock=clock)
        self._clock = clock
        self._slot_service = slot_service or SlotService(
            repository=self._repository,
            settings=self._settings,
            clock=clock,
        )

    def _bookings_for(
        self,
        terminal: Terminal,
        port: Port,
        day: date | None,
        statuses: tuple[str, ...],
    ) -> list[Booking]:
        if day is None:
            return self._repository.list_terminal_bookings(terminal.terminal_id, statuses=statuses)
        grid = SlotGrid(day, port.timezone, port.slot_duration_minutes)
        return self._repository.list_terminal_bookings(
            terminal.terminal_id,
            window_start=to_utc_iso(grid.day_start),
            window_end=to_utc_iso(grid.day_end),
            statuses=statuses,
        )

    def _truck_plates(self, bookings: list[Booking]) -> dict[str, str]:
        plates: dict[str, str] = {}
        for booking in bookings:
            if booking.truck_id in plates:
                continue
            truck = self._repository.get_truck(booking.truck_id)
            if truck is not None:
                plates[booking.truck_id] = truck.plate_number
        return plates

    def _overbooked_slots(
        self,
        terminal: Terminal,
        port: Port,
        bookings: list[Booking],
    ) -> list[BookingException]:
        by_slot: dict[datetime, list[Booking]] = defaultdict(list)
        for booking in bookings:
            slot_start, _ = self._slot_service.slot_of(port, parse_iso(booking.slot_start))
            by_slot[slot_start].append(booking)

        plates = self._truck_plates(bookings)
        exceptions: list[BookingException] = []
        for slot_start in sorted(by_slot):
            members = by_slot[slot_start]
            load = sum(booking.slots_count for booking in members)
            excess = load - terminal.max_capacity
            if excess <= 0:
                continue
            exceptions.append(
                BookingException(
                    type=ExceptionType.OVERBOOKED_SLOT,
                    severity=Severity.HIGH,
                    message=(
                        f"Slot {to_utc_iso(slot_start)} at {terminal.name} is overbooked: "
                        f"{load}/{terminal.max_capacity} ({excess} over capacity)"
                    ),
                    slot_start=to_utc_iso(slot_start),
                    excess_count=excess,
                    bookings=[
                        {
                            "id": booking.booking_id,
                            "reference": booking.booking_reference,
                            "truck": plates.get(booking.truck_id),
                        }
                        for booking in members
                    ],
                )
            )
        return exceptions

    def _stale_pending(self, bookings: list[Booking], now: datetime) -> list[BookingException]:
        threshold = timedelta(minutes=self._settings.stale_pending_threshold_minutes)
        exceptions: list[BookingException] = []
        for booking in bookings:
            if booking.status != BookingStatus.PENDING:
                continue
            lead_time = parse_iso(booking.slot_start) - now
            if lead_time >= threshold:
                continue
            minutes = int(lead_time.total_seconds() // 60)
            timing = f"starts in {minutes} min" if minutes >= 0 else f"started {-minutes} min ago"
            exceptions.append(
                BookingException(
                    type=ExceptionType.STALE_PENDING,
                    severity=Severity.MEDIUM,
                    message=f"Booking {booking.booking_reference} is still pending and {timing}",
                    booking_id=booking.booking_id,
                    booking_reference=booking.booking_reference,
                    slot_start=booking.slot_start,
                )
            )
        return exceptions

    def _orphaned_confirmed(self, bookings: list[Booking], now: datetime) -> list[BookingException]:
        exceptions: list[BookingException] = []
        for booking in bookings:
            if booking.status != BookingStatus.CONFIRMED:
                continue
            if parse_iso(booking.slot_start) >= now:
                continue
            exceptions.append(
                BookingException(
                    type=ExceptionType.ORPHANED_CONFIRMED,
                    severity=Severity.WARNING,
                    message=(
                        f"Booking {booking.booking_reference} was confirmed for "
                        f"{booking.slot_start} but the truck has not checked in"
                    ),
                    booking_id=booking.booking_id,
                    booking_reference=booking.booking_reference,
                    slot_start=booking.slot_start,
                )
            )
        return exceptions

    def list_exceptions(self, terminal_id: str, day: date | None = None) -> list[BookingException]:
        terminal, port = self._slot_service.resolve_terminal(terminal_id)
        now = self._clock()
        bookings = self._bookings_for(terminal, port, day, BookingStatus.OCCUPYING)

        exceptions = self._overbooked_slots(terminal, port, bookings)
        exceptions.extend(self._stale_pending(bookings, now))
        exceptions.extend(self._orphaned_confirmed(bookings, now))
        if exceptions:
            logger.debug("Terminal %s has %s open exceptions", terminal.name, len(exceptions))
        return exceptions

    def get_exception_summary(self, terminal_id: str) -> dict[str, Any]:
        exceptions = self.list_exceptions(terminal_id)
        return {
            "total": len(exceptions),
            "by_type": dict(Counter(item.type for item in exceptions)),
            "by_severity": dict(Counter(item.severity for item in exceptions)),
        }

    def get_realtime_status(self, terminal_id: str) -> dict[str, Any]:
        terminal, port = self._slot_service.resolve_terminal(terminal_id)
        now = self._clock()
        today = self._slot_service.local_today(port)
        bookings_today = self._bookings_for(terminal, port, today, BookingStatus.ALL)

        slot_start, slot_end = self._slot_service.slot_of(port, now)
        plates = self._truck_plates(bookings_today)
        in_slot = [
            booking
            for booking in bookings_today
            if slot_start <= parse_iso(booking.slot_start) < slot_end
            and booking.status in BookingStatus.OCCUPYING
        ]
        drivers = {
            booking.driver_id: self._repository.get_driver(booking.driver_id)
            for booking in in_slot
        }

        counts = Counter(booking.status for booking in bookings_today)
        total = len(bookings_today)
        committed = counts[BookingStatus.CONFIRMED] + counts[BookingStatus.CONSUMED]
        utilization = round(committed / total * 100.0, 1) if total else 0.0

        return {
            "terminal_id": terminal.terminal_id,
            "timestamp": to_utc_iso(now),
            "current_slot": {
                "start": to_utc_iso(slot_start),
                "end": to_utc_iso(slot_end),
                "trucks_in_slot": sum(
                    1 for booking in in_slot if booking.status in BookingStatus.COMMITTED
                ),
                "bookings": [
                    {
                        "id": booking.booking_id,
                        "reference": booking.booking_reference,
                        "status": booking.status,
                        "truck": plates.get(booking.truck_id),
                        "driver": (
                            drivers[booking.driver_id].full_name
                            if drivers.get(booking.driver_id) is not None
                            else None
                        ),
                    }
                    for booking in in_slot
                ],
            },
            "upcoming_arrivals": sum(
                1
                for booking in bookings_today
                if booking.status == BookingStatus.CONFIRMED and parse_iso(booking.slot_start) >= slot_end
            ),
            "today_summary": {
                "total": total,
                "pending": counts[BookingStatus.PENDING],
                "confirmed": counts[BookingStatus.CONFIRMED],
                "consumed": counts[BookingStatus.CONSUMED],
                "cancelled": counts[BookingStatus.CANCELLED],
                "rejected": counts[BookingStatus.REJECTED],
            },
            "utilization_rate": utilization,
        }
