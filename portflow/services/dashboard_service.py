"""Operator and carrier dashboard read models."""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any, Optional

from portflow.domain.errors import Forbidden, NotFound, ValidationError
from portflow.domain.models import Actor, Booking, BookingStatus, ResourceStatus, Role, Terminal
from portflow.domain.slot_grid import SlotGrid
from portflow.repository.data_repository import DataRepository
from portflow.services.exception_service import ExceptionDetectionService
from portflow.services.slot_service import SlotService
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, parse_iso, to_utc_iso, utc_now


logger = get_logger(__name__)

UPCOMING_WINDOW = timedelta(days=7)


class DashboardService:
    """Aggregates bookings and fleet state for the landing dashboards.

    Like the exception detector, every figure is computed from the current
    booking set on each call.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        slot_service: Optional[SlotService] = None,
        exception_service: Optional[ExceptionDetectionService] = None,
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
        self._exception_service = exception_service or ExceptionDetectionService(
            repository=self._repository,
            settings=self._settings,
            slot_service=self._slot_service,
            clock=clock,
        )

    def _today(self, terminal_id: str) -> tuple[Terminal, SlotGrid, list[Booking]]:
        terminal, port = self._slot_service.resolve_terminal(terminal_id)
        grid = SlotGrid(
            self._slot_service.local_today(port),
            port.timezone,
            port.slot_duration_minutes,
        )
        bookings = self._repository.list_terminal_bookings(
            terminal.terminal_id,
            window_start=to_utc_iso(grid.day_start),
            window_end=to_utc_iso(grid.day_end),
        )
        return terminal, grid, bookings

    def _describe(self, booking: Booking, names: dict[str, str | None]) -> dict[str, Any]:
        def lookup(key: str, fetch) -> str | None:
            if key not in names:
                names[key] = fetch()
            return names[key]

        truck = lookup(
            f"truck:{booking.truck_id}",
            lambda: getattr(self._repository.get_truck(booking.truck_id), "plate_number", None),
        )
        driver = lookup(
            f"driver:{booking.driver_id}",
            lambda: getattr(self._repository.get_driver(booking.driver_id), "full_name", None),
        )
        terminal = lookup(
            f"terminal:{booking.terminal_id}",
            lambda: getattr(self._repository.get_terminal(booking.terminal_id), "name", None),
        )
        carrier = lookup(
            f"carrier:{booking.carrier_id}",
            lambda: getattr(self._repository.get_carrier(booking.carrier_id), "name", None),
        )
        return {
            "id": booking.booking_id,
            "booking_reference": booking.booking_reference,
            "slot_start": booking.slot_start,
            "slot_end": booking.slot_end,
            "slots_count": booking.slots_count,
            "status": booking.status,
            "terminal_name": terminal,
            "carrier_name": carrier,
            "truck_plate": truck,
            "driver_name": driver,
        }

    def _carrier_id_for(self, actor: Actor, requested: str | None) -> str:
        if actor.role == Role.CARRIER:
            carrier = self._repository.get_carrier_by_user(actor.user_id)
            if carrier is None:
                raise Forbidden(f"User '{actor.user_id}' has no carrier profile")
            if requested and requested != carrier.carrier_id:
                raise Forbidden("Carriers can only view their own dashboard")
            return carrier.carrier_id
        if not requested:
            raise ValidationError("carrierId is required")
        if self._repository.get_carrier(requested) is None:
            raise NotFound(f"Carrier '{requested}' not found")
        return requested

    # --- Operator ---

    def get_operator_overview(self, terminal_id: str) -> dict[str, Any]:
        """Headline counters for the terminal's local day.

        ``utilization_rate`` is committed load over the day's total slot
        capacity, in percent.
        """
        terminal, grid, bookings = self._today(terminal_id)
        now = to_utc_iso(self._clock())
        counts = Counter(booking.status for booking in bookings)
        committed_load = sum(
            booking.slots_count for booking in bookings if booking.status in BookingStatus.COMMITTED
        )
        day_capacity = terminal.max_capacity * len(grid)
        pending_open = [
            booking
            for booking in self._repository.list_terminal_bookings(
                terminal.terminal_id,
                statuses=(BookingStatus.PENDING,),
            )
            if booking.slot_end > now
        ]
        return {
            "terminal_id": terminal.terminal_id,
            "date": grid.day.isoformat(),
            "today_bookings": len(bookings),
            "pending_approvals": len(pending_open),
            "confirmed_today": counts[BookingStatus.CONFIRMED],
            "consumed_today": counts[BookingStatus.CONSUMED],
            "cancelled_today": counts[BookingStatus.CANCELLED],
            "open_exceptions": len(self._exception_service.list_exceptions(terminal.terminal_id)),
            "utilization_rate": round(committed_load / day_capacity * 100.0, 1) if day_capacity else 0.0,
        }

    def list_pending_approvals(self, terminal_id: str) -> list[dict[str, Any]]:
        """Pending bookings whose slot has not ended, soonest first."""
        terminal, _ = self._slot_service.resolve_terminal(terminal_id)
        now = to_utc_iso(self._clock())
        names: dict[str, str | None] = {}
        return [
            self._describe(booking, names)
            for booking in self._repository.list_terminal_bookings(
                terminal.terminal_id,
                statuses=(BookingStatus.PENDING,),
            )
            if booking.slot_end > now
        ]

    def get_today_traffic(self, terminal_id: str) -> list[dict[str, Any]]:
        """One row per slot of the local day with booked and gate counts."""
        terminal, grid, bookings = self._today(terminal_id)
        rows: list[dict[str, Any]] = []
        for slot_start, slot_end in grid:
            members = [
                booking
                for booking in bookings
                if slot_start <= parse_iso(booking.slot_start) < slot_end
            ]
            loads: Counter[str] = Counter()
            for booking in members:
                loads[booking.status] += booking.slots_count
            rows.append(
                {
                    "slot_start": to_utc_iso(slot_start),
                    "slot_end": to_utc_iso(slot_end),
                    "max_capacity": terminal.max_capacity,
                    "pending": loads[BookingStatus.PENDING],
                    "confirmed": loads[BookingStatus.CONFIRMED],
                    "entries": loads[BookingStatus.CONSUMED],
                    "booked": sum(loads[status] for status in BookingStatus.OCCUPYING),
                }
            )
        return rows

    # --- Carrier ---

    def get_carrier_overview(self, actor: Actor, carrier_id: str | None = None) -> dict[str, Any]:
        owner_id = self._carrier_id_for(actor, carrier_id)
        now = self._clock()
        bookings = self._repository.list_bookings(carrier_id=owner_id)
        counts = Counter(booking.status for booking in bookings)
        upcoming = [
            booking
            for booking in bookings
            if booking.status in BookingStatus.MUTABLE
            and now <= parse_iso(booking.slot_start) < now + UPCOMING_WINDOW
        ]
        trucks = self._repository.list_trucks(owner_id)
        drivers = self._repository.list_drivers(owner_id)
        return {
            "carrier_id": owner_id,
            "total_bookings": len(bookings),
            "pending_bookings": counts[BookingStatus.PENDING],
            "confirmed_bookings": counts[BookingStatus.CONFIRMED],
            "upcoming_bookings": len(upcoming),
            "active_trucks": sum(1 for truck in trucks if truck.status == ResourceStatus.ACTIVE),
            "active_drivers": sum(1 for driver in drivers if driver.status == ResourceStatus.ACTIVE),
        }

    def list_upcoming_bookings(
        self,
        actor: Actor,
        carrier_id: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Pending and confirmed bookings that have not started, soonest first."""
        owner_id = self._carrier_id_for(actor, carrier_id)
        now = to_utc_iso(self._clock())
        names: dict[str, str | None] = {}
        upcoming = [
            booking
            for booking in self._repository.list_bookings(carrier_id=owner_id)
            if booking.status in BookingStatus.MUTABLE and booking.slot_start >= now
        ]
        return [self._describe(booking, names) for booking in upcoming[:limit]]

    def get_fleet_status(self, actor: Actor, carrier_id: str | None = None) -> dict[str, Any]:
        owner_id = self._carrier_id_for(actor, carrier_id)
        now = to_utc_iso(self._clock())
        trucks = self._repository.list_trucks(owner_id)
        drivers = self._repository.list_drivers(owner_id)

        next_slot: dict[str, str] = {}
        for booking in self._repository.list_bookings(carrier_id=owner_id):
            if booking.status in BookingStatus.MUTABLE and booking.slot_end > now:
                next_slot.setdefault(booking.truck_id, booking.slot_start)

        truck_status = Counter(truck.status for truck in trucks)
        driver_status = Counter(driver.status for driver in drivers)
        return {
            "carrier_id": owner_id,
            "trucks": {
                "total": len(trucks),
                "active": truck_status[ResourceStatus.ACTIVE],
                "suspended": truck_status[ResourceStatus.SUSPENDED],
            },
            "drivers": {
                "total": len(drivers),
                "active": driver_status[ResourceStatus.ACTIVE],
                "suspended": driver_status[ResourceStatus.SUSPENDED],
            },
            "fleet": [
                {
                    "truck_id": truck.truck_id,
                    "plate_number": truck.plate_number,
                    "status": truck.status,
                    "next_slot_start": next_slot.get(truck.truck_id),
                }
                for truck in trucks
            ],
        }
