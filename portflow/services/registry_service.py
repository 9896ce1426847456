"""Fleet registry: ports, terminals, carriers, trucks and drivers."""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Any, Optional

from portflow.domain.constraints import validate_max_capacity, validate_slot_duration
from portflow.domain.errors import Forbidden, NotFound, ValidationError
from portflow.domain.models import (
    Actor,
    BookingStatus,
    Carrier,
    Driver,
    Port,
    ResourceStatus,
    Role,
    Terminal,
    Truck,
)
from portflow.domain.slot_grid import resolve_timezone
from portflow.repository.data_repository import DataRepository
from portflow.services.audit_service import AuditService
from portflow.services.slot_service import SlotService
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, to_utc_iso, utc_now


logger = get_logger(__name__)

ENTITY_PORT = "PORT"
ENTITY_TERMINAL = "TERMINAL"
ENTITY_CARRIER = "CARRIER"
ENTITY_TRUCK = "TRUCK"
ENTITY_DRIVER = "DRIVER"


class RegistryService:
    """Maintains the reference data bookings point at.

    Carriers manage only their own trucks and drivers; every other write is
    gated at the HTTP boundary by the policy table.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        slot_service: Optional[SlotService] = None,
        audit_service: Optional[AuditService] = None,
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
        self._audit = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
            clock=clock,
        )

    def _own_carrier_id(self, actor: Actor, requested: str | None) -> str:
        if actor.role == Role.CARRIER:
            carrier = self._repository.get_carrier_by_user(actor.user_id)
            if carrier is None:
                raise Forbidden(f"User '{actor.user_id}' has no carrier profile")
            if requested and requested != carrier.carrier_id:
                raise Forbidden("Carriers can only manage their own fleet")
            return carrier.carrier_id
        if not requested:
            raise ValidationError("carrierId is required")
        if self._repository.get_carrier(requested) is None:
            raise NotFound(f"Carrier '{requested}' not found")
        return requested

    def _ensure_owns(self, actor: Actor, carrier_id: str) -> None:
        if actor.role == Role.CARRIER:
            self._own_carrier_id(actor, carrier_id)

    @staticmethod
    def _check_resource_status(value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in ResourceStatus.ALL:
            raise ValidationError(
                f"status must be one of {', '.join(ResourceStatus.ALL)}, got '{value}'"
            )
        return normalized

    # --- Ports & terminals ---

    def create_port(
        self,
        actor: Actor,
        *,
        name: str,
        timezone_name: str,
        country_code: str | None = None,
        slot_duration_minutes: int | None = None,
    ) -> Port:
        duration = slot_duration_minutes or self._settings.default_slot_duration_minutes
        try:
            validate_slot_duration(duration)
            resolve_timezone(timezone_name)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        port = self._repository.create_port(name.strip(), country_code, duration, timezone_name)
        logger.info("Port %s registered (%s, %s-minute slots)", port.name, port.timezone, duration)
        self._audit.record_for(
            actor,
            ENTITY_PORT,
            port.port_id,
            "CREATED",
            f"Port {port.name} registered with {duration}-minute slots in {port.timezone}",
        )
        return port

    def list_ports(self) -> list[Port]:
        return self._repository.list_ports()

    def create_terminal(self, actor: Actor, *, port_id: str, name: str, max_capacity: int) -> Terminal:
        try:
            validate_max_capacity(max_capacity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        port = self._repository.get_port(port_id)
        if port is None:
            raise NotFound(f"Port '{port_id}' not found")

        terminal = self._repository.create_terminal(port.port_id, name.strip(), max_capacity)
        self._audit.record_for(
            actor,
            ENTITY_TERMINAL,
            terminal.terminal_id,
            "CREATED",
            f"Terminal {terminal.name} added to {port.name} with capacity {max_capacity}",
        )
        return terminal

    def list_terminals(self, port_id: str | None = None) -> list[Terminal]:
        return self._repository.list_terminals(port_id)

    def get_terminal(self, terminal_id: str) -> Terminal:
        terminal, _ = self._slot_service.resolve_terminal(terminal_id)
        return terminal

    def update_terminal_capacity(self, actor: Actor, terminal_id: str, max_capacity: int) -> Terminal:
        """Refuses a reduction below the committed load of any open slot.

        Pending bookings are not counted: they re-check capacity when an
        operator confirms them.
        """
        try:
            validate_max_capacity(max_capacity)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        before = self.get_terminal(terminal_id)
        with self._repository.transaction() as conn:
            peak = self._repository.peak_slot_load(
                terminal_id,
                to_utc_iso(self._clock()),
                BookingStatus.COMMITTED,
                conn=conn,
            )
            if peak is not None and peak[1] > max_capacity:
                slot_start, load = peak
                raise ValidationError(
                    f"Capacity {max_capacity} is below the {load} confirmed bookings "
                    f"in slot {slot_start} at {before.name}"
                )
            if not self._repository.update_terminal_capacity(terminal_id, max_capacity, conn=conn):
                raise NotFound(f"Terminal '{terminal_id}' not found")

        logger.info(
            "Terminal %s capacity %s -> %s",
            before.name,
            before.max_capacity,
            max_capacity,
        )
        self._audit.record_for(
            actor,
            ENTITY_TERMINAL,
            terminal_id,
            "CAPACITY_UPDATED",
            f"Terminal {before.name} capacity changed from {before.max_capacity} to {max_capacity}",
        )
        return self.get_terminal(terminal_id)

    def get_terminal_capacity(self, terminal_id: str, day: date | None = None) -> dict[str, Any]:
        terminal_day = self._slot_service.list_slots(terminal_id, day)
        slots = list(terminal_day)
        return {
            "terminal": terminal_day.terminal,
            "date": terminal_day.grid.day,
            "max_capacity": terminal_day.terminal.max_capacity,
            "slots": slots,
            "booked_total": sum(slot.booked_count for slot in slots),
        }

    # --- Carriers ---

    def create_carrier(self, actor: Actor, *, user_id: str, name: str) -> Carrier:
        try:
            carrier = self._repository.create_carrier(user_id.strip(), name.strip())
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"User '{user_id}' already has a carrier profile") from exc
        self._audit.record_for(
            actor,
            ENTITY_CARRIER,
            carrier.carrier_id,
            "CREATED",
            f"Carrier {carrier.name} registered for user {carrier.user_id}",
        )
        return carrier

    def list_carriers(self) -> list[Carrier]:
        return self._repository.list_carriers()

    # --- Trucks ---

    def create_truck(self, actor: Actor, *, plate_number: str, carrier_id: str | None = None) -> Truck:
        plate = plate_number.strip().upper()
        if not plate:
            raise ValidationError("plateNumber must not be empty")
        owner_id = self._own_carrier_id(actor, carrier_id)
        try:
            truck = self._repository.create_truck(owner_id, plate)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"Truck {plate} is already registered for this carrier") from exc
        self._audit.record_for(
            actor,
            ENTITY_TRUCK,
            truck.truck_id,
            "CREATED",
            f"Truck {truck.plate_number} registered",
        )
        return truck

    def list_trucks(self, actor: Actor, carrier_id: str | None = None) -> list[Truck]:
        if actor.role == Role.CARRIER:
            carrier_id = self._own_carrier_id(actor, carrier_id)
        return self._repository.list_trucks(carrier_id)

    def set_truck_status(self, actor: Actor, truck_id: str, status: str) -> Truck:
        new_status = self._check_resource_status(status)
        truck = self._repository.get_truck(truck_id)
        if truck is None:
            raise NotFound(f"Truck '{truck_id}' not found")
        self._ensure_owns(actor, truck.carrier_id)
        self._repository.set_truck_status(truck_id, new_status)
        if new_status != truck.status:
            self._audit.record_for(
                actor,
                ENTITY_TRUCK,
                truck_id,
                "ACTIVATED" if new_status == ResourceStatus.ACTIVE else "SUSPENDED",
                f"Truck {truck.plate_number} status {truck.status} -> {new_status}",
            )
        return self._repository.get_truck(truck_id)

    # --- Drivers ---

    def create_driver(
        self,
        actor: Actor,
        *,
        user_id: str,
        full_name: str,
        carrier_id: str | None = None,
    ) -> Driver:
        owner_id = self._own_carrier_id(actor, carrier_id)
        try:
            driver = self._repository.create_driver(owner_id, user_id.strip(), full_name.strip())
        except sqlite3.IntegrityError as exc:
            raise ValidationError(f"User '{user_id}' is already registered as a driver") from exc
        self._audit.record_for(
            actor,
            ENTITY_DRIVER,
            driver.driver_id,
            "CREATED",
            f"Driver {driver.full_name} registered",
        )
        return driver

    def list_drivers(self, actor: Actor, carrier_id: str | None = None) -> list[Driver]:
        if actor.role == Role.CARRIER:
            carrier_id = self._own_carrier_id(actor, carrier_id)
        return self._repository.list_drivers(carrier_id)

    def set_driver_status(self, actor: Actor, driver_id: str, status: str) -> Driver:
        new_status = self._check_resource_status(status)
        driver = self._repository.get_driver(driver_id)
        if driver is None:
            raise NotFound(f"Driver '{driver_id}' not found")
        self._ensure_owns(actor, driver.carrier_id)
        self._repository.set_driver_status(driver_id, new_status)
        if new_status != driver.status:
            self._audit.record_for(
                actor,
                ENTITY_DRIVER,
                driver_id,
                "ACTIVATED" if new_status == ResourceStatus.ACTIVE else "SUSPENDED",
                f"Driver {driver.full_name} status {driver.status} -> {new_status}",
            )
        return self._repository.get_driver(driver_id)
