"""Booking lifecycle: create, confirm, reject, cancel, reassign, modify, override."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Callable, Optional, Sequence

from portflow.domain.errors import (
    BookingError,
    CapacityExceeded,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from portflow.domain.models import (
    Actor,
    Booking,
    BookingStatus,
    BulkResult,
    Carrier,
    ResourceStatus,
    Role,
    Terminal,
)
from portflow.domain.policy import is_allowed
from portflow.domain.reference import build_reference
from portflow.repository.data_repository import DataRepository, new_id
from portflow.services.audit_service import AuditService
from portflow.services.slot_service import SlotPlacement, SlotService
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, ensure_aware, parse_iso, to_utc_iso, utc_now


logger = get_logger(__name__)

ENTITY_BOOKING = "BOOKING"
REFERENCE_SEQUENCE = "booking_reference"


class BookingService:
    """Applies state transitions to bookings against slot capacity.

    Every mutation runs in one serialized repository transaction: the
    capacity check and the write see the same committed state, so two
    callers racing for the last unit of a slot cannot both succeed. Audit
    entries are written after commit.
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

    # --- Helpers ---

    def _carrier_of(self, actor: Actor, conn: sqlite3.Connection | None = None) -> Carrier:
        carrier = self._repository.get_carrier_by_user(actor.user_id, conn=conn)
        if carrier is None:
            raise Forbidden(f"User '{actor.user_id}' has no carrier profile")
        return carrier

    def _ensure_can_touch(
        self,
        actor: Actor,
        booking: Booking,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        if actor.role == Role.CARRIER:
            if self._carrier_of(actor, conn).carrier_id != booking.carrier_id:
                raise Forbidden("Booking belongs to another carrier")
        elif actor.role == Role.DRIVER:
            driver = self._repository.get_driver_by_user(actor.user_id, conn=conn)
            if driver is None or driver.driver_id != booking.driver_id:
                raise Forbidden("Booking is assigned to another driver")

    def _load(self, booking_id: str, conn: sqlite3.Connection | None = None) -> Booking:
        booking = self._repository.get_booking(booking_id, conn=conn)
        if booking is None:
            raise NotFound(f"Booking '{booking_id}' not found")
        return booking

    def _validate_fleet(
        self,
        carrier_id: str,
        truck_id: str,
        driver_id: str,
        conn: sqlite3.Connection,
    ) -> None:
        truck = self._repository.get_truck(truck_id, conn=conn)
        if truck is None:
            raise NotFound(f"Truck '{truck_id}' not found")
        if truck.carrier_id != carrier_id:
            raise ValidationError(f"Truck {truck.plate_number} does not belong to the carrier")
        if truck.status != ResourceStatus.ACTIVE:
            raise ValidationError(f"Truck {truck.plate_number} is suspended")

        driver = self._repository.get_driver(driver_id, conn=conn)
        if driver is None:
            raise NotFound(f"Driver '{driver_id}' not found")
        if driver.carrier_id != carrier_id:
            raise ValidationError(f"Driver {driver.full_name} does not belong to the carrier")
        if driver.status != ResourceStatus.ACTIVE:
            raise ValidationError(f"Driver {driver.full_name} is suspended")

    def _ensure_capacity(
        self,
        terminal: Terminal,
        placement: SlotPlacement,
        slots_count: int,
        conn: sqlite3.Connection,
        *,
        statuses: tuple[str, ...] = BookingStatus.OCCUPYING,
        exclude_booking_id: str | None = None,
    ) -> None:
        load = self._slot_service.occupancy(
            terminal.terminal_id,
            placement,
            statuses=statuses,
            exclude_booking_id=exclude_booking_id,
            conn=conn,
        )
        if load + slots_count > terminal.max_capacity:
            raise CapacityExceeded(
                f"Slot {to_utc_iso(placement.grid_start)} at {terminal.name} is full "
                f"({load}/{terminal.max_capacity} booked, {slots_count} requested)"
            )

    def _transition(
        self,
        actor: Actor,
        booking_id: str,
        *,
        expected: Sequence[str],
        target: str,
        action: str,
        description: Callable[[Booking], str],
        check: Callable[[Booking, sqlite3.Connection], None] | None = None,
    ) -> Booking:
        with self._repository.transaction() as conn:
            booking = self._load(booking_id, conn)
            if booking.status not in expected:
                raise InvalidState(
                    f"Booking {booking.booking_reference} is {booking.status}; "
                    f"{action.lower()} requires {' or '.join(expected)}"
                )
            if check is not None:
                check(booking, conn)
            if not self._repository.transition_booking_status(booking_id, expected, target, conn):
                raise InvalidState(f"Booking {booking.booking_reference} changed concurrently")
            updated = self._load(booking_id, conn)

        logger.info("Booking %s %s -> %s", updated.booking_reference, booking.status, target)
        self._audit.record_for(actor, ENTITY_BOOKING, booking_id, action, description(updated))
        return updated

    # --- Reads ---

    def get_booking(self, actor: Actor, booking_id: str) -> Booking:
        booking = self._load(booking_id)
        self._ensure_can_touch(actor, booking)
        return booking

    def list_bookings(
        self,
        actor: Actor,
        *,
        status: str | None = None,
        carrier_id: str | None = None,
        terminal_id: str | None = None,
    ) -> list[Booking]:
        if status is not None and status not in BookingStatus.ALL:
            raise ValidationError(f"Unknown booking status '{status}'")
        driver_id = None
        if actor.role == Role.CARRIER:
            carrier_id = self._carrier_of(actor).carrier_id
        elif actor.role == Role.DRIVER:
            driver = self._repository.get_driver_by_user(actor.user_id)
            if driver is None:
                return []
            driver_id = driver.driver_id
        return self._repository.list_bookings(
            status=status,
            carrier_id=carrier_id,
            terminal_id=terminal_id,
            driver_id=driver_id,
        )

    # --- Transitions ---

    def create_booking(
        self,
        actor: Actor,
        *,
        terminal_id: str,
        truck_id: str,
        driver_id: str,
        slot_start: datetime,
        slots_count: int = 1,
        carrier_id: str | None = None,
        container_matricule: str | None = None,
    ) -> Booking:
        if slots_count < 1:
            raise ValidationError("slotsCount must be at least 1")

        with self._repository.transaction() as conn:
            terminal, port = self._slot_service.resolve_terminal(terminal_id, conn)

            if actor.role == Role.CARRIER:
                resolved_carrier_id = self._carrier_of(actor, conn).carrier_id
                if carrier_id and carrier_id != resolved_carrier_id:
                    raise Forbidden("Carriers can only book for themselves")
            elif carrier_id:
                if self._repository.get_carrier(carrier_id, conn=conn) is None:
                    raise NotFound(f"Carrier '{carrier_id}' not found")
                resolved_carrier_id = carrier_id
            else:
                truck = self._repository.get_truck(truck_id, conn=conn)
                if truck is None:
                    raise NotFound(f"Truck '{truck_id}' not found")
                resolved_carrier_id = truck.carrier_id

            self._validate_fleet(resolved_carrier_id, truck_id, driver_id, conn)
            placement = self._slot_service.place(port, slot_start)
            self._ensure_capacity(terminal, placement, slots_count, conn)

            now = self._clock()
            sequence = self._repository.next_sequence(REFERENCE_SEQUENCE, conn)
            booking = Booking(
                booking_id=new_id(),
                booking_reference=build_reference(now.date(), sequence),
                terminal_id=terminal.terminal_id,
                truck_id=truck_id,
                carrier_id=resolved_carrier_id,
                driver_id=driver_id,
                slot_start=to_utc_iso(placement.grid_start),
                slot_end=to_utc_iso(placement.booking_end),
                slots_count=slots_count,
                status=BookingStatus.PENDING,
                container_matricule=container_matricule,
                override_reason=None,
                created_at=to_utc_iso(now),
                updated_at=to_utc_iso(now),
            )
            self._repository.insert_booking(booking, conn)

        logger.info(
            "Booking %s created at %s slot %s",
            booking.booking_reference,
            terminal.name,
            booking.slot_start,
        )
        self._audit.record_for(
            actor,
            ENTITY_BOOKING,
            booking.booking_id,
            "CREATED",
            f"Booking {booking.booking_reference} requested for {terminal.name} "
            f"at {booking.slot_start} ({slots_count} slot unit(s))",
        )
        return booking

    def confirm_booking(self, actor: Actor, booking_id: str) -> Booking:
        def check(booking: Booking, conn: sqlite3.Connection) -> None:
            terminal, port = self._slot_service.resolve_terminal(booking.terminal_id, conn)
            placement = self._slot_service.place(port, parse_iso(booking.slot_start))
            self._ensure_capacity(
                terminal,
                placement,
                booking.slots_count,
                conn,
                statuses=BookingStatus.COMMITTED,
                exclude_booking_id=booking.booking_id,
            )

        return self._transition(
            actor,
            booking_id,
            expected=(BookingStatus.PENDING,),
            target=BookingStatus.CONFIRMED,
            action="CONFIRMED",
            description=lambda b: f"Booking {b.booking_reference} confirmed",
            check=check,
        )

    def reject_booking(self, actor: Actor, booking_id: str, reason: str | None = None) -> Booking:
        suffix = f": {reason.strip()}" if reason and reason.strip() else ""
        return self._transition(
            actor,
            booking_id,
            expected=(BookingStatus.PENDING,),
            target=BookingStatus.REJECTED,
            action="REJECTED",
            description=lambda b: f"Booking {b.booking_reference} rejected{suffix}",
        )

    def cancel_booking(self, actor: Actor, booking_id: str) -> Booking:
        def check(booking: Booking, conn: sqlite3.Connection) -> None:
            if not is_allowed(actor.role, "booking:cancel"):
                raise Forbidden("Only the owning carrier or an admin can cancel a booking")
            self._ensure_can_touch(actor, booking, conn)
            if parse_iso(booking.slot_start) <= self._clock():
                raise Forbidden(
                    f"Booking {booking.booking_reference} cannot be cancelled after its slot started"
                )

        return self._transition(
            actor,
            booking_id,
            expected=BookingStatus.MUTABLE,
            target=BookingStatus.CANCELLED,
            action="CANCELLED",
            description=lambda b: f"Booking {b.booking_reference} cancelled",
            check=check,
        )

    def _bulk(
        self,
        booking_ids: Sequence[str],
        operation: Callable[[str], Booking],
        label: str,
    ) -> BulkResult:
        succeeded = 0
        failed: list[str] = []
        for booking_id in dict.fromkeys(booking_ids):
            try:
                operation(booking_id)
                succeeded += 1
            except BookingError as exc:
                logger.info("Bulk %s skipped booking %s: %s", label, booking_id, exc)
                failed.append(booking_id)
            except sqlite3.Error:
                logger.exception("Bulk %s failed for booking %s", label, booking_id)
                failed.append(booking_id)
        return BulkResult(succeeded=succeeded, failed=failed)

    def bulk_confirm(self, actor: Actor, booking_ids: Sequence[str]) -> BulkResult:
        return self._bulk(
            booking_ids,
            lambda booking_id: self.confirm_booking(actor, booking_id),
            "confirm",
        )

    def bulk_reject(
        self,
        actor: Actor,
        booking_ids: Sequence[str],
        reason: str | None = None,
    ) -> BulkResult:
        return self._bulk(
            booking_ids,
            lambda booking_id: self.reject_booking(actor, booking_id, reason),
            "reject",
        )

    def reassign_slot(self, actor: Actor, booking_id: str, new_slot_start: datetime) -> Booking:
        with self._repository.transaction() as conn:
            booking = self._load(booking_id, conn)
            if booking.status not in BookingStatus.MUTABLE:
                raise InvalidState(
                    f"Booking {booking.booking_reference} is {booking.status} and cannot be reassigned"
                )
            terminal, port = self._slot_service.resolve_terminal(booking.terminal_id, conn)
            placement = self._slot_service.place(port, new_slot_start)
            self._ensure_capacity(
                terminal,
                placement,
                booking.slots_count,
                conn,
                exclude_booking_id=booking.booking_id,
            )
            self._repository.update_booking_assignment(
                booking.booking_id,
                terminal_id=booking.terminal_id,
                truck_id=booking.truck_id,
                driver_id=booking.driver_id,
                slot_start=to_utc_iso(placement.grid_start),
                slot_end=to_utc_iso(placement.booking_end),
                conn=conn,
            )
            updated = self._load(booking_id, conn)

        logger.info(
            "Booking %s moved %s -> %s",
            updated.booking_reference,
            booking.slot_start,
            updated.slot_start,
        )
        self._audit.record_for(
            actor,
            ENTITY_BOOKING,
            booking_id,
            "SLOT_REASSIGNED",
            f"Booking {updated.booking_reference} moved from {booking.slot_start} "
            f"to {updated.slot_start}",
        )
        return updated

    def modify_booking(
        self,
        actor: Actor,
        booking_id: str,
        *,
        truck_id: str | None = None,
        driver_id: str | None = None,
        terminal_id: str | None = None,
        slot_start: datetime | None = None,
    ) -> Booking:
        with self._repository.transaction() as conn:
            booking = self._load(booking_id, conn)
            self._ensure_can_touch(actor, booking, conn)
            if booking.status not in BookingStatus.MUTABLE:
                raise InvalidState(
                    f"Booking {booking.booking_reference} is {booking.status} and cannot be modified"
                )

            new_truck_id = truck_id or booking.truck_id
            new_driver_id = driver_id or booking.driver_id
            new_terminal_id = terminal_id or booking.terminal_id
            new_start = ensure_aware(slot_start) if slot_start else parse_iso(booking.slot_start)

            self._validate_fleet(booking.carrier_id, new_truck_id, new_driver_id, conn)
            terminal, port = self._slot_service.resolve_terminal(new_terminal_id, conn)
            placement = self._slot_service.place(port, new_start)
            moved = (
                new_terminal_id != booking.terminal_id
                or to_utc_iso(placement.grid_start) != booking.slot_start
            )
            if moved:
                self._ensure_capacity(
                    terminal,
                    placement,
                    booking.slots_count,
                    conn,
                    exclude_booking_id=booking.booking_id,
                )
            self._repository.update_booking_assignment(
                booking.booking_id,
                terminal_id=new_terminal_id,
                truck_id=new_truck_id,
                driver_id=new_driver_id,
                slot_start=to_utc_iso(placement.grid_start),
                slot_end=to_utc_iso(placement.booking_end),
                conn=conn,
            )
            updated = self._load(booking_id, conn)

        changes = [
            name
            for name, before, after in (
                ("truck", booking.truck_id, updated.truck_id),
                ("driver", booking.driver_id, updated.driver_id),
                ("terminal", booking.terminal_id, updated.terminal_id),
                ("slot", booking.slot_start, updated.slot_start),
            )
            if before != after
        ]
        self._audit.record_for(
            actor,
            ENTITY_BOOKING,
            booking_id,
            "MODIFIED",
            f"Booking {updated.booking_reference} modified ({', '.join(changes) or 'no changes'})",
        )
        return updated

    def manual_override(
        self,
        actor: Actor,
        booking_id: str,
        reason: str,
        slot_start: datetime | None = None,
    ) -> Booking:
        """Force CONFIRMED regardless of capacity.

        The resulting overallocation stays visible as an OVERBOOKED_SLOT
        exception until a booking in that slot is cancelled or moved.
        """
        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise ValidationError("An override reason is required")

        with self._repository.transaction() as conn:
            booking = self._load(booking_id, conn)
            if booking.status not in BookingStatus.OVERRIDABLE:
                raise InvalidState(
                    f"Booking {booking.booking_reference} is {booking.status} and cannot be overridden"
                )
            if slot_start is not None:
                _, port = self._slot_service.resolve_terminal(booking.terminal_id, conn)
                placement = self._slot_service.place(port, slot_start)
                self._repository.update_booking_assignment(
                    booking.booking_id,
                    terminal_id=booking.terminal_id,
                    truck_id=booking.truck_id,
                    driver_id=booking.driver_id,
                    slot_start=to_utc_iso(placement.grid_start),
                    slot_end=to_utc_iso(placement.booking_end),
                    conn=conn,
                )
            if not self._repository.transition_booking_status(
                booking_id,
                BookingStatus.OVERRIDABLE,
                BookingStatus.CONFIRMED,
                conn,
                override_reason=cleaned_reason,
            ):
                raise InvalidState(f"Booking {booking.booking_reference} changed concurrently")
            updated = self._load(booking_id, conn)

        logger.warning(
            "Booking %s force-confirmed at %s by %s: %s",
            updated.booking_reference,
            updated.slot_start,
            actor.user_id,
            cleaned_reason,
        )
        self._audit.record_for(
            actor,
            ENTITY_BOOKING,
            booking_id,
            "OVERRIDDEN",
            f"Booking {updated.booking_reference} force-confirmed from {booking.status} "
            f"at {updated.slot_start}: {cleaned_reason}",
        )
        return updated
