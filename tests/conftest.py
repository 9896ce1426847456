"""Pytest fixtures: an isolated SQLite registry with a controllable clock."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import pytest

from portflow.domain.models import Actor, Carrier, Driver, Port, Role, Terminal, Truck
from portflow.repository.data_repository import DataRepository
from portflow.services.audit_service import AuditService
from portflow.services.booking_service import BookingService
from portflow.services.dashboard_service import DashboardService
from portflow.services.exception_service import ExceptionDetectionService
from portflow.services.qr_service import QRTokenService
from portflow.services.registry_service import RegistryService
from portflow.services.slot_service import SlotService
from portflow.utils.config import Settings, get_settings


BOOKING_DAY = datetime(2030, 6, 10, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    """UTC instant on the booking day used across the suite."""
    return BOOKING_DAY.replace(hour=hour, minute=minute)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)

    def set(self, now: datetime) -> None:
        self.now = now


@dataclass
class World:
    settings: Settings
    clock: FrozenClock
    repository: DataRepository
    audit: AuditService
    slots: SlotService
    bookings: BookingService
    exceptions: ExceptionDetectionService
    dashboard: DashboardService
    qr: QRTokenService
    registry: RegistryService

    port: Port
    terminal: Terminal
    carrier: Carrier
    trucks: list[Truck]
    drivers: list[Driver]
    other_carrier: Carrier
    other_truck: Truck
    other_driver: Driver

    admin: Actor
    operator: Actor
    carrier_actor: Actor
    other_carrier_actor: Actor

    def driver_actor(self, index: int = 0) -> Actor:
        return Actor(user_id=self.drivers[index].user_id, role=Role.DRIVER)

    def book(self, hour: int, index: int = 0, actor: Actor | None = None, **kwargs):
        return self.bookings.create_booking(
            actor or self.carrier_actor,
            terminal_id=kwargs.pop("terminal_id", self.terminal.terminal_id),
            truck_id=self.trucks[index].truck_id,
            driver_id=self.drivers[index].driver_id,
            slot_start=at(hour),
            **kwargs,
        )


def build_test_settings(tmp_path, filename: str = "portflow_test.db", **overrides) -> Settings:
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        jwt_secret_key="test-secret-key",
        admin_token="test-admin-token",
        **overrides,
    )


def build_world(tmp_path, max_capacity: int = 2, **overrides) -> World:
    settings = build_test_settings(tmp_path, **overrides)
    clock = FrozenClock(at(6))
    repository = DataRepository(settings, clock=clock)
    repository.initialize_database()

    audit = AuditService(repository=repository, settings=settings, clock=clock)
    slots = SlotService(repository=repository, settings=settings, clock=clock)
    bookings = BookingService(
        repository=repository,
        settings=settings,
        slot_service=slots,
        audit_service=audit,
        clock=clock,
    )
    exceptions = ExceptionDetectionService(
        repository=repository,
        settings=settings,
        slot_service=slots,
        clock=clock,
    )
    dashboard = DashboardService(
        repository=repository,
        settings=settings,
        slot_service=slots,
        exception_service=exceptions,
        clock=clock,
    )
    qr = QRTokenService(
        repository=repository,
        settings=settings,
        booking_service=bookings,
        audit_service=audit,
        clock=clock,
    )
    registry = RegistryService(
        repository=repository,
        settings=settings,
        slot_service=slots,
        audit_service=audit,
        clock=clock,
    )

    admin = Actor(user_id="admin-1", role=Role.ADMIN)
    port = registry.create_port(admin, name="Port of Tanger Med", timezone_name="UTC", country_code="MA")
    terminal = registry.create_terminal(admin, port_id=port.port_id, name="TC1", max_capacity=max_capacity)
    carrier = registry.create_carrier(admin, user_id="carrier-user", name="Atlas Transport")
    trucks = [
        registry.create_truck(admin, plate_number=f"1000{i}-A-1", carrier_id=carrier.carrier_id)
        for i in range(3)
    ]
    drivers = [
        registry.create_driver(
            admin,
            user_id=f"driver-user-{i}",
            full_name=f"Driver {i}",
            carrier_id=carrier.carrier_id,
        )
        for i in range(3)
    ]
    other_carrier = registry.create_carrier(admin, user_id="other-carrier-user", name="Rif Logistics")
    other_truck = registry.create_truck(admin, plate_number="999-B-9", carrier_id=other_carrier.carrier_id)
    other_driver = registry.create_driver(
        admin,
        user_id="other-driver-user",
        full_name="Other Driver",
        carrier_id=other_carrier.carrier_id,
    )

    return World(
        settings=settings,
        clock=clock,
        repository=repository,
        audit=audit,
        slots=slots,
        bookings=bookings,
        exceptions=exceptions,
        dashboard=dashboard,
        qr=qr,
        registry=registry,
        port=port,
        terminal=terminal,
        carrier=carrier,
        trucks=trucks,
        drivers=drivers,
        other_carrier=other_carrier,
        other_truck=other_truck,
        other_driver=other_driver,
        admin=admin,
        operator=Actor(user_id="operator-1", role=Role.OPERATOR),
        carrier_actor=Actor(user_id="carrier-user", role=Role.CARRIER),
        other_carrier_actor=Actor(user_id="other-carrier-user", role=Role.CARRIER),
    )


@pytest.fixture
def world(tmp_path) -> World:
    return build_world(tmp_path)
