#!/usr/bin/env python3
"""Validate local PortFlow environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from portflow.domain.models import Actor, Role
from portflow.repository.data_repository import DataRepository
from portflow.services.booking_service import BookingService
from portflow.services.qr_service import QRTokenService
from portflow.services.slot_service import SlotService
from portflow.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="portflow-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("jose", "python-jose"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "portflow_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo registry seeding
        terminal = None
        try:
            repository.seed_demo_data()
            terminals = repository.list_terminals()
            if len(terminals) != 2:
                raise RuntimeError(f"expected 2 terminals, got {len(terminals)}")
            terminal = terminals[0]
            ok, line = _print_result("Demo registry: 1 port, 2 terminals", True)
        except Exception as exc:
            ok, line = _print_result("Demo registry", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Booking, QR issue and gate scan round trip
        try:
            if terminal is None:
                raise RuntimeError("no terminal available")
            truck = repository.list_trucks()[0]
            driver = repository.list_drivers()[0]
            slot_service = SlotService(repository=repository, settings=validation_settings)
            tomorrow = slot_service.local_today(repository.get_port(terminal.port_id)) + timedelta(days=1)
            slots = list(slot_service.list_slots(terminal.terminal_id, tomorrow))
            first_slot = slots[9].slot_start

            def clock() -> datetime:
                return first_slot.astimezone(timezone.utc) - timedelta(minutes=5)

            admin = Actor(user_id="env-check", role=Role.ADMIN)
            bookings = BookingService(repository=repository, settings=validation_settings, clock=clock)
            booking = bookings.create_booking(
                admin,
                terminal_id=terminal.terminal_id,
                truck_id=truck.truck_id,
                driver_id=driver.driver_id,
                slot_start=first_slot,
            )
            bookings.confirm_booking(admin, booking.booking_id)
            qr_service = QRTokenService(
                repository=repository,
                settings=validation_settings,
                booking_service=bookings,
                clock=clock,
            )
            qr = qr_service.generate_qr(admin, booking.booking_id)
            scan = qr_service.scan_qr(admin, qr.jwt_token)
            if not scan.valid:
                raise RuntimeError(scan.message)
            ok, line = _print_result(
                "Booking round trip",
                True,
                f": {booking.booking_reference} checked in ({len(slots)} slots/day)",
            )
        except Exception as exc:
            ok, line = _print_result("Booking round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" PortFlow Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
