from __future__ import annotations

import pytest

from conftest import at
from portflow.domain.errors import Forbidden, NotFound, ValidationError
from portflow.domain.models import ResourceStatus
from portflow.utils.timeutils import to_utc_iso


def test_operator_overview_counts_the_local_day(world):
    world.book(8, index=0)
    world.bookings.confirm_booking(world.operator, world.book(9, index=1).booking_id)
    cancelled = world.book(10, index=2)
    world.bookings.cancel_booking(world.carrier_actor, cancelled.booking_id)

    overview = world.dashboard.get_operator_overview(world.terminal.terminal_id)

    assert overview["date"] == "2030-06-10"
    assert overview["today_bookings"] == 3
    assert overview["pending_approvals"] == 1
    assert overview["confirmed_today"] == 1
    assert overview["consumed_today"] == 0
    assert overview["cancelled_today"] == 1
    assert overview["open_exceptions"] == 0
    # one committed unit over 24 slots of capacity 2
    assert overview["utilization_rate"] == 2.1


def test_pending_approvals_skip_finished_slots(world):
    world.book(7, index=0)
    later = world.book(11, index=1)
    world.clock.set(at(8, 30))

    rows = world.dashboard.list_pending_approvals(world.terminal.terminal_id)

    assert [row["id"] for row in rows] == [later.booking_id]
    assert rows[0]["truck_plate"] == world.trucks[1].plate_number
    assert rows[0]["driver_name"] == "Driver 1"
    assert rows[0]["carrier_name"] == "Atlas Transport"
    assert rows[0]["terminal_name"] == "TC1"


def test_today_traffic_has_a_row_per_slot(world):
    arrived = world.bookings.confirm_booking(world.operator, world.book(8, index=0).booking_id)
    world.book(8, index=1)
    qr = world.qr.generate_qr(world.carrier_actor, arrived.booking_id)
    world.clock.set(at(8, 5))
    assert world.qr.scan_qr(world.operator, qr.jwt_token).valid

    rows = world.dashboard.get_today_traffic(world.terminal.terminal_id)

    assert len(rows) == 24
    eight = rows[8]
    assert eight["slot_start"] == to_utc_iso(at(8))
    assert (eight["pending"], eight["confirmed"], eight["entries"], eight["booked"]) == (1, 0, 1, 2)
    assert rows[9]["booked"] == 0


def test_operator_views_need_a_known_terminal(world):
    with pytest.raises(NotFound):
        world.dashboard.get_operator_overview("missing-terminal")
    with pytest.raises(NotFound):
        world.dashboard.get_today_traffic("missing-terminal")


def test_carrier_overview_is_scoped_to_the_callers_fleet(world):
    world.bookings.confirm_booking(world.operator, world.book(8, index=0).booking_id)
    world.book(9, index=1)
    world.bookings.create_booking(
        world.other_carrier_actor,
        terminal_id=world.terminal.terminal_id,
        truck_id=world.other_truck.truck_id,
        driver_id=world.other_driver.driver_id,
        slot_start=at(10),
    )
    world.registry.set_truck_status(world.carrier_actor, world.trucks[2].truck_id, ResourceStatus.SUSPENDED)

    overview = world.dashboard.get_carrier_overview(world.carrier_actor)

    assert overview == {
        "carrier_id": world.carrier.carrier_id,
        "total_bookings": 2,
        "pending_bookings": 1,
        "confirmed_bookings": 1,
        "upcoming_bookings": 2,
        "active_trucks": 2,
        "active_drivers": 3,
    }
    staff_view = world.dashboard.get_carrier_overview(world.admin, world.other_carrier.carrier_id)
    assert staff_view["total_bookings"] == 1


def test_carrier_dashboard_target_rules(world):
    with pytest.raises(Forbidden):
        world.dashboard.get_carrier_overview(world.carrier_actor, world.other_carrier.carrier_id)
    with pytest.raises(ValidationError):
        world.dashboard.get_fleet_status(world.operator)
    with pytest.raises(NotFound):
        world.dashboard.list_upcoming_bookings(world.admin, "missing-carrier")


def test_upcoming_bookings_exclude_started_and_closed(world):
    world.book(7, index=0)
    cancelled = world.book(9, index=1)
    world.bookings.cancel_booking(world.carrier_actor, cancelled.booking_id)
    soon = world.book(10, index=2)
    later = world.book(12, index=0)
    world.clock.set(at(7, 30))

    rows = world.dashboard.list_upcoming_bookings(world.carrier_actor)

    assert [row["id"] for row in rows] == [soon.booking_id, later.booking_id]
    assert rows[0]["terminal_name"] == "TC1"
    assert len(world.dashboard.list_upcoming_bookings(world.carrier_actor, limit=1)) == 1


def test_fleet_status_reports_next_slot_per_truck(world):
    booking = world.book(9, index=1)
    world.registry.set_driver_status(world.carrier_actor, world.drivers[2].driver_id, ResourceStatus.SUSPENDED)

    status = world.dashboard.get_fleet_status(world.carrier_actor)

    assert status["trucks"] == {"total": 3, "active": 3, "suspended": 0}
    assert status["drivers"] == {"total": 3, "active": 2, "suspended": 1}
    next_slots = {row["truck_id"]: row["next_slot_start"] for row in status["fleet"]}
    assert next_slots[world.trucks[1].truck_id] == booking.slot_start
    assert next_slots[world.trucks[0].truck_id] is None
