from __future__ import annotations

import pytest

from conftest import at
from portflow.domain.errors import Forbidden, NotFound, ValidationError
from portflow.domain.models import ResourceStatus


def test_port_defaults_to_hourly_slots(world):
    port = world.registry.create_port(world.admin, name="Port of Casablanca", timezone_name="Africa/Casablanca")

    assert port.slot_duration_minutes == 60
    assert port.timezone == "Africa/Casablanca"
    assert port.port_id in {item.port_id for item in world.registry.list_ports()}


@pytest.mark.parametrize(
    "timezone_name, duration",
    [("Mars/Olympus_Mons", 60), ("UTC", -15), ("UTC", 1441)],
)
def test_invalid_port_settings_are_rejected(world, timezone_name, duration):
    with pytest.raises(ValidationError):
        world.registry.create_port(
            world.admin,
            name="Broken",
            timezone_name=timezone_name,
            slot_duration_minutes=duration,
        )


def test_terminal_requires_existing_port_and_positive_capacity(world):
    with pytest.raises(NotFound):
        world.registry.create_terminal(world.admin, port_id="missing-port", name="X", max_capacity=3)
    with pytest.raises(ValidationError):
        world.registry.create_terminal(world.admin, port_id=world.port.port_id, name="X", max_capacity=0)


def test_capacity_update_is_audited(world):
    updated = world.registry.update_terminal_capacity(world.admin, world.terminal.terminal_id, 5)

    assert updated.max_capacity == 5
    entry = world.audit.query(action="CAPACITY_UPDATED")[0]
    assert entry.entity_id == world.terminal.terminal_id
    assert "from 2 to 5" in entry.description

    with pytest.raises(NotFound):
        world.registry.update_terminal_capacity(world.admin, "missing-terminal", 5)
    with pytest.raises(ValidationError):
        world.registry.update_terminal_capacity(world.admin, world.terminal.terminal_id, -1)


def test_terminal_capacity_view(world):
    world.book(8, index=0)
    world.book(8, index=1)
    world.book(14, index=2, slots_count=2)

    view = world.registry.get_terminal_capacity(world.terminal.terminal_id, at(0).date())

    assert view["max_capacity"] == 2
    assert len(view["slots"]) == 24
    assert view["booked_total"] == 4
    full = [slot for slot in view["slots"] if slot.available_count == 0]
    assert [slot.slot_start for slot in full] == [at(8), at(14)]


def test_duplicate_carrier_profile_is_rejected(world):
    with pytest.raises(ValidationError):
        world.registry.create_carrier(world.admin, user_id="carrier-user", name="Atlas Again")


def test_truck_plate_is_normalised_and_unique_per_carrier(world):
    truck = world.registry.create_truck(world.carrier_actor, plate_number=" 55-c-55 ")
    assert truck.plate_number == "55-C-55"
    assert truck.carrier_id == world.carrier.carrier_id

    with pytest.raises(ValidationError):
        world.registry.create_truck(world.carrier_actor, plate_number="55-C-55")

    # Another carrier may register the same plate.
    other = world.registry.create_truck(world.other_carrier_actor, plate_number="55-C-55")
    assert other.carrier_id == world.other_carrier.carrier_id


def test_staff_must_name_the_carrier(world):
    with pytest.raises(ValidationError):
        world.registry.create_truck(world.admin, plate_number="77-D-77")
    with pytest.raises(NotFound):
        world.registry.create_truck(world.admin, plate_number="77-D-77", carrier_id="missing-carrier")


def test_carrier_cannot_register_into_another_fleet(world):
    with pytest.raises(Forbidden):
        world.registry.create_driver(
            world.carrier_actor,
            user_id="intruder",
            full_name="Intruder",
            carrier_id=world.other_carrier.carrier_id,
        )


def test_fleet_listing_is_scoped_for_carriers(world):
    own = world.registry.list_trucks(world.carrier_actor)
    assert {truck.truck_id for truck in own} == {truck.truck_id for truck in world.trucks}

    everything = world.registry.list_trucks(world.operator)
    assert len(everything) == 4

    drivers = world.registry.list_drivers(world.other_carrier_actor)
    assert [driver.driver_id for driver in drivers] == [world.other_driver.driver_id]


def test_truck_status_change_is_audited_once(world):
    truck_id = world.trucks[1].truck_id

    suspended = world.registry.set_truck_status(world.carrier_actor, truck_id, "suspended")
    world.registry.set_truck_status(world.carrier_actor, truck_id, ResourceStatus.SUSPENDED)

    assert suspended.status == ResourceStatus.SUSPENDED
    entries = world.audit.query(entity_type="TRUCK", entity_id=truck_id, action="SUSPENDED")
    assert len(entries) == 1
    assert entries[0].actor_id == "carrier-user"


def test_status_change_on_foreign_fleet_is_forbidden(world):
    with pytest.raises(Forbidden):
        world.registry.set_truck_status(
            world.carrier_actor,
            world.other_truck.truck_id,
            ResourceStatus.SUSPENDED,
        )
    with pytest.raises(Forbidden):
        world.registry.set_driver_status(
            world.carrier_actor,
            world.other_driver.driver_id,
            ResourceStatus.SUSPENDED,
        )
    assert world.repository.get_truck(world.other_truck.truck_id).status == ResourceStatus.ACTIVE


def test_unknown_status_value_is_rejected(world):
    with pytest.raises(ValidationError):
        world.registry.set_driver_status(world.admin, world.drivers[0].driver_id, "ON_VACATION")
    with pytest.raises(NotFound):
        world.registry.set_driver_status(world.admin, "missing-driver", ResourceStatus.ACTIVE)


def test_capacity_cannot_drop_below_confirmed_load(world):
    for index in (0, 1):
        world.bookings.confirm_booking(world.operator, world.book(8, index=index).booking_id)

    with pytest.raises(ValidationError):
        world.registry.update_terminal_capacity(world.admin, world.terminal.terminal_id, 1)

    assert world.repository.get_terminal(world.terminal.terminal_id).max_capacity == 2
    assert world.audit.query(action="CAPACITY_UPDATED") == []


def test_capacity_reduction_ignores_finished_slots(world):
    for index in (0, 1):
        world.bookings.confirm_booking(world.operator, world.book(8, index=index).booking_id)
    world.clock.set(at(10))

    updated = world.registry.update_terminal_capacity(world.admin, world.terminal.terminal_id, 1)

    assert updated.max_capacity == 1
