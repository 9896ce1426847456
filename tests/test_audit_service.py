from __future__ import annotations

import sqlite3

import pytest

from conftest import at
from portflow.domain.errors import InvalidState
from portflow.domain.models import ActorType, BookingStatus
from portflow.utils.timeutils import to_utc_iso


def test_every_booking_transition_is_attributed(world):
    booking = world.book(8)
    world.bookings.confirm_booking(world.operator, booking.booking_id)
    world.bookings.reassign_slot(world.operator, booking.booking_id, at(9))
    world.bookings.cancel_booking(world.carrier_actor, booking.booking_id)

    entries = world.audit.query(entity_type="BOOKING", entity_id=booking.booking_id)

    assert [entry.action for entry in entries] == ["CANCELLED", "SLOT_REASSIGNED", "CONFIRMED", "CREATED"]
    assert [entry.actor_id for entry in entries] == [
        "carrier-user",
        "operator-1",
        "operator-1",
        "carrier-user",
    ]
    assert all(entry.actor_type == ActorType.USER for entry in entries)


def test_failed_transition_is_not_audited(world):
    booking = world.book(8)
    world.bookings.reject_booking(world.operator, booking.booking_id)
    before = world.repository.count_audit_logs()

    with pytest.raises(InvalidState):
        world.bookings.confirm_booking(world.operator, booking.booking_id)

    assert world.repository.count_audit_logs() == before


def test_query_filters_and_limit(world):
    for hour in (8, 9, 10):
        world.book(hour)

    assert len(world.audit.query(action="CREATED", entity_type="BOOKING")) == 3
    assert len(world.audit.query(action="CREATED", entity_type="BOOKING", limit=2)) == 2
    assert world.audit.query(actor_id="nobody") == []


def test_system_actor_entries(world):
    entry = world.audit.record(
        ActorType.SYSTEM,
        None,
        "TERMINAL",
        world.terminal.terminal_id,
        "NIGHTLY_CHECK",
        "Capacity reconciled",
    )

    assert entry is not None
    stored = world.audit.query(action="NIGHTLY_CHECK")[0]
    assert stored.actor_type == ActorType.SYSTEM
    assert stored.actor_id is None


def test_audit_failure_never_breaks_the_operation(world, monkeypatch, caplog):
    def broken_insert(entry):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(world.repository, "insert_audit_log", broken_insert)

    booking = world.book(8)

    assert booking.status == BookingStatus.PENDING
    assert world.repository.get_booking(booking.booking_id) is not None
    assert "Failed to record audit entry" in caplog.text


def test_stored_timestamps_follow_the_service_clock(world):
    assert world.terminal.created_at == to_utc_iso(at(6))

    world.clock.set(at(7, 15))
    booking = world.book(8)
    world.clock.set(at(7, 40))
    confirmed = world.bookings.confirm_booking(world.operator, booking.booking_id)

    assert booking.created_at == to_utc_iso(at(7, 15))
    assert confirmed.updated_at == to_utc_iso(at(7, 40))
    entry = world.audit.query(entity_id=booking.booking_id, action="CONFIRMED")[0]
    assert entry.created_at == to_utc_iso(at(7, 40))
