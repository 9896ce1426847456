from __future__ import annotations

import json
from datetime import timedelta

import pytest
from jose import jwt

from conftest import at
from portflow.domain.errors import Forbidden, InvalidState
from portflow.domain.models import BookingStatus
from portflow.services.qr_service import ScanMessage
from portflow.utils.timeutils import parse_iso


def _confirmed(world, hour: int = 8, index: int = 0):
    booking = world.book(hour, index=index)
    return world.bookings.confirm_booking(world.operator, booking.booking_id)


def test_qr_requires_confirmed_booking(world):
    booking = world.book(8)

    with pytest.raises(InvalidState):
        world.qr.generate_qr(world.carrier_actor, booking.booking_id)


def test_generated_token_embeds_booking_and_expiry(world):
    booking = _confirmed(world)

    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)

    assert parse_iso(qr.expires_at) == parse_iso(booking.slot_end) + timedelta(minutes=60)
    assert qr.used_at is None
    claims = jwt.decode(qr.jwt_token, world.settings.jwt_secret_key, algorithms=["HS256"])
    assert claims["sub"] == booking.booking_id
    assert claims["jti"] == qr.qr_id
    payload = json.loads(qr.qr_code_data)
    assert payload["bookingReference"] == booking.booking_reference
    assert payload["token"] == qr.jwt_token


def test_scan_consumes_booking_and_returns_gate_snapshot(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.clock.set(at(7, 45))

    result = world.qr.scan_qr(world.operator, qr.jwt_token)

    assert result.valid
    assert result.message == ScanMessage.ACCEPTED
    assert result.booking["booking_reference"] == booking.booking_reference
    assert result.booking["truck_plate"] == world.trucks[0].plate_number
    assert result.booking["driver_name"] == "Driver 0"
    assert result.booking["terminal_name"] == "TC1"
    assert world.repository.get_booking(booking.booking_id).status == BookingStatus.CONSUMED
    assert world.repository.get_qr(qr.qr_id).used_at is not None

    actions = {entry.action for entry in world.audit.query(actor_id=world.operator.user_id)}
    assert {"SCANNED", "CHECKED_IN"} <= actions


def test_second_scan_is_rejected(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.clock.set(at(8, 5))

    assert world.qr.scan_qr(world.operator, qr.jwt_token).valid
    second = world.qr.scan_qr(world.operator, qr.jwt_token)

    assert not second.valid
    assert second.message == "QR code already used"


def test_reissue_supersedes_previous_token(world):
    booking = _confirmed(world)
    old = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    new = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.clock.set(at(8))

    stale = world.qr.scan_qr(world.operator, old.jwt_token)
    assert not stale.valid
    assert stale.message == ScanMessage.SUPERSEDED
    assert world.qr.scan_qr(world.operator, new.jwt_token).valid

    superseded = world.audit.query(action="SUPERSEDED")
    assert [entry.entity_id for entry in superseded] == [old.qr_id]


def test_scan_too_early_is_rejected_without_consuming(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.clock.set(at(7, 0))

    early = world.qr.scan_qr(world.operator, qr.jwt_token)
    assert not early.valid
    assert early.message.startswith(ScanMessage.TOO_EARLY)
    assert world.repository.get_qr(qr.qr_id).used_at is None

    world.clock.set(at(7, 30))
    assert world.qr.scan_qr(world.operator, qr.jwt_token).valid


def test_scan_after_expiry_is_rejected(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.clock.set(at(10, 1))

    result = world.qr.scan_qr(world.operator, qr.jwt_token)
    assert not result.valid
    assert result.message == ScanMessage.EXPIRED


def test_generate_after_slot_window_fails(world):
    booking = _confirmed(world)
    world.clock.set(at(10, 0))

    with pytest.raises(InvalidState):
        world.qr.generate_qr(world.admin, booking.booking_id)


def test_tampered_token_is_invalid(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    forged = jwt.encode(
        jwt.get_unverified_claims(qr.jwt_token),
        "someone-elses-secret",
        algorithm="HS256",
    )

    result = world.qr.scan_qr(world.operator, forged)
    assert not result.valid
    assert result.message == ScanMessage.INVALID
    assert not world.qr.scan_qr(world.operator, "not-a-jwt").valid


def test_scan_of_cancelled_booking_is_rejected(world):
    booking = _confirmed(world)
    qr = world.qr.generate_qr(world.carrier_actor, booking.booking_id)
    world.bookings.cancel_booking(world.carrier_actor, booking.booking_id)
    world.clock.set(at(8))

    result = world.qr.scan_qr(world.operator, qr.jwt_token)
    assert not result.valid
    assert result.message == "Booking is CANCELLED"


def test_driver_can_only_fetch_own_pass(world):
    booking = _confirmed(world, index=0)

    assert world.qr.generate_qr(world.driver_actor(0), booking.booking_id).booking_id == booking.booking_id
    with pytest.raises(Forbidden):
        world.qr.generate_qr(world.driver_actor(1), booking.booking_id)
