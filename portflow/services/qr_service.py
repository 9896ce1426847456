"""Gate passes: signed per-booking QR tokens consumed exactly once."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from portflow.domain.errors import InvalidState
from portflow.domain.models import Actor, BookingStatus, QRCode, ScanResult
from portflow.repository.data_repository import DataRepository, new_id
from portflow.services.audit_service import AuditService
from portflow.services.booking_service import ENTITY_BOOKING, BookingService
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, parse_iso, to_utc_iso, utc_now


logger = get_logger(__name__)

ENTITY_QRCODE = "QRCODE"
GATE_PASS_TOKEN_TYPE = "gate_pass"


class ScanMessage:
    """Operator-facing outcomes of a gate scan."""

    ACCEPTED = "Access granted"
    INVALID = "Invalid QR code"
    EXPIRED = "QR code expired"
    SUPERSEDED = "QR code superseded by a newer one"
    ALREADY_USED = "QR code already used"
    TOO_EARLY = "Booking slot has not opened yet"


class QRTokenService:
    """Issues gate tokens for confirmed bookings and validates them at the gate.

    The token is an HS256 JWT carrying the booking id and the QR row id; the
    row holds the lifecycle (used, superseded) so a token can be revoked
    without changing the signing key.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        booking_service: Optional[BookingService] = None,
        audit_service: Optional[AuditService] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings, clock=clock)
        self._clock = clock
        self._audit = audit_service or AuditService(
            repository=self._repository,
            settings=self._settings,
            clock=clock,
        )
        self._booking_service = booking_service or BookingService(
            repository=self._repository,
            settings=self._settings,
            audit_service=self._audit,
            clock=clock,
        )

    def _encode(self, qr_id: str, booking_id: str, reference: str, expires_at: str) -> str:
        payload = {
            "sub": booking_id,
            "jti": qr_id,
            "ref": reference,
            "type": GATE_PASS_TOKEN_TYPE,
            "exp": parse_iso(expires_at),
        }
        return jwt.encode(
            payload,
            self._settings.jwt_secret_key,
            algorithm=self._settings.jwt_algorithm,
        )

    def generate_qr(self, actor: Actor, booking_id: str) -> QRCode:
        self._booking_service.get_booking(actor, booking_id)
        now = self._clock()

        with self._repository.transaction() as conn:
            booking = self._repository.get_booking(booking_id, conn=conn)
            if booking is None or booking.status != BookingStatus.CONFIRMED:
                status = booking.status if booking is not None else "missing"
                raise InvalidState(f"QR codes are only issued for CONFIRMED bookings (booking is {status})")

            expires = parse_iso(booking.slot_end) + timedelta(minutes=self._settings.qr_grace_minutes)
            if expires <= now:
                raise InvalidState(f"Booking {booking.booking_reference} slot has already ended")

            superseded = self._repository.list_live_qr_ids(booking_id, conn)
            self._repository.supersede_qr(superseded, to_utc_iso(now), conn)

            qr_id = new_id()
            expires_at = to_utc_iso(expires)
            token = self._encode(qr_id, booking_id, booking.booking_reference, expires_at)
            qr = QRCode(
                qr_id=qr_id,
                booking_id=booking_id,
                jwt_token=token,
                qr_code_data=json.dumps(
                    {
                        "token": token,
                        "bookingReference": booking.booking_reference,
                        "terminalId": booking.terminal_id,
                        "slotStart": booking.slot_start,
                        "slotEnd": booking.slot_end,
                    },
                    separators=(",", ":"),
                ),
                expires_at=expires_at,
                used_at=None,
                superseded_at=None,
                created_at=to_utc_iso(now),
            )
            self._repository.insert_qr(qr, conn)

        for old_id in superseded:
            self._audit.record_for(
                actor,
                ENTITY_QRCODE,
                old_id,
                "SUPERSEDED",
                f"QR code for booking {booking.booking_reference} replaced by a newer one",
            )
        self._audit.record_for(
            actor,
            ENTITY_QRCODE,
            qr_id,
            "GENERATED",
            f"QR code issued for booking {booking.booking_reference}, valid until {expires_at}",
        )
        return qr

    def _reject(self, message: str, detail: str) -> ScanResult:
        logger.warning("Gate scan rejected: %s (%s)", message, detail)
        return ScanResult(valid=False, message=message)

    def scan_qr(self, actor: Actor, token: str) -> ScanResult:
        """Validate and consume a token.

        Routine gate failures come back as ``ScanResult(valid=False)``. Two
        scans of the same token race for the write lock; the second one sees
        ``used_at`` already set.
        """
        try:
            claims = jwt.decode(
                token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
            )
        except ExpiredSignatureError:
            return self._reject(ScanMessage.EXPIRED, "signature expired")
        except JWTError as exc:
            return self._reject(ScanMessage.INVALID, str(exc))

        qr_id = claims.get("jti")
        if claims.get("type") != GATE_PASS_TOKEN_TYPE or not qr_id:
            return self._reject(ScanMessage.INVALID, "not a gate pass")

        now = self._clock()
        try:
            with self._repository.transaction() as conn:
                qr = self._repository.get_qr(str(qr_id), conn=conn)
                if qr is None or qr.jwt_token != token or qr.booking_id != claims.get("sub"):
                    return self._reject(ScanMessage.INVALID, f"unknown token id {qr_id}")
                if qr.superseded_at is not None:
                    return self._reject(ScanMessage.SUPERSEDED, qr.qr_id)
                if qr.used_at is not None:
                    return self._reject(ScanMessage.ALREADY_USED, qr.qr_id)
                if parse_iso(qr.expires_at) <= now:
                    return self._reject(ScanMessage.EXPIRED, qr.qr_id)

                booking = self._repository.get_booking(qr.booking_id, conn=conn)
                if booking is None or booking.status != BookingStatus.CONFIRMED:
                    status = booking.status if booking is not None else "missing"
                    return self._reject(f"Booking is {status}", qr.booking_id)

                opens_at = parse_iso(booking.slot_start) - timedelta(
                    minutes=self._settings.qr_early_arrival_minutes
                )
                if now < opens_at:
                    return self._reject(
                        f"{ScanMessage.TOO_EARLY} (opens at {to_utc_iso(opens_at)})",
                        booking.booking_reference,
                    )

                used_at = to_utc_iso(now)
                if not self._repository.mark_qr_used(qr.qr_id, used_at, conn):
                    raise InvalidState(ScanMessage.ALREADY_USED)
                if not self._repository.transition_booking_status(
                    booking.booking_id,
                    (BookingStatus.CONFIRMED,),
                    BookingStatus.CONSUMED,
                    conn,
                ):
                    raise InvalidState("Booking is no longer confirmed")
                snapshot = self._repository.get_gate_snapshot(booking.booking_id, conn=conn)
        except InvalidState as exc:
            return self._reject(str(exc), str(qr_id))

        logger.info("Booking %s checked in at gate", booking.booking_reference)
        self._audit.record_for(
            actor,
            ENTITY_QRCODE,
            qr.qr_id,
            "SCANNED",
            f"QR code for booking {booking.booking_reference} scanned at gate",
        )
        self._audit.record_for(
            actor,
            ENTITY_BOOKING,
            booking.booking_id,
            "CHECKED_IN",
            f"Truck {snapshot.get('truck_plate')} checked in for booking {booking.booking_reference}",
        )
        return ScanResult(valid=True, message=ScanMessage.ACCEPTED, booking=snapshot)
