"""Controller layer for gate QR codes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from portflow.controllers.dependencies import get_qr_service, http_error, require
from portflow.controllers.schemas import ApiModel, Envelope, QRCodeOut, ok
from portflow.domain.errors import BookingError
from portflow.domain.models import Actor
from portflow.services.qr_service import QRTokenService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/qrcodes", tags=["qrcodes"])


class ScanRequest(ApiModel):
    token: str = Field(min_length=1)


class GateBookingOut(ApiModel):
    id: str
    booking_reference: str
    truck_plate: str
    driver_name: str
    slot_start: str
    slot_end: str
    terminal_name: str


class ScanResponse(ApiModel):
    valid: bool
    message: str
    booking: Optional[GateBookingOut] = None


@router.get("/booking/{booking_id}", response_model=Envelope[QRCodeOut])
def generate_qr(
    booking_id: str,
    service: QRTokenService = Depends(get_qr_service),
    actor: Actor = Depends(require("qr:generate")),
) -> Envelope:
    """Issue a fresh gate pass; any earlier live pass for the booking stops working."""
    try:
        return ok(QRCodeOut.from_domain(service.generate_qr(actor, booking_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected QR generation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate QR code",
        ) from exc


@router.post("/scan", response_model=Envelope[ScanResponse])
def scan_qr(
    payload: ScanRequest,
    service: QRTokenService = Depends(get_qr_service),
    actor: Actor = Depends(require("qr:scan")),
) -> Envelope:
    """Rejected scans are a normal outcome and still answer 200 with valid=false."""
    try:
        result = service.scan_qr(actor, payload.token)
        return ok(
            ScanResponse(
                valid=result.valid,
                message=result.message,
                booking=GateBookingOut(**result.booking) if result.booking else None,
            )
        )
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected QR scan failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to scan QR code",
        ) from exc
