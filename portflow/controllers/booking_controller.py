"""HTTP controller layer for slot availability and the booking lifecycle."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator

from portflow.controllers.dependencies import (
    get_booking_service,
    get_slot_service,
    http_error,
    require,
)
from portflow.controllers.schemas import ApiModel, BookingOut, Envelope, SlotOut, ok
from portflow.domain.errors import BookingError
from portflow.domain.models import Actor
from portflow.services.booking_service import BookingService
from portflow.services.slot_service import SlotService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])


class AvailabilityResponse(ApiModel):
    slots: list[SlotOut]
    max_capacity: int = Field(gt=0)


class CreateBookingRequest(ApiModel):
    """Input DTO validated before entering service layer."""

    terminal_id: str = Field(min_length=1)
    truck_id: str = Field(min_length=1)
    driver_id: str = Field(min_length=1)
    slot_start: datetime
    slots_count: int = Field(default=1, ge=1)
    carrier_id: Optional[str] = None
    container_matricule: Optional[str] = Field(default=None, max_length=32)

    @field_validator("container_matricule")
    @classmethod
    def normalize_container(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip().upper()
        return cleaned or None


class RejectRequest(ApiModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BulkRequest(ApiModel):
    booking_ids: list[str] = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("booking_ids")
    @classmethod
    def validate_booking_ids(cls, value: list[str]) -> list[str]:
        for booking_id in value:
            if not booking_id.strip():
                raise ValueError("bookingIds values must be non-empty")
        return value


class BulkConfirmResponse(ApiModel):
    confirmed: int = Field(ge=0)
    failed: list[str]


class BulkRejectResponse(ApiModel):
    rejected: int = Field(ge=0)
    failed: list[str]


class ReassignRequest(ApiModel):
    new_slot_start: datetime


class ModifyRequest(ApiModel):
    truck_id: Optional[str] = None
    driver_id: Optional[str] = None
    terminal_id: Optional[str] = None
    slot_start: Optional[datetime] = None


class OverrideRequest(ApiModel):
    reason: str = Field(min_length=1, max_length=500)
    slot_start: Optional[datetime] = None

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value.strip()


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/availability", response_model=Envelope[AvailabilityResponse])
def get_availability(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    day: Optional[date] = Query(default=None, alias="date"),
    service: SlotService = Depends(get_slot_service),
    _: Actor = Depends(require("slots:read")),
) -> Envelope:
    try:
        terminal_day = service.list_slots(terminal_id, day)
        return ok(
            AvailabilityResponse(
                slots=[SlotOut.from_domain(slot) for slot in terminal_day],
                max_capacity=terminal_day.terminal.max_capacity,
            )
        )
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list slot availability", exc) from exc


@router.get("", response_model=Envelope[list[BookingOut]])
def list_bookings(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    terminal_id: Optional[str] = Query(default=None, alias="terminalId"),
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:read")),
) -> Envelope:
    try:
        bookings = service.list_bookings(
            actor,
            status=status_filter.upper() if status_filter else None,
            carrier_id=carrier_id,
            terminal_id=terminal_id,
        )
        return ok([BookingOut.from_domain(booking) for booking in bookings])
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list bookings", exc) from exc


@router.post(
    "",
    response_model=Envelope[BookingOut],
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    payload: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:create")),
) -> Envelope:
    try:
        booking = service.create_booking(
            actor,
            terminal_id=payload.terminal_id,
            truck_id=payload.truck_id,
            driver_id=payload.driver_id,
            slot_start=payload.slot_start,
            slots_count=payload.slots_count,
            carrier_id=payload.carrier_id,
            container_matricule=payload.container_matricule,
        )
        return ok(BookingOut.from_domain(booking))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create booking", exc) from exc


@router.post("/bulk/confirm", response_model=Envelope[BulkConfirmResponse])
def bulk_confirm(
    payload: BulkRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:confirm")),
) -> Envelope:
    """Partial failures are reported per id, never raised."""
    try:
        result = service.bulk_confirm(actor, payload.booking_ids)
        return ok(BulkConfirmResponse(confirmed=result.succeeded, failed=result.failed))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("bulk confirm bookings", exc) from exc


@router.post("/bulk/reject", response_model=Envelope[BulkRejectResponse])
def bulk_reject(
    payload: BulkRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:reject")),
) -> Envelope:
    try:
        result = service.bulk_reject(actor, payload.booking_ids, payload.reason)
        return ok(BulkRejectResponse(rejected=result.succeeded, failed=result.failed))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("bulk reject bookings", exc) from exc


@router.get("/{booking_id}", response_model=Envelope[BookingOut])
def get_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:read")),
) -> Envelope:
    try:
        return ok(BookingOut.from_domain(service.get_booking(actor, booking_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("load booking", exc) from exc


@router.post("/{booking_id}/confirm", response_model=Envelope[BookingOut])
def confirm_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:confirm")),
) -> Envelope:
    try:
        return ok(BookingOut.from_domain(service.confirm_booking(actor, booking_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("confirm booking", exc) from exc


@router.post("/{booking_id}/reject", response_model=Envelope[BookingOut])
def reject_booking(
    booking_id: str,
    payload: Optional[RejectRequest] = None,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:reject")),
) -> Envelope:
    try:
        reason = payload.reason if payload is not None else None
        return ok(BookingOut.from_domain(service.reject_booking(actor, booking_id, reason)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("reject booking", exc) from exc


@router.post("/{booking_id}/cancel", response_model=Envelope[BookingOut])
def cancel_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:cancel")),
) -> Envelope:
    try:
        return ok(BookingOut.from_domain(service.cancel_booking(actor, booking_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("cancel booking", exc) from exc


@router.post("/{booking_id}/reassign-slot", response_model=Envelope[BookingOut])
def reassign_slot(
    booking_id: str,
    payload: ReassignRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:reassign")),
) -> Envelope:
    try:
        booking = service.reassign_slot(actor, booking_id, payload.new_slot_start)
        return ok(BookingOut.from_domain(booking))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("reassign booking slot", exc) from exc


@router.post("/{booking_id}/modify", response_model=Envelope[BookingOut])
def modify_booking(
    booking_id: str,
    payload: ModifyRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:modify")),
) -> Envelope:
    try:
        booking = service.modify_booking(
            actor,
            booking_id,
            truck_id=payload.truck_id,
            driver_id=payload.driver_id,
            terminal_id=payload.terminal_id,
            slot_start=payload.slot_start,
        )
        return ok(BookingOut.from_domain(booking))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("modify booking", exc) from exc


@router.post("/{booking_id}/override", response_model=Envelope[BookingOut])
def manual_override(
    booking_id: str,
    payload: OverrideRequest,
    service: BookingService = Depends(get_booking_service),
    actor: Actor = Depends(require("booking:override")),
) -> Envelope:
    """Force-confirm regardless of capacity; the reason is kept on the booking."""
    try:
        booking = service.manual_override(
            actor,
            booking_id,
            payload.reason,
            slot_start=payload.slot_start,
        )
        return ok(BookingOut.from_domain(booking))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("override booking", exc) from exc
