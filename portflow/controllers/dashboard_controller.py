"""Controller layer for operator and carrier dashboard endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field

from portflow.controllers.dependencies import (
    get_dashboard_service,
    get_exception_service,
    http_error,
    require,
)
from portflow.controllers.schemas import ApiModel, Envelope, ok
from portflow.domain.errors import BookingError
from portflow.domain.models import Actor, BookingException
from portflow.services.dashboard_service import DashboardService
from portflow.services.exception_service import ExceptionDetectionService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/dashboard/operator", tags=["dashboard"])
carrier_router = APIRouter(prefix="/dashboard/carrier", tags=["dashboard"])


class ExceptionBookingOut(ApiModel):
    id: str
    reference: str
    truck: Optional[str] = None


class ExceptionOut(ApiModel):
    type: str
    severity: str
    message: str
    booking_id: Optional[str] = None
    booking_reference: Optional[str] = None
    slot_start: Optional[str] = None
    excess_count: Optional[int] = Field(default=None, gt=0)
    bookings: list[ExceptionBookingOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, item: BookingException) -> "ExceptionOut":
        return cls(
            type=item.type,
            severity=item.severity,
            message=item.message,
            booking_id=item.booking_id,
            booking_reference=item.booking_reference,
            slot_start=item.slot_start,
            excess_count=item.excess_count,
            bookings=[ExceptionBookingOut(**entry) for entry in item.bookings],
        )


class ExceptionSummaryOut(ApiModel):
    total: int = Field(ge=0)
    by_type: dict[str, int]
    by_severity: dict[str, int]


class SlotBookingOut(ApiModel):
    id: str
    reference: str
    status: str
    truck: Optional[str] = None
    driver: Optional[str] = None


class CurrentSlotOut(ApiModel):
    start: str
    end: str
    trucks_in_slot: int = Field(ge=0)
    bookings: list[SlotBookingOut]


class TodaySummaryOut(ApiModel):
    total: int = Field(ge=0)
    pending: int = Field(ge=0)
    confirmed: int = Field(ge=0)
    consumed: int = Field(ge=0)
    cancelled: int = Field(ge=0)
    rejected: int = Field(ge=0)


class RealtimeStatusOut(ApiModel):
    terminal_id: str
    timestamp: str
    current_slot: CurrentSlotOut
    upcoming_arrivals: int = Field(ge=0)
    today_summary: TodaySummaryOut
    utilization_rate: float = Field(ge=0.0, le=100.0)


class OperatorOverviewOut(ApiModel):
    terminal_id: str
    date: str
    today_bookings: int = Field(ge=0)
    pending_approvals: int = Field(ge=0)
    confirmed_today: int = Field(ge=0)
    consumed_today: int = Field(ge=0)
    cancelled_today: int = Field(ge=0)
    open_exceptions: int = Field(ge=0)
    utilization_rate: float = Field(ge=0.0)


class DashboardBookingOut(ApiModel):
    id: str
    booking_reference: str
    slot_start: str
    slot_end: str
    slots_count: int = Field(gt=0)
    status: str
    terminal_name: Optional[str] = None
    carrier_name: Optional[str] = None
    truck_plate: Optional[str] = None
    driver_name: Optional[str] = None


class TrafficSlotOut(ApiModel):
    slot_start: str
    slot_end: str
    max_capacity: int = Field(gt=0)
    pending: int = Field(ge=0)
    confirmed: int = Field(ge=0)
    entries: int = Field(ge=0)
    booked: int = Field(ge=0)


class CarrierOverviewOut(ApiModel):
    carrier_id: str
    total_bookings: int = Field(ge=0)
    pending_bookings: int = Field(ge=0)
    confirmed_bookings: int = Field(ge=0)
    upcoming_bookings: int = Field(ge=0)
    active_trucks: int = Field(ge=0)
    active_drivers: int = Field(ge=0)


class ResourceCountsOut(ApiModel):
    total: int = Field(ge=0)
    active: int = Field(ge=0)
    suspended: int = Field(ge=0)


class FleetTruckOut(ApiModel):
    truck_id: str
    plate_number: str
    status: str
    next_slot_start: Optional[str] = None


class FleetStatusOut(ApiModel):
    carrier_id: str
    trucks: ResourceCountsOut
    drivers: ResourceCountsOut
    fleet: list[FleetTruckOut]


@router.get("/exceptions", response_model=Envelope[list[ExceptionOut]])
def list_exceptions(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    day: Optional[date] = Query(default=None, alias="date"),
    service: ExceptionDetectionService = Depends(get_exception_service),
    _: Actor = Depends(require("exceptions:read")),
) -> Envelope:
    try:
        exceptions = service.list_exceptions(terminal_id, day)
        return ok([ExceptionOut.from_domain(item) for item in exceptions])
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected exception detection failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list exceptions",
        ) from exc


@router.get("/exception-summary", response_model=Envelope[ExceptionSummaryOut])
def exception_summary(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    service: ExceptionDetectionService = Depends(get_exception_service),
    _: Actor = Depends(require("exceptions:read")),
) -> Envelope:
    try:
        return ok(ExceptionSummaryOut(**service.get_exception_summary(terminal_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected exception summary failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to summarize exceptions",
        ) from exc


@router.get("/realtime-status", response_model=Envelope[RealtimeStatusOut])
def realtime_status(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    service: ExceptionDetectionService = Depends(get_exception_service),
    _: Actor = Depends(require("exceptions:read")),
) -> Envelope:
    """Polled by the operator dashboard; computed fresh on every call."""
    try:
        return ok(RealtimeStatusOut.model_validate(service.get_realtime_status(terminal_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected realtime status failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to compute realtime status",
        ) from exc


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/overview", response_model=Envelope[OperatorOverviewOut])
def operator_overview(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    service: DashboardService = Depends(get_dashboard_service),
    _: Actor = Depends(require("dashboard:operator")),
) -> Envelope:
    try:
        return ok(OperatorOverviewOut.model_validate(service.get_operator_overview(terminal_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("build the operator overview", exc) from exc


@router.get("/pending-approvals", response_model=Envelope[list[DashboardBookingOut]])
def pending_approvals(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    service: DashboardService = Depends(get_dashboard_service),
    _: Actor = Depends(require("dashboard:operator")),
) -> Envelope:
    try:
        rows = service.list_pending_approvals(terminal_id)
        return ok([DashboardBookingOut.model_validate(row) for row in rows])
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list pending approvals", exc) from exc


@router.get("/today-traffic", response_model=Envelope[list[TrafficSlotOut]])
def today_traffic(
    terminal_id: str = Query(alias="terminalId", min_length=1),
    service: DashboardService = Depends(get_dashboard_service),
    _: Actor = Depends(require("dashboard:operator")),
) -> Envelope:
    try:
        return ok([TrafficSlotOut.model_validate(row) for row in service.get_today_traffic(terminal_id)])
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute today's traffic", exc) from exc


@carrier_router.get("/overview", response_model=Envelope[CarrierOverviewOut])
def carrier_overview(
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    service: DashboardService = Depends(get_dashboard_service),
    actor: Actor = Depends(require("dashboard:carrier")),
) -> Envelope:
    """Carriers see their own figures; staff name the carrier."""
    try:
        return ok(CarrierOverviewOut.model_validate(service.get_carrier_overview(actor, carrier_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("build the carrier overview", exc) from exc


@carrier_router.get("/upcoming-bookings", response_model=Envelope[list[DashboardBookingOut]])
def upcoming_bookings(
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    limit: int = Query(default=10, ge=1, le=100),
    service: DashboardService = Depends(get_dashboard_service),
    actor: Actor = Depends(require("dashboard:carrier")),
) -> Envelope:
    try:
        rows = service.list_upcoming_bookings(actor, carrier_id, limit=limit)
        return ok([DashboardBookingOut.model_validate(row) for row in rows])
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list upcoming bookings", exc) from exc


@carrier_router.get("/fleet-status", response_model=Envelope[FleetStatusOut])
def fleet_status(
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    service: DashboardService = Depends(get_dashboard_service),
    actor: Actor = Depends(require("dashboard:carrier")),
) -> Envelope:
    try:
        return ok(FleetStatusOut.model_validate(service.get_fleet_status(actor, carrier_id)))
    except BookingError as exc:
        raise http_error(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("compute fleet status", exc) from exc
