"""Controller layer for ports, terminals, carriers, trucks and drivers."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator

from portflow.controllers.dependencies import get_registry_service, http_error, require
from portflow.controllers.schemas import (
    ApiModel,
    CarrierOut,
    DriverOut,
    Envelope,
    PortOut,
    SlotOut,
    TerminalCapacityOut,
    TerminalOut,
    TruckOut,
    ok,
)
from portflow.domain.errors import BookingError
from portflow.domain.models import Actor
from portflow.services.registry_service import RegistryService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["registry"])


class CreatePortRequest(ApiModel):
    name: str = Field(min_length=1, max_length=120)
    timezone: str = Field(min_length=1)
    country_code: Optional[str] = Field(default=None, min_length=2, max_length=2)
    slot_duration: Optional[int] = Field(default=None, gt=0, le=1440)

    @field_validator("country_code")
    @classmethod
    def normalize_country(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else None


class CreateTerminalRequest(ApiModel):
    port_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=120)
    max_capacity: int = Field(gt=0)


class UpdateTerminalRequest(ApiModel):
    max_capacity: int = Field(gt=0)


class CreateCarrierRequest(ApiModel):
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=120)


class CreateTruckRequest(ApiModel):
    plate_number: str = Field(min_length=1, max_length=20)
    carrier_id: Optional[str] = None


class CreateDriverRequest(ApiModel):
    user_id: str = Field(min_length=1)
    full_name: str = Field(min_length=1, max_length=120)
    carrier_id: Optional[str] = None


class StatusRequest(ApiModel):
    status: str = Field(min_length=1)


def _fail(action: str, exc: Exception) -> HTTPException:
    if isinstance(exc, BookingError):
        return http_error(exc)
    logger.exception("Unexpected registry failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


# --- Ports ---


@router.get("/ports", response_model=Envelope[list[PortOut]])
def list_ports(
    service: RegistryService = Depends(get_registry_service),
    _: Actor = Depends(require("registry:read")),
) -> Envelope:
    return ok([PortOut.from_domain(port) for port in service.list_ports()])


@router.post(
    "/ports",
    response_model=Envelope[PortOut],
    status_code=status.HTTP_201_CREATED,
)
def create_port(
    payload: CreatePortRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("registry:write")),
) -> Envelope:
    try:
        port = service.create_port(
            actor,
            name=payload.name,
            timezone_name=payload.timezone,
            country_code=payload.country_code,
            slot_duration_minutes=payload.slot_duration,
        )
        return ok(PortOut.from_domain(port))
    except Exception as exc:
        raise _fail("create port", exc) from exc


# --- Terminals ---


@router.get("/terminals", response_model=Envelope[list[TerminalOut]])
def list_terminals(
    port_id: Optional[str] = Query(default=None, alias="portId"),
    service: RegistryService = Depends(get_registry_service),
    _: Actor = Depends(require("registry:read")),
) -> Envelope:
    return ok([TerminalOut.from_domain(terminal) for terminal in service.list_terminals(port_id)])


@router.post(
    "/terminals",
    response_model=Envelope[TerminalOut],
    status_code=status.HTTP_201_CREATED,
)
def create_terminal(
    payload: CreateTerminalRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("registry:write")),
) -> Envelope:
    try:
        terminal = service.create_terminal(
            actor,
            port_id=payload.port_id,
            name=payload.name,
            max_capacity=payload.max_capacity,
        )
        return ok(TerminalOut.from_domain(terminal))
    except Exception as exc:
        raise _fail("create terminal", exc) from exc


@router.put("/terminals/{terminal_id}", response_model=Envelope[TerminalOut])
def update_terminal(
    terminal_id: str,
    payload: UpdateTerminalRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("terminal:write")),
) -> Envelope:
    try:
        terminal = service.update_terminal_capacity(actor, terminal_id, payload.max_capacity)
        return ok(TerminalOut.from_domain(terminal))
    except Exception as exc:
        raise _fail("update terminal", exc) from exc


@router.get("/terminals/{terminal_id}/capacity", response_model=Envelope[TerminalCapacityOut])
def terminal_capacity(
    terminal_id: str,
    day: Optional[date] = Query(default=None, alias="date"),
    service: RegistryService = Depends(get_registry_service),
    _: Actor = Depends(require("slots:read")),
) -> Envelope:
    try:
        capacity = service.get_terminal_capacity(terminal_id, day)
        return ok(
            TerminalCapacityOut(
                terminal=TerminalOut.from_domain(capacity["terminal"]),
                day=capacity["date"],
                max_capacity=capacity["max_capacity"],
                booked_total=capacity["booked_total"],
                slots=[SlotOut.from_domain(slot) for slot in capacity["slots"]],
            )
        )
    except Exception as exc:
        raise _fail("load terminal capacity", exc) from exc


# --- Carriers ---


@router.get("/carriers", response_model=Envelope[list[CarrierOut]])
def list_carriers(
    service: RegistryService = Depends(get_registry_service),
    _: Actor = Depends(require("registry:read")),
) -> Envelope:
    return ok([CarrierOut.from_domain(carrier) for carrier in service.list_carriers()])


@router.post(
    "/carriers",
    response_model=Envelope[CarrierOut],
    status_code=status.HTTP_201_CREATED,
)
def create_carrier(
    payload: CreateCarrierRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("registry:write")),
) -> Envelope:
    try:
        carrier = service.create_carrier(actor, user_id=payload.user_id, name=payload.name)
        return ok(CarrierOut.from_domain(carrier))
    except Exception as exc:
        raise _fail("create carrier", exc) from exc


# --- Trucks ---


@router.get("/trucks", response_model=Envelope[list[TruckOut]])
def list_trucks(
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("registry:read")),
) -> Envelope:
    try:
        return ok([TruckOut.from_domain(truck) for truck in service.list_trucks(actor, carrier_id)])
    except Exception as exc:
        raise _fail("list trucks", exc) from exc


@router.post(
    "/trucks",
    response_model=Envelope[TruckOut],
    status_code=status.HTTP_201_CREATED,
)
def create_truck(
    payload: CreateTruckRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("fleet:write")),
) -> Envelope:
    try:
        truck = service.create_truck(
            actor,
            plate_number=payload.plate_number,
            carrier_id=payload.carrier_id,
        )
        return ok(TruckOut.from_domain(truck))
    except Exception as exc:
        raise _fail("create truck", exc) from exc


@router.patch("/trucks/{truck_id}/status", response_model=Envelope[TruckOut])
def set_truck_status(
    truck_id: str,
    payload: StatusRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("fleet:write")),
) -> Envelope:
    try:
        return ok(TruckOut.from_domain(service.set_truck_status(actor, truck_id, payload.status)))
    except Exception as exc:
        raise _fail("update truck status", exc) from exc


# --- Drivers ---


@router.get("/drivers", response_model=Envelope[list[DriverOut]])
def list_drivers(
    carrier_id: Optional[str] = Query(default=None, alias="carrierId"),
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("registry:read")),
) -> Envelope:
    try:
        return ok([DriverOut.from_domain(driver) for driver in service.list_drivers(actor, carrier_id)])
    except Exception as exc:
        raise _fail("list drivers", exc) from exc


@router.post(
    "/drivers",
    response_model=Envelope[DriverOut],
    status_code=status.HTTP_201_CREATED,
)
def create_driver(
    payload: CreateDriverRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("fleet:write")),
) -> Envelope:
    try:
        driver = service.create_driver(
            actor,
            user_id=payload.user_id,
            full_name=payload.full_name,
            carrier_id=payload.carrier_id,
        )
        return ok(DriverOut.from_domain(driver))
    except Exception as exc:
        raise _fail("create driver", exc) from exc


@router.patch("/drivers/{driver_id}/status", response_model=Envelope[DriverOut])
def set_driver_status(
    driver_id: str,
    payload: StatusRequest,
    service: RegistryService = Depends(get_registry_service),
    actor: Actor = Depends(require("fleet:write")),
) -> Envelope:
    try:
        return ok(DriverOut.from_domain(service.set_driver_status(actor, driver_id, payload.status)))
    except Exception as exc:
        raise _fail("update driver status", exc) from exc
