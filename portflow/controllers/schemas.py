"""Response envelope and DTOs shared across routers."""

from __future__ import annotations

from datetime import date
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from portflow.domain.models import (
    AuditLog,
    Booking,
    Carrier,
    Driver,
    Port,
    QRCode,
    SlotAvailability,
    Terminal,
    Truck,
)
from portflow.utils.timeutils import to_utc_iso, utc_now


DataT = TypeVar("DataT")


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Envelope(BaseModel, Generic[DataT]):
    success: bool = True
    data: DataT
    timestamp: str


def ok(data: Any) -> Envelope:
    return Envelope(data=data, timestamp=to_utc_iso(utc_now()))


def error_body(message: Any) -> dict[str, Any]:
    return {"success": False, "message": message, "timestamp": to_utc_iso(utc_now())}


class BookingOut(ApiModel):
    id: str
    booking_reference: str
    terminal_id: str
    truck_id: str
    carrier_id: str
    driver_id: str
    slot_start: str
    slot_end: str
    slots_count: int = Field(gt=0)
    status: str
    container_matricule: Optional[str] = None
    override_reason: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingOut":
        return cls(
            id=booking.booking_id,
            booking_reference=booking.booking_reference,
            terminal_id=booking.terminal_id,
            truck_id=booking.truck_id,
            carrier_id=booking.carrier_id,
            driver_id=booking.driver_id,
            slot_start=booking.slot_start,
            slot_end=booking.slot_end,
            slots_count=booking.slots_count,
            status=booking.status,
            container_matricule=booking.container_matricule,
            override_reason=booking.override_reason,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class SlotOut(ApiModel):
    slot_start: str
    slot_end: str
    booked_count: int = Field(ge=0)
    available_count: int = Field(ge=0)
    load_level: str
    is_overbooked: bool

    @classmethod
    def from_domain(cls, slot: SlotAvailability) -> "SlotOut":
        return cls(
            slot_start=to_utc_iso(slot.slot_start),
            slot_end=to_utc_iso(slot.slot_end),
            booked_count=slot.booked_count,
            available_count=slot.available_count,
            load_level=slot.load_level,
            is_overbooked=slot.is_overbooked,
        )


class PortOut(ApiModel):
    id: str
    name: str
    country_code: Optional[str] = None
    slot_duration: int
    timezone: str
    created_at: str

    @classmethod
    def from_domain(cls, port: Port) -> "PortOut":
        return cls(
            id=port.port_id,
            name=port.name,
            country_code=port.country_code,
            slot_duration=port.slot_duration_minutes,
            timezone=port.timezone,
            created_at=port.created_at,
        )


class TerminalOut(ApiModel):
    id: str
    port_id: str
    name: str
    max_capacity: int
    created_at: str

    @classmethod
    def from_domain(cls, terminal: Terminal) -> "TerminalOut":
        return cls(
            id=terminal.terminal_id,
            port_id=terminal.port_id,
            name=terminal.name,
            max_capacity=terminal.max_capacity,
            created_at=terminal.created_at,
        )


class TerminalCapacityOut(ApiModel):
    terminal: TerminalOut
    day: date = Field(alias="date")
    max_capacity: int
    booked_total: int
    slots: list[SlotOut]


class CarrierOut(ApiModel):
    id: str
    user_id: str
    name: str
    created_at: str

    @classmethod
    def from_domain(cls, carrier: Carrier) -> "CarrierOut":
        return cls(
            id=carrier.carrier_id,
            user_id=carrier.user_id,
            name=carrier.name,
            created_at=carrier.created_at,
        )


class TruckOut(ApiModel):
    id: str
    carrier_id: str
    plate_number: str
    status: str
    created_at: str

    @classmethod
    def from_domain(cls, truck: Truck) -> "TruckOut":
        return cls(
            id=truck.truck_id,
            carrier_id=truck.carrier_id,
            plate_number=truck.plate_number,
            status=truck.status,
            created_at=truck.created_at,
        )


class DriverOut(ApiModel):
    id: str
    carrier_id: str
    user_id: str
    full_name: str
    status: str
    created_at: str

    @classmethod
    def from_domain(cls, driver: Driver) -> "DriverOut":
        return cls(
            id=driver.driver_id,
            carrier_id=driver.carrier_id,
            user_id=driver.user_id,
            full_name=driver.full_name,
            status=driver.status,
            created_at=driver.created_at,
        )


class QRCodeOut(ApiModel):
    id: str
    booking_id: str
    jwt_token: str
    qr_code_data: str
    expires_at: str
    used_at: Optional[str] = None

    @classmethod
    def from_domain(cls, qr: QRCode) -> "QRCodeOut":
        return cls(
            id=qr.qr_id,
            booking_id=qr.booking_id,
            jwt_token=qr.jwt_token,
            qr_code_data=qr.qr_code_data,
            expires_at=qr.expires_at,
            used_at=qr.used_at,
        )


class AuditLogOut(ApiModel):
    id: str
    actor_type: str
    actor_id: Optional[str] = None
    entity_type: str
    entity_id: str
    action: str
    description: str
    created_at: str

    @classmethod
    def from_domain(cls, entry: AuditLog) -> "AuditLogOut":
        return cls(
            id=entry.log_id,
            actor_type=entry.actor_type,
            actor_id=entry.actor_id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            description=entry.description,
            created_at=entry.created_at,
        )
