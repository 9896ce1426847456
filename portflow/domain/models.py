"""Domain models for terminal slot booking and gate access."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    CONSUMED = "CONSUMED"

    ALL = (PENDING, CONFIRMED, REJECTED, CANCELLED, CONSUMED)
    TERMINAL = frozenset({REJECTED, CANCELLED, CONSUMED})
    OCCUPYING = (PENDING, CONFIRMED, CONSUMED)
    COMMITTED = (CONFIRMED, CONSUMED)
    MUTABLE = (PENDING, CONFIRMED)
    OVERRIDABLE = (PENDING, CONFIRMED, REJECTED)


class ResourceStatus:
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"

    ALL = (ACTIVE, SUSPENDED)


class Role:
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    CARRIER = "CARRIER"
    DRIVER = "DRIVER"

    ALL = (ADMIN, OPERATOR, CARRIER, DRIVER)


class ActorType:
    USER = "USER"
    AI = "AI"
    SYSTEM = "SYSTEM"

    ALL = (USER, AI, SYSTEM)


class Severity:
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    WARNING = "WARNING"


class ExceptionType:
    OVERBOOKED_SLOT = "OVERBOOKED_SLOT"
    STALE_PENDING = "STALE_PENDING"
    ORPHANED_CONFIRMED = "ORPHANED_CONFIRMED"


@dataclass(frozen=True)
class Actor:
    """Explicit caller identity passed into every service operation."""

    user_id: str
    role: str
    actor_type: str = ActorType.USER

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id="system", role=Role.ADMIN, actor_type=ActorType.SYSTEM)


@dataclass(frozen=True)
class Port:
    port_id: str
    name: str
    country_code: str | None
    slot_duration_minutes: int
    timezone: str
    created_at: str


@dataclass(frozen=True)
class Terminal:
    terminal_id: str
    port_id: str
    name: str
    max_capacity: int
    created_at: str


@dataclass(frozen=True)
class Carrier:
    carrier_id: str
    user_id: str
    name: str
    created_at: str


@dataclass(frozen=True)
class Truck:
    truck_id: str
    carrier_id: str
    plate_number: str
    status: str
    created_at: str


@dataclass(frozen=True)
class Driver:
    driver_id: str
    carrier_id: str
    user_id: str
    full_name: str
    status: str
    created_at: str


@dataclass(frozen=True)
class Booking:
    booking_id: str
    booking_reference: str
    terminal_id: str
    truck_id: str
    carrier_id: str
    driver_id: str
    slot_start: str
    slot_end: str
    slots_count: int
    status: str
    container_matricule: str | None
    override_reason: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class QRCode:
    qr_id: str
    booking_id: str
    jwt_token: str
    qr_code_data: str
    expires_at: str
    used_at: str | None
    superseded_at: str | None
    created_at: str


@dataclass(frozen=True)
class AuditLog:
    log_id: str
    actor_type: str
    actor_id: str | None
    entity_type: str
    entity_id: str
    action: str
    description: str
    created_at: str


@dataclass(frozen=True)
class SlotAvailability:
    slot_start: datetime
    slot_end: datetime
    booked_count: int
    available_count: int
    max_capacity: int
    load_level: str

    @property
    def is_overbooked(self) -> bool:
        return self.booked_count > self.max_capacity


@dataclass(frozen=True)
class BookingException:
    type: str
    severity: str
    message: str
    booking_id: str | None = None
    booking_reference: str | None = None
    slot_start: str | None = None
    excess_count: int | None = None
    bookings: list[dict[str, str | None]] = field(default_factory=list)


@dataclass(frozen=True)
class BulkResult:
    succeeded: int
    failed: list[str]


@dataclass(frozen=True)
class ScanResult:
    valid: bool
    message: str
    booking: dict[str, str] | None = None
