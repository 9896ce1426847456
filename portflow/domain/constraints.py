"""Domain-level validation rules for booking configuration."""

from __future__ import annotations

from dataclasses import dataclass


MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class BookingConfig:
    stale_pending_threshold_minutes: int
    qr_grace_minutes: int
    qr_early_arrival_minutes: int
    load_level_high_percent: float
    load_level_near_full_percent: float


def validate_booking_config(config: BookingConfig) -> None:
    if config.stale_pending_threshold_minutes <= 0:
        raise ValueError("stale_pending_threshold_minutes must be > 0")
    if config.qr_grace_minutes < 0:
        raise ValueError("qr_grace_minutes must be >= 0")
    if config.qr_early_arrival_minutes < 0:
        raise ValueError("qr_early_arrival_minutes must be >= 0")
    if not 0.0 < config.load_level_high_percent <= 100.0:
        raise ValueError("load_level_high_percent must be in (0, 100]")
    if not config.load_level_high_percent <= config.load_level_near_full_percent <= 100.0:
        raise ValueError(
            "load_level_near_full_percent must be between load_level_high_percent and 100"
        )


def validate_slot_duration(minutes: int) -> None:
    if not 0 < minutes <= MINUTES_PER_DAY:
        raise ValueError("slot duration must be between 1 and 1440 minutes")


def validate_max_capacity(capacity: int) -> None:
    if capacity <= 0:
        raise ValueError("max capacity must be > 0")
