"""Failure taxonomy shared by the booking, QR and registry services."""

from __future__ import annotations


class BookingError(Exception):
    """Base class for expected business-rule failures."""


class ValidationError(BookingError):
    """Raised for malformed input such as a misaligned slot start."""


class CapacityExceeded(BookingError):
    """Raised when a slot cannot absorb the requested capacity units."""


class InvalidState(BookingError):
    """Raised when a transition is not legal from the current status."""


class Forbidden(BookingError):
    """Raised when the caller has no rights over the entity."""


class NotFound(BookingError):
    """Raised for unknown ids."""
