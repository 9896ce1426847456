"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portflow.domain.errors import (
    BookingError,
    CapacityExceeded,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from portflow.domain.models import Actor
from portflow.domain.policy import is_allowed
from portflow.services.audit_service import AuditService
from portflow.services.auth_service import AuthService, InvalidAccessTokenError
from portflow.services.booking_service import BookingService
from portflow.services.dashboard_service import DashboardService
from portflow.services.exception_service import ExceptionDetectionService
from portflow.services.qr_service import QRTokenService
from portflow.services.registry_service import RegistryService
from portflow.services.slot_service import SlotService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_STATUS_BY_ERROR: tuple[tuple[type[BookingError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (CapacityExceeded, status.HTTP_409_CONFLICT),
    (InvalidState, status.HTTP_409_CONFLICT),
)


def http_error(exc: BookingError) -> HTTPException:
    """Translate a service-layer failure into its HTTP status."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _state_service(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} service is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    return _state_service(request, "auth_service", "Auth")


def get_slot_service(request: Request) -> SlotService:
    return _state_service(request, "slot_service", "Slot")


def get_booking_service(request: Request) -> BookingService:
    return _state_service(request, "booking_service", "Booking")


def get_exception_service(request: Request) -> ExceptionDetectionService:
    return _state_service(request, "exception_service", "Exception detection")


def get_dashboard_service(request: Request) -> DashboardService:
    return _state_service(request, "dashboard_service", "Dashboard")


def get_qr_service(request: Request) -> QRTokenService:
    return _state_service(request, "qr_service", "QR code")


def get_audit_service(request: Request) -> AuditService:
    return _state_service(request, "audit_service", "Audit")


def get_registry_service(request: Request) -> RegistryService:
    return _state_service(request, "registry_service", "Registry")


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return auth_service.authenticate(credentials.credentials)
    except InvalidAccessTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require(operation: str) -> Callable[..., Awaitable[Actor]]:
    """Dependency factory checking the caller's role against the policy table."""

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not is_allowed(actor.role, operation):
            logger.info("Denied %s for %s (%s)", operation, actor.user_id, actor.role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {actor.role} is not allowed to perform {operation}",
            )
        return actor

    return dependency
