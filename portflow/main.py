"""FastAPI application bootstrap and lifecycle wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portflow.controllers.audit_controller import router as audit_router
from portflow.controllers.auth_controller import router as auth_router
from portflow.controllers.booking_controller import router as booking_router
from portflow.controllers.dashboard_controller import carrier_router as carrier_dashboard_router
from portflow.controllers.dashboard_controller import router as dashboard_router
from portflow.controllers.qr_controller import router as qr_router
from portflow.controllers.registry_controller import router as registry_router
from portflow.controllers.schemas import error_body
from portflow.domain.constraints import BookingConfig, validate_booking_config
from portflow.repository.data_repository import DataRepository
from portflow.services.audit_service import AuditService
from portflow.services.auth_service import AuthService
from portflow.services.booking_service import BookingService
from portflow.services.dashboard_service import DashboardService
from portflow.services.exception_service import ExceptionDetectionService
from portflow.services.qr_service import QRTokenService
from portflow.services.registry_service import RegistryService
from portflow.services.slot_service import SlotService
from portflow.utils.config import DEFAULT_JWT_SECRET, Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, utc_now


logger = get_logger(__name__)


def _validate_settings(settings: Settings) -> None:
    if settings.jwt_secret_key == DEFAULT_JWT_SECRET:
        logger.error("JWT_SECRET_KEY is unset; access tokens are signed with the public placeholder secret")
    validate_booking_config(
        BookingConfig(
            stale_pending_threshold_minutes=settings.stale_pending_threshold_minutes,
            qr_grace_minutes=settings.qr_grace_minutes,
            qr_early_arrival_minutes=settings.qr_early_arrival_minutes,
            load_level_high_percent=settings.load_level_high_percent,
            load_level_near_full_percent=settings.load_level_near_full_percent,
        )
    )


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'] if part != 'body')}: {error['msg']}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=422, content=error_body(problems or "Invalid request"))


def create_app(settings: Optional[Settings] = None, clock: Clock = utc_now) -> FastAPI:
    """Build the app with explicit startup lifecycle dependencies."""
    settings = settings or get_settings()
    _validate_settings(settings)

    repository = DataRepository(settings, clock=clock)
    audit_service = AuditService(repository=repository, settings=settings, clock=clock)
    slot_service = SlotService(repository=repository, settings=settings, clock=clock)
    booking_service = BookingService(
        repository=repository,
        settings=settings,
        slot_service=slot_service,
        audit_service=audit_service,
        clock=clock,
    )
    exception_service = ExceptionDetectionService(
        repository=repository,
        settings=settings,
        slot_service=slot_service,
        clock=clock,
    )
    dashboard_service = DashboardService(
        repository=repository,
        settings=settings,
        slot_service=slot_service,
        exception_service=exception_service,
        clock=clock,
    )
    qr_service = QRTokenService(
        repository=repository,
        settings=settings,
        booking_service=booking_service,
        audit_service=audit_service,
        clock=clock,
    )
    registry_service = RegistryService(
        repository=repository,
        settings=settings,
        slot_service=slot_service,
        audit_service=audit_service,
        clock=clock,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)

    app.include_router(auth_router)
    app.include_router(booking_router)
    app.include_router(dashboard_router)
    app.include_router(carrier_dashboard_router)
    app.include_router(qr_router)
    app.include_router(audit_router)
    app.include_router(registry_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.audit_service = audit_service
    app.state.slot_service = slot_service
    app.state.booking_service = booking_service
    app.state.exception_service = exception_service
    app.state.dashboard_service = dashboard_service
    app.state.qr_service = qr_service
    app.state.registry_service = registry_service
    app.state.auth_service = auth_service

    return app


def startup(app: FastAPI) -> None:
    """Initialize schema and optionally seed the demo registry."""
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    repository.initialize_database()
    if settings.seed_demo_data:
        repository.seed_demo_data()
    logger.info("System startup completed")


app = create_app()
