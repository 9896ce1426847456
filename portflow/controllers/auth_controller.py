"""Controller layer for token exchange and service health."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field, field_validator

from portflow.controllers.dependencies import get_auth_service
from portflow.controllers.schemas import ApiModel, Envelope, ok
from portflow.domain.models import Role
from portflow.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAccessTokenError,
    InvalidAdminTokenError,
)
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["auth"])


class TokenRequest(ApiModel):
    admin_token: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    role: str = Field(default=Role.ADMIN)

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in Role.ALL:
            raise ValueError(f"role must be one of {', '.join(Role.ALL)}")
        return normalized


class TokenResponse(ApiModel):
    access_token: str
    token_type: str = "bearer"


class HealthResponse(ApiModel):
    status: str
    app_name: str
    version: str


@router.post("/auth/token", response_model=Envelope[TokenResponse])
def issue_token(
    payload: TokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> Envelope:
    try:
        token = auth_service.exchange_admin_token(payload.admin_token, payload.user_id, payload.role)
        logger.info("Access token issued for %s (%s)", payload.user_id, payload.role)
        return ok(TokenResponse(access_token=token))
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError, InvalidAccessTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected token exchange failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to issue access token",
        ) from exc


@router.get("/health", response_model=Envelope[HealthResponse])
def health(request: Request) -> Envelope:
    settings = request.app.state.settings
    return ok(HealthResponse(status="ok", app_name=settings.app_name, version=settings.app_version))
