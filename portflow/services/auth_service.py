"""Bearer token decoding into an explicit caller identity."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from portflow.domain.models import Actor, Role
from portflow.utils.config import Settings, get_settings
from portflow.utils.timeutils import utc_now


ACCESS_TOKEN_TYPE = "access"


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided admin token is invalid."""


class InvalidAccessTokenError(AuthenticationError):
    """Raised when a bearer token cannot be decoded into an actor."""


class AuthService:
    """Issues and validates HS256 access tokens.

    Tokens are normally minted by the external identity service with the
    shared secret. ``exchange_admin_token`` covers local and service-to-service
    use when ``ADMIN_TOKEN`` is configured.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def issue_access_token(
        self,
        user_id: str,
        role: str,
        expires_delta: timedelta | None = None,
    ) -> str:
        if role not in Role.ALL:
            raise InvalidAccessTokenError(f"Unknown role '{role}'")
        expire = utc_now() + (
            expires_delta or timedelta(minutes=self._settings.access_token_expire_minutes)
        )
        payload = {
            "sub": user_id,
            "role": role,
            "type": ACCESS_TOKEN_TYPE,
            "exp": expire,
        }
        return jwt.encode(
            payload,
            self._settings.jwt_secret_key,
            algorithm=self._settings.jwt_algorithm,
        )

    def exchange_admin_token(self, provided_admin_token: str, user_id: str, role: str) -> str:
        expected = self._settings.admin_token
        if not expected:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        return self.issue_access_token(user_id, role)

    def authenticate(self, bearer_token: str) -> Actor:
        try:
            claims = jwt.decode(
                bearer_token,
                self._settings.jwt_secret_key,
                algorithms=[self._settings.jwt_algorithm],
            )
        except JWTError as exc:
            raise InvalidAccessTokenError("Invalid or expired bearer token") from exc

        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidAccessTokenError("Bearer token is not an access token")
        user_id = claims.get("sub")
        role = claims.get("role")
        if not user_id or role not in Role.ALL:
            raise InvalidAccessTokenError("Bearer token is missing identity claims")
        return Actor(user_id=str(user_id), role=str(role))
