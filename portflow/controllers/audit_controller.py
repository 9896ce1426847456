"""Controller layer for the audit trail."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portflow.controllers.dependencies import get_audit_service, require
from portflow.controllers.schemas import AuditLogOut, Envelope, ok
from portflow.domain.models import Actor
from portflow.services.audit_service import AuditService
from portflow.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/logs", tags=["audit"])


@router.get("", response_model=Envelope[list[AuditLogOut]])
def list_logs(
    entity_type: Optional[str] = Query(default=None, alias="entityType"),
    action: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None, alias="actorId"),
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    limit: Optional[int] = Query(default=None, ge=1, le=5000),
    service: AuditService = Depends(get_audit_service),
    _: Actor = Depends(require("logs:read")),
) -> Envelope:
    """Newest entries first."""
    try:
        entries = service.query(
            entity_type=entity_type.upper() if entity_type else None,
            action=action.upper() if action else None,
            actor_id=actor_id,
            entity_id=entity_id,
            limit=limit,
        )
        return ok([AuditLogOut.from_domain(entry) for entry in entries])
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected audit query failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to query audit logs",
        ) from exc
