"""Append-only audit trail of booking, QR and registry transitions."""

from __future__ import annotations

import sqlite3
from typing import Optional

from portflow.domain.models import Actor, AuditLog
from portflow.repository.data_repository import DataRepository, new_id
from portflow.utils.config import Settings, get_settings
from portflow.utils.logger import get_logger
from portflow.utils.timeutils import Clock, to_utc_iso, utc_now


logger = get_logger(__name__)


class AuditService:
    """Records who did what to which entity.

    Recording is best effort: it runs after the business transaction has
    committed and a storage failure is logged, never raised to the caller.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings, clock=clock)
        self._clock = clock

    def record(
        self,
        actor_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str,
        action: str,
        description: str,
    ) -> AuditLog | None:
        entry = AuditLog(
            log_id=new_id(),
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            description=description,
            created_at=to_utc_iso(self._clock()),
        )
        try:
            self._repository.insert_audit_log(entry)
        except sqlite3.Error:
            logger.exception(
                "Failed to record audit entry %s %s/%s",
                action,
                entity_type,
                entity_id,
            )
            return None
        return entry

    def record_for(
        self,
        actor: Actor,
        entity_type: str,
        entity_id: str,
        action: str,
        description: str,
    ) -> AuditLog | None:
        return self.record(
            actor.actor_type,
            actor.user_id,
            entity_type,
            entity_id,
            action,
            description,
        )

    def query(
        self,
        *,
        entity_type: str | None = None,
        action: str | None = None,
        actor_id: str | None = None,
        entity_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLog]:
        """Newest entries first."""
        return self._repository.list_audit_logs(
            entity_type=entity_type,
            action=action,
            actor_id=actor_id,
            entity_id=entity_id,
            limit=limit or self._settings.audit_query_limit,
        )
