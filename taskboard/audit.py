"""Append-only audit trail of mutating actions."""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from .database import Database
from .models import AuditLogEntry

logger = logging.getLogger("taskboard.audit")

ROLE_CHANGE = "ROLE_CHANGE"
USER_REGISTERED = "USER_REGISTERED"
PROJECT_CREATED = "PROJECT_CREATED"
PROJECT_DELETED = "PROJECT_DELETED"
MANAGER_ASSIGNED_TO_PROJECT = "MANAGER_ASSIGNED_TO_PROJECT"
TASK_CREATED = "TASK_CREATED"
TASK_UPDATED = "TASK_UPDATED"


class AuditLogService:
    """Records actions on a best-effort basis.

    A failed write is logged locally and never propagates to the operation
    that triggered it.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def log_action(
        self,
        action: str,
        actor_id: int,
        target_id: Optional[object],
        details: Optional[Mapping[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        try:
            entry = self._database.create_audit_entry(
                action=action,
                actor_id=actor_id,
                target_id=str(target_id) if target_id is not None else None,
                details=details or {},
            )
        except Exception:
            logger.exception("Failed to create audit log entry for %s", action)
            return None
        logger.info("Audit log created: %s", action)
        return entry

    def list_entries(self) -> List[AuditLogEntry]:
        """Return every entry, newest first."""

        return self._database.list_audit_entries()


__all__ = [
    "AuditLogService",
    "MANAGER_ASSIGNED_TO_PROJECT",
    "PROJECT_CREATED",
    "PROJECT_DELETED",
    "ROLE_CHANGE",
    "TASK_CREATED",
    "TASK_UPDATED",
    "USER_REGISTERED",
]
