# commandcenter/audit.py
"""Append-only audit trail. Every job, ritual run and task mutation writes here."""
import logging
from typing import Any, Dict, List, Optional

from commandcenter.common.records import AUDIT_STATUSES, AuditEntry
from commandcenter.storage.base import RecordStore

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, store: RecordStore):
        self.store = store

    def log(
        self,
        actor: str,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        status: str = "success",
        error: Optional[str] = None,
    ) -> AuditEntry:
        if status not in AUDIT_STATUSES:
            raise ValueError(f"Unsupported audit status: {status}")
        entry = AuditEntry(
            actor=actor,
            action=action,
            payload=dict(payload or {}),
            status=status,
            error=error,
        )
        logger.debug(f"audit {actor} {action} status={status}")
        return self.store.add_audit_entry(entry)

    def recent(self, limit: int = 20, offset: int = 0) -> List[AuditEntry]:
        return self.store.list_audit_entries(start=offset, count=limit)

    def by_action(self, action: str, limit: int = 20) -> List[AuditEntry]:
        return self.store.list_audit_entries(action=action, count=limit)

    def by_status(self, status: str, limit: int = 20) -> List[AuditEntry]:
        return self.store.list_audit_entries(status=status, count=limit)

    def log_ritual_run(self, ritual_name: str, success: bool, **metadata: Any) -> AuditEntry:
        return self.log(
            actor="system",
            action="ritual.run",
            payload={"ritualName": ritual_name, "success": success, **metadata},
            status="success" if success else "failure",
        )

    def log_manifest_operation(self, operation: str, project_name: str, **metadata: Any) -> AuditEntry:
        return self.log(
            actor="system",
            action=f"manifest.{operation}",
            payload={"projectName": project_name, **metadata},
        )


def entry_to_dict(entry: AuditEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "actor": entry.actor,
        "action": entry.action,
        "payload": entry.payload,
        "status": entry.status,
        "error": entry.error,
        "createdAt": entry.created_at.isoformat(),
    }
