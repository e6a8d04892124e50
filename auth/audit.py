"""
auth/audit.py -- Append-only audit trail for security-relevant actions.

Actions are dotted names: "user.registered", "user.login", "user.logout",
"api_key.created", "api_key.revoked".

Failure policy:
  Standalone writes (no conn) never fail the caller. A storage error is logged
  and swallowed -- a login that already succeeded is not rolled back because
  its audit row could not be written.

  Writes that join a transaction (conn given) propagate errors, so the
  enclosing transaction rolls back with everything else in it.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuditLog
from auth.store import CredentialStore

logger = logging.getLogger("tenantgate.audit")


class AuditRecorder:
    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def record(
        self,
        action: str,
        actor_id: str | None = None,
        organization_id: str | None = None,
        metadata: dict | None = None,
        conn: Connection | None = None,
    ) -> AuditLog | None:
        """Append one audit entry. Returns the entry, or None if a standalone write failed."""
        entry = AuditLog(
            action=action,
            actor_id=actor_id,
            organization_id=organization_id,
            metadata=metadata or {},
        )
        if conn is not None:
            return self._store.create_audit_log(entry, conn=conn)
        try:
            return self._store.create_audit_log(entry)
        except SQLAlchemyError as exc:
            logger.error("Audit write failed for %s (actor=%s): %s", action, actor_id, type(exc).__name__)
            return None

    def history(
        self,
        actor_id: str | None = None,
        organization_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        return self._store.list_audit_logs(
            actor_id=actor_id,
            organization_id=organization_id,
            action=action,
            limit=limit,
        )
