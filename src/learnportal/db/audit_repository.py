"""Append-only audit log and event stream.

Entries are written to the current user's "auditLogs" / "events" tables.
There is no update path: an entry is never mutated after creation.
"""

from __future__ import annotations

from typing import Any

import structlog

from learnportal.core.clock import Clock, SystemClock, isoformat
from learnportal.core.errors import PersistenceError
from learnportal.core.models import AUDIT_TABLE, EVENTS_TABLE, AuditLogEntry
from learnportal.db.record_store import CURRENT_USER, RecordStore

logger = structlog.get_logger(__name__)


class AuditRepository:
    """Writes and reads audit entries."""

    def __init__(self, store: RecordStore, clock: Clock | None = None):
        self.store = store
        self._clock = clock or SystemClock()

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        details: dict[str, Any] | None = None,
        user_id: str | None = None,
        namespace: Any = CURRENT_USER,
    ) -> AuditLogEntry | None:
        """Append an audit entry.

        Entries go to the current user's log unless namespace is given;
        namespace=None writes to the unscoped log of anonymous actions.
        Audit failures never fail the audited operation: a PersistenceError
        is logged and None is returned.
        """
        if user_id is None:
            scoped = self.store.current_user if namespace is CURRENT_USER else namespace
            user_id = scoped or "anonymous"
        entry = AuditLogEntry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=dict(details or {}),
            timestamp=isoformat(self._clock.now()),
            user_id=user_id,
        )
        record = entry.to_dict()
        # Fresh id on every write so nothing can overwrite an entry
        record["id"] = self.store.generate_id()
        try:
            self.store.save(AUDIT_TABLE, record, namespace=namespace)
        except PersistenceError as e:
            logger.warning("audit_log_failed", action=action, error=str(e))
            return None
        return entry

    def log_event(self, event_type: str, category: str, data: dict[str, Any] | None = None) -> None:
        """Append an analytics-style event (login, timer, etc.)."""
        record = {
            "id": self.store.generate_id(),
            "eventType": event_type,
            "category": category,
            "data": dict(data or {}),
            "timestamp": isoformat(self._clock.now()),
        }
        try:
            self.store.save(EVENTS_TABLE, record)
        except PersistenceError as e:
            logger.warning("event_log_failed", event_type=event_type, error=str(e))

    def list(
        self, limit: int = 100, entity_type: str | None = None, namespace: Any = CURRENT_USER
    ) -> list[AuditLogEntry]:
        """Most recent entries first."""
        records = self.store.get_all(AUDIT_TABLE, namespace=namespace)
        if entity_type:
            records = [r for r in records if r.get("entityType") == entity_type]
        records.sort(key=lambda r: r.get("timestamp", ""), reverse=True)
        return [AuditLogEntry.from_dict(r) for r in records[:limit]]

    def events(self, limit: int = 100, category: str | None = None) -> list[dict[str, Any]]:
        """Most recent events first."""
        records = self.store.get_all(EVENTS_TABLE)
        if category:
            records = [r for r in records if r.get("category") == category]
        records.sort(key=lambda r: r.get("timestamp", ""), reverse=True)
        return records[:limit]
