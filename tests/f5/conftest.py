"""Fixtures for F5 tests - lesson progress and timers."""

import pytest

from learnportal.core.progress import ProgressTracker
from learnportal.db.audit_repository import AuditRepository
from learnportal.db.record_store import RecordStore


@pytest.fixture
def store(tmp_path, clock) -> RecordStore:
    """Store scoped to alice."""
    store = RecordStore(tmp_path / "data", clock=clock)
    store.set_current_user("alice")
    return store


@pytest.fixture
def audit(store, clock) -> AuditRepository:
    return AuditRepository(store, clock)


@pytest.fixture
def tracker(store, audit, clock) -> ProgressTracker:
    return ProgressTracker(store, audit, clock)


@pytest.fixture
def failing_writes(store, monkeypatch):
    """Make every table write fail with a PersistenceError."""
    from learnportal.core.errors import PersistenceError

    def _fail(table, namespace, records):
        raise PersistenceError(table, "disk full")

    def _enable():
        monkeypatch.setattr(store, "_write", _fail)

    return _enable
