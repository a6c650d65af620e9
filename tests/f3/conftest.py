"""Fixtures for F3 tests - sessions and authentication."""

import pytest

from learnportal.core.credentials import CredentialManager
from learnportal.core.models import Role, User
from learnportal.core.sessions import SessionManager
from learnportal.db.record_store import RecordStore
from learnportal.db.users_repository import UserRepository


@pytest.fixture
def users(tmp_path, clock) -> UserRepository:
    """User repository over an empty store."""
    return UserRepository(RecordStore(tmp_path / "data", clock=clock))


@pytest.fixture
def credentials() -> CredentialManager:
    return CredentialManager()


@pytest.fixture
def alice(users, credentials, clock) -> User:
    """A persisted regular user."""
    user = User("alice", credentials.hash("pw123"), Role.USER, created_at=clock.now().isoformat())
    users.save(user)
    return user


@pytest.fixture
def make_manager(users, clock, fingerprint):
    """Factory for session managers with a custom user cap."""

    def _make(user_cap: int | None = 10, **kwargs) -> SessionManager:
        return SessionManager(
            users,
            clock=clock,
            fingerprint=fingerprint,
            session_limits={"user": user_cap, "admin": None},
            **kwargs,
        )

    return _make
