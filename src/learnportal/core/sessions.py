"""Device-scoped multi-session management.

Each user record carries its sessions. On login:
1. sessions created before the retention window are purged
2. a new session is always appended (no per-device dedup, so several
   tabs or browsers on one device can stay logged in)
3. past the role's cap, least-recently-used sessions are evicted
4. the user record is persisted once

Every mutation works on a copy of the user and persists at the end, so a
failed write leaves the stored record as it was.
"""

from __future__ import annotations

import copy
import secrets
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator

import structlog

from learnportal.core.clock import Clock, SystemClock, isoformat, parse_iso
from learnportal.core.errors import PersistenceError, SessionError
from learnportal.core.fingerprint import (
    DeviceFingerprint,
    EnvironmentSignals,
    summarize_user_agent,
)
from learnportal.core.models import Role, Session, User
from learnportal.db.users_repository import UserRepository

logger = structlog.get_logger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_SESSION_LIMITS: dict[str, int | None] = {"user": 10, "admin": None}
TOKEN_BYTES = 32

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _moment(value: str) -> datetime:
    return parse_iso(value) or _EPOCH


class SessionLedger:
    """Sessions ordered from least to most recently used.

    Built once from the stored list; afterwards order is maintained by
    moving touched sessions to the most-recent end, so eviction pops from
    the other end without re-sorting.
    """

    def __init__(self, sessions: Iterable[Session] = ()):
        self._ring: deque[Session] = deque(
            sorted(sessions, key=lambda s: _moment(s.last_used))
        )

    def __len__(self) -> int:
        return len(self._ring)

    def __iter__(self) -> Iterator[Session]:
        return iter(self._ring)

    def find(self, token: str) -> Session | None:
        for session in self._ring:
            if session.token == token:
                return session
        return None

    def append(self, session: Session) -> None:
        """Add a session as the most recently used."""
        self._ring.append(session)

    def touch(self, token: str, when: str) -> Session | None:
        """Mark a session as used now and move it to the recent end."""
        session = self.find(token)
        if session is None:
            return None
        self._ring.remove(session)
        session.last_used = when
        self._ring.append(session)
        return session

    def remove(self, token: str) -> Session | None:
        session = self.find(token)
        if session is not None:
            self._ring.remove(session)
        return session

    def purge_created_before(self, cutoff: datetime) -> list[Session]:
        """Drop sessions created at or before cutoff (or with no valid date)."""
        kept: deque[Session] = deque()
        purged: list[Session] = []
        for session in self._ring:
            created = parse_iso(session.created_at)
            if created is not None and created > cutoff:
                kept.append(session)
            else:
                purged.append(session)
        self._ring = kept
        return purged

    def evict_to(self, cap: int) -> list[Session]:
        """Evict least-recently-used sessions until at most cap remain."""
        evicted = []
        while len(self._ring) > cap:
            evicted.append(self._ring.popleft())
        return evicted

    def to_list(self) -> list[Session]:
        return list(self._ring)


class SessionManager:
    """Issues, validates, evicts and revokes session tokens."""

    def __init__(
        self,
        users: UserRepository,
        clock: Clock | None = None,
        fingerprint: DeviceFingerprint | None = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        session_limits: dict[str, int | None] | None = None,
        token_factory: Callable[[], str] | None = None,
    ):
        self.users = users
        self._clock = clock or SystemClock()
        self._fingerprint = fingerprint or DeviceFingerprint()
        self.retention = timedelta(days=retention_days)
        self.session_limits = dict(
            DEFAULT_SESSION_LIMITS if session_limits is None else session_limits
        )
        self._token_factory = token_factory or (lambda: secrets.token_urlsafe(TOKEN_BYTES))

    def limit_for(self, role: Role) -> int | None:
        """Max concurrent sessions for a role (None = unlimited)."""
        return self.session_limits.get(role.value)

    def _issue_token(self) -> str:
        taken = self.users.all_tokens()
        token = self._token_factory()
        while token in taken:
            token = self._token_factory()
        return token

    def _is_expired(self, session: Session, now: datetime) -> bool:
        created = parse_iso(session.created_at)
        return created is None or created <= now - self.retention

    # -------------------------------------------------------------------------
    # Login / validation
    # -------------------------------------------------------------------------

    def open_session(
        self, user: User, signals: EnvironmentSignals | None = None
    ) -> tuple[User, Session]:
        """Create a session for an authenticated user.

        Args:
            user: User whose credentials were just verified
            signals: Caller environment (defaults to the local environment)

        Returns:
            (updated user as persisted, new session)

        Raises:
            PersistenceError: If the user record cannot be written
        """
        now = self._clock.now()
        now_iso = isoformat(now)
        signals = signals or self._fingerprint.signals()

        working = copy.deepcopy(user)
        ledger = SessionLedger(working.sessions)

        purged = ledger.purge_created_before(now - self.retention)
        if purged:
            logger.info("sessions_expired_purged", username=user.username, count=len(purged))

        session = Session(
            token=self._issue_token(),
            device_id=self._fingerprint.fingerprint(signals),
            user_agent_summary=summarize_user_agent(signals.user_agent),
            created_at=now_iso,
            last_used=now_iso,
        )
        ledger.append(session)

        cap = self.limit_for(working.role)
        if cap is not None:
            evicted = ledger.evict_to(cap)
            if evicted:
                logger.info(
                    "session_limit_evicted",
                    username=user.username,
                    evicted=len(evicted),
                    limit=cap,
                )

        working.sessions = ledger.to_list()
        working.last_login = now_iso
        self.users.save(working)

        logger.info(
            "session_opened",
            username=user.username,
            device_id=session.device_id,
            active_sessions=len(working.sessions),
        )
        return working, session

    def validate(self, username: str, token: str) -> bool:
        """Check a session token and refresh its lastUsed.

        Fails closed: unknown user, disabled account, no sessions, no exact
        token match or an expired session all return False.
        """
        user = self.users.get(username)
        if user is None:
            logger.info("session_invalid", username=username, reason="user_not_found")
            return False
        if not user.is_active:
            logger.info("session_invalid", username=username, reason="account_disabled")
            return False
        if not token or user.find_session(token) is None:
            logger.info(
                "session_invalid",
                username=username,
                reason="token_not_found",
                available=len(user.sessions),
            )
            return False

        now = self._clock.now()
        if self._is_expired(user.find_session(token), now):
            logger.info("session_invalid", username=username, reason="expired")
            return False

        working = copy.deepcopy(user)
        ledger = SessionLedger(working.sessions)
        ledger.touch(token, isoformat(now))
        working.sessions = ledger.to_list()
        try:
            self.users.save(working)
        except PersistenceError as e:
            logger.warning("session_touch_failed", username=username, error=str(e))
        return True

    def require(self, username: str, token: str) -> User:
        """Validate and return the fresh user record.

        Raises:
            SessionError: If the session is not valid
        """
        if not self.validate(username, token):
            raise SessionError("Invalid or expired session")
        user = self.users.get(username)
        if user is None:
            raise SessionError("Invalid or expired session")
        return user

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def revoke(self, username: str, token: str) -> bool:
        """Remove exactly the matching session. No-op if absent.

        Returns:
            True if a session was removed

        Raises:
            PersistenceError: If the user record cannot be written
        """
        user = self.users.get(username)
        if user is None:
            return False

        working = copy.deepcopy(user)
        ledger = SessionLedger(working.sessions)
        if ledger.remove(token) is None:
            return False
        working.sessions = ledger.to_list()
        self.users.save(working)
        logger.info("session_revoked", username=username, remaining=len(working.sessions))
        return True

    def logout(self, username: str, token: str) -> None:
        """Drop the caller's own session. Always succeeds."""
        try:
            self.revoke(username, token)
        except PersistenceError as e:
            logger.warning("logout_persist_failed", username=username, error=str(e))

    def list_sessions(self, username: str) -> list[Session]:
        """Sessions of a user, most recently used first."""
        user = self.users.get(username)
        if user is None:
            return []
        return list(reversed(SessionLedger(user.sessions).to_list()))

    def cleanup_expired(self) -> int:
        """Purge sessions past retention for every user.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock.now() - self.retention
        removed = 0
        for user in self.users.list():
            working = copy.deepcopy(user)
            ledger = SessionLedger(working.sessions)
            purged = ledger.purge_created_before(cutoff)
            if not purged:
                continue
            working.sessions = ledger.to_list()
            self.users.save(working)
            removed += len(purged)
        logger.info("sessions_cleanup_done", removed=removed)
        return removed
