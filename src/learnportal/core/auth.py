"""Authentication service: the contract the view layer talks to.

login / logout / register / is_admin / on_auth_state_change, plus the
admin-only user management operations. Authentication, session and
validation failures come back as AuthResult values; only admin access
violations and missing targets raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import structlog

from learnportal.core.clock import Clock, SystemClock, isoformat
from learnportal.core.consistency import ConsistencyChecker, ConsistencyReport
from learnportal.core.credentials import CredentialManager
from learnportal.core.errors import (
    AccessDeniedError,
    AuthenticationError,
    AuthFailure,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from learnportal.core.fingerprint import EnvironmentSignals
from learnportal.core.models import Role, Session, User
from learnportal.core.progress import ProgressTracker
from learnportal.core.sessions import SessionManager
from learnportal.db.audit_repository import AuditRepository
from learnportal.db.record_store import RecordStore
from learnportal.db.users_repository import UserRepository
from learnportal.utils.validators import parse_role, validate_password, validate_username

logger = structlog.get_logger(__name__)

AuthListener = Callable[[User | None], None]


@dataclass
class AuthResult:
    """Outcome of login / register / resume."""

    success: bool
    user: User | None = None
    token: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.user is not None:
            data["user"] = self.user.to_public_dict()
        if self.token is not None:
            data["token"] = self.token
        if self.error is not None:
            data["error"] = self.error
        return data


class AuthService:
    """Current-user state plus login, registration and user administration."""

    def __init__(
        self,
        users: UserRepository,
        sessions: SessionManager,
        credentials: CredentialManager,
        checker: ConsistencyChecker,
        store: RecordStore,
        audit: AuditRepository | None = None,
        progress: ProgressTracker | None = None,
        clock: Clock | None = None,
        min_username_length: int = 3,
        min_password_length: int = 4,
    ):
        self.users = users
        self.sessions = sessions
        self.credentials = credentials
        self.checker = checker
        self.store = store
        self._clock = clock or SystemClock()
        self.audit = audit or AuditRepository(store, self._clock)
        self.progress = progress
        self.min_username_length = min_username_length
        self.min_password_length = min_password_length

        self._current_user: User | None = None
        self._current_token: str | None = None
        self._listeners: list[AuthListener] = []

    # -------------------------------------------------------------------------
    # Current user state
    # -------------------------------------------------------------------------

    @property
    def current_user(self) -> User | None:
        return self._current_user

    @property
    def current_token(self) -> str | None:
        return self._current_token

    @property
    def is_authenticated(self) -> bool:
        return self._current_user is not None

    def is_admin(self) -> bool:
        return self._current_user is not None and self._current_user.is_admin

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Subscribe to login/logout. Returns an unsubscribe callable."""
        self._listeners.append(callback)
        return lambda: self.remove_listener(callback)

    def remove_listener(self, callback: AuthListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback(self._current_user)
            except Exception as e:
                logger.warning("auth_listener_failed", error=str(e))

    def _enter(self, user: User, token: str) -> None:
        changed = self._current_user is None or self._current_user.username != user.username
        self._current_user = user
        self._current_token = token
        self.store.set_current_user(user.username)
        if self.progress is not None and not self.progress.is_loaded(user.username):
            self.progress.load()
        if changed:
            self._notify()

    def _leave(self) -> None:
        previous = self._current_user
        self._current_user = None
        self._current_token = None
        self.store.set_current_user(None)
        if previous is not None:
            if self.progress is not None:
                self.progress.forget(previous.username)
            self._notify()

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def initialize(self, saved: tuple[str, str] | None = None) -> bool:
        """Run the consistency check and restore a saved session.

        Args:
            saved: (username, token) persisted by the client, if any

        Returns:
            True if a saved session was restored
        """
        report = self.checker.check()
        logger.info("auth_initialized", consistency=report.status)
        if saved is None:
            return False
        username, token = saved
        return self.resume(username, token).success

    def resume(self, username: str, token: str) -> AuthResult:
        """Adopt an existing session as the current user if it validates."""
        if not self.sessions.validate(username, token):
            if self._current_user is not None and self._current_user.username == username:
                self._leave()
            return AuthResult(False, error="Invalid or expired session")
        user = self.users.get(username)
        if user is None:
            return AuthResult(False, error="Invalid or expired session")
        self._enter(user, token)
        return AuthResult(True, user=user, token=token)

    def check_consistency(self) -> ConsistencyReport:
        return self.checker.check()

    # -------------------------------------------------------------------------
    # Login / logout / register
    # -------------------------------------------------------------------------

    def _authenticate(self, username: str, password: str) -> User:
        user = self.users.get(username)
        if user is None and self.users.count(strict=True) == 0:
            # Directory wiped externally; reseed and retry once
            self.checker.check()
            user = self.users.get(username)
        if user is None:
            raise AuthenticationError(AuthFailure.USER_NOT_FOUND, username)
        if not user.is_active:
            raise AuthenticationError(AuthFailure.ACCOUNT_DISABLED, username)

        scheme = self.credentials.identify(user.password_hash, password)
        if self.credentials.needs_upgrade(scheme):
            user.password_hash = self.credentials.hash(password)
            logger.info(
                "password_hash_upgraded",
                username=username,
                from_scheme=scheme.name,
                to_scheme=self.credentials.primary.name,
            )
        return user

    def login(
        self, username: str, password: str, signals: EnvironmentSignals | None = None
    ) -> AuthResult:
        """Verify credentials and open a new session.

        Returns:
            AuthResult with the user and session token, or the error message
        """
        username = (username or "").strip()
        try:
            user = self._authenticate(username, password)
            user, session = self.sessions.open_session(user, signals)
        except AuthenticationError as e:
            logger.info("login_failed", username=username, reason=e.reason.value)
            self.audit.log(
                "login_failed", "user", username, {"reason": e.reason.value}, namespace=None
            )
            return AuthResult(False, error=str(e))
        except PersistenceError as e:
            logger.error("login_persist_failed", username=username, error=str(e))
            return AuthResult(False, error="Login failed: local storage unavailable")

        self._enter(user, session.token)
        self.audit.log(
            "user_login",
            "user",
            user.username,
            {"deviceId": session.device_id, "role": user.role.value},
        )
        self.audit.log_event("login", "auth", {"username": user.username})
        return AuthResult(True, user=user, token=session.token)

    def logout(self) -> None:
        """End the current session. Always succeeds."""
        user = self._current_user
        if user is None:
            return
        if self._current_token:
            self.sessions.logout(user.username, self._current_token)
        self.audit.log("user_logout", "user", user.username)
        logger.info("user_logged_out", username=user.username)
        self._leave()

    def register(self, username: str, password: str, role: str | Role = Role.USER) -> AuthResult:
        """Create a new account. Does not log in."""
        try:
            username = validate_username(username, self.min_username_length)
            validate_password(password, self.min_password_length)
            role = parse_role(role)
        except ValidationError as e:
            return AuthResult(False, error=str(e))

        if self.users.exists(username):
            return AuthResult(False, error="Username already exists")

        user = User(
            username=username,
            password_hash=self.credentials.hash(password),
            role=role,
            created_at=isoformat(self._clock.now()),
        )
        try:
            self.users.save(user)
        except PersistenceError as e:
            logger.error("register_persist_failed", username=username, error=str(e))
            return AuthResult(False, error="Registration failed: could not save user")

        self.audit.log("user_registered", "user", username, {"role": role.value}, namespace=None)
        logger.info("user_registered", username=username, role=role.value)
        return AuthResult(True, user=user)

    # -------------------------------------------------------------------------
    # Admin operations
    # -------------------------------------------------------------------------

    def _require_admin(self) -> User:
        if not self.is_admin():
            raise AccessDeniedError()
        return self._current_user

    def _require_user(self, username: str) -> User:
        user = self.users.get(username)
        if user is None:
            raise NotFoundError("user", username)
        return user

    def get_all_users(self) -> list[User]:
        self._require_admin()
        return self.users.list()

    def update_user(
        self,
        username: str,
        *,
        role: str | Role | None = None,
        is_active: bool | None = None,
        password: str | None = None,
    ) -> User:
        """Edit another account.

        Raises:
            AccessDeniedError: Caller is not an admin
            NotFoundError: Unknown username
            ValidationError: Bad role/password, or an admin demoting or
                disabling their own account
        """
        admin = self._require_admin()
        user = self._require_user(username)
        changes: dict[str, Any] = {}

        if role is not None:
            new_role = parse_role(role)
            if user.username == admin.username and new_role != Role.ADMIN:
                raise ValidationError("Admins cannot demote themselves", field="role")
            user.role = new_role
            changes["role"] = new_role.value
        if is_active is not None:
            if user.username == admin.username and not is_active:
                raise ValidationError("Admins cannot disable themselves", field="is_active")
            user.is_active = is_active
            changes["isActive"] = is_active
        if password is not None:
            validate_password(password, self.min_password_length)
            user.password_hash = self.credentials.hash(password)
            changes["password"] = "changed"

        self.users.save(user)
        self.audit.log("user_updated", "user", username, changes)
        return user

    def delete_user(self, username: str) -> bool:
        """Delete a non-admin account and its scoped tables.

        Raises:
            AccessDeniedError: Caller is not an admin, or the target is an admin
            NotFoundError: Unknown username
        """
        self._require_admin()
        user = self._require_user(username)
        if user.is_admin:
            raise AccessDeniedError("Cannot delete admin users")

        removed = self.users.delete(username)
        tables = self.store.drop_namespace(username)
        if self.progress is not None:
            self.progress.forget(username)
        self.audit.log("user_deleted", "user", username, {"tablesRemoved": tables})
        logger.info("user_deleted", username=username, tables_removed=tables)
        return removed

    def get_user_sessions(self, username: str) -> list[Session]:
        self._require_admin()
        self._require_user(username)
        return self.sessions.list_sessions(username)

    def revoke_session(self, username: str, token: str) -> bool:
        self._require_admin()
        self._require_user(username)
        revoked = self.sessions.revoke(username, token)
        if revoked:
            self.audit.log("session_revoked", "user", username)
        return revoked

    def cleanup_expired_sessions(self) -> int:
        self._require_admin()
        removed = self.sessions.cleanup_expired()
        self.audit.log("sessions_cleaned", "system", "sessions", {"removed": removed})
        return removed
