"""Explicit wiring of the portal engine.

Every service is constructed here with its collaborators passed in, so a
test can swap the clock, the fingerprint source or the remote store.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from learnportal.config.app_config import AppConfig, load_app_config
from learnportal.core.auth import AuthService
from learnportal.core.clock import Clock, SystemClock
from learnportal.core.consistency import ConsistencyChecker
from learnportal.core.credentials import CredentialManager
from learnportal.core.fingerprint import DeviceFingerprint
from learnportal.core.progress import ProgressTracker
from learnportal.core.sessions import SessionManager
from learnportal.db.audit_repository import AuditRepository
from learnportal.db.record_store import RecordStore
from learnportal.db.users_repository import UserRepository
from learnportal.sync.coordinator import ReplicationCoordinator
from learnportal.sync.remote import HttpRemoteStore, NullRemoteStore, RemoteStore

logger = structlog.get_logger(__name__)


@dataclass
class PortalEngine:
    """All engine services for one data directory."""

    config: AppConfig
    clock: Clock
    store: RecordStore
    credentials: CredentialManager
    fingerprint: DeviceFingerprint
    users: UserRepository
    audit: AuditRepository
    sessions: SessionManager
    checker: ConsistencyChecker
    progress: ProgressTracker
    coordinator: ReplicationCoordinator
    auth: AuthService

    async def aclose(self) -> None:
        await self.coordinator.aclose()


def _build_remote(config: AppConfig) -> RemoteStore:
    if config.sync.enabled and config.sync.remote_url:
        return HttpRemoteStore(config.sync.remote_url, timeout=config.sync.timeout_seconds)
    return NullRemoteStore()


def create_engine(
    config: AppConfig | None = None,
    *,
    clock: Clock | None = None,
    fingerprint: DeviceFingerprint | None = None,
    remote: RemoteStore | None = None,
) -> PortalEngine:
    """Build an engine from config.

    Args:
        config: Application config (loaded from disk when None)
        clock: Time source (system clock when None)
        fingerprint: Device fingerprint source (local environment when None)
        remote: Remote store (derived from the sync config when None)

    Returns:
        A wired PortalEngine. Call engine.auth.initialize() before use.
    """
    config = config or load_app_config()
    clock = clock or SystemClock()
    fingerprint = fingerprint or DeviceFingerprint()

    store = RecordStore(config.storage.data_dir, config.storage.global_tables, clock=clock)
    credentials = CredentialManager(config.auth.static_salt)
    users = UserRepository(store)
    audit = AuditRepository(store, clock)
    sessions = SessionManager(
        users,
        clock=clock,
        fingerprint=fingerprint,
        retention_days=config.auth.session_retention_days,
        session_limits=config.auth.session_limits,
    )
    checker = ConsistencyChecker(
        users, store, credentials, config.auth.default_accounts, clock=clock
    )
    progress = ProgressTracker(store, audit, clock)

    coordinator = ReplicationCoordinator(
        remote if remote is not None else _build_remote(config),
        delay_seconds=config.sync.delay_seconds,
        timeout_seconds=config.sync.timeout_seconds,
        reconnect_seconds=config.sync.reconnect_seconds,
    )
    if config.sync.enabled or remote is not None:
        coordinator.attach(store)

    auth = AuthService(
        users,
        sessions,
        credentials,
        checker,
        store,
        audit=audit,
        progress=progress,
        clock=clock,
        min_username_length=config.auth.min_username_length,
        min_password_length=config.auth.min_password_length,
    )

    logger.info(
        "engine_created",
        data_dir=str(config.storage.data_dir),
        sync_enabled=config.sync.enabled,
    )
    return PortalEngine(
        config=config,
        clock=clock,
        store=store,
        credentials=credentials,
        fingerprint=fingerprint,
        users=users,
        audit=audit,
        sessions=sessions,
        checker=checker,
        progress=progress,
        coordinator=coordinator,
        auth=auth,
    )
