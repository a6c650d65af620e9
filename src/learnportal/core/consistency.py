"""Self-healing scan of the user directory.

Runs at startup and on demand. Reset tooling may wipe every table; the
next check re-seeds the baseline accounts so authentication keeps working.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from learnportal.config.app_config import DefaultAccount
from learnportal.core.clock import Clock, SystemClock, isoformat
from learnportal.core.credentials import CredentialManager
from learnportal.core.errors import PersistenceError
from learnportal.core.models import USERS_TABLE, Role, User
from learnportal.db.record_store import RecordStore
from learnportal.db.users_repository import UserRepository

logger = structlog.get_logger(__name__)

STATUS_OK = "success"
STATUS_REPAIRED = "repaired"
STATUS_WARNING = "warning"
STATUS_ERROR = "error"

FALLBACK_ADMIN = DefaultAccount("admin", "admin", "admin")


@dataclass
class ConsistencyReport:
    """Outcome of a consistency check."""

    status: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status != STATUS_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "details": dict(self.details)}


class ConsistencyChecker:
    """Verifies baseline invariants of the user directory and repairs them."""

    def __init__(
        self,
        users: UserRepository,
        store: RecordStore,
        credentials: CredentialManager,
        default_accounts: Iterable[DefaultAccount] = (),
        clock: Clock | None = None,
    ):
        self.users = users
        self.store = store
        self.credentials = credentials
        self._clock = clock or SystemClock()
        self.default_accounts = list(default_accounts)
        if not any(a.role == Role.ADMIN.value for a in self.default_accounts):
            logger.warning("default_admin_missing_from_config", using=FALLBACK_ADMIN.username)
            self.default_accounts.append(FALLBACK_ADMIN)

    def _seed(self, account: DefaultAccount) -> User:
        user = User(
            username=account.username,
            password_hash=self.credentials.hash(account.password),
            role=Role(account.role),
            created_at=isoformat(self._clock.now()),
        )
        self.users.save(user)
        logger.info("default_account_seeded", username=user.username, role=user.role.value)
        return user

    def _normalize_records(self) -> list[str]:
        """Give every raw user record a sessions list and a passwordHash."""
        repaired = []
        for record in self.users.raw_records():
            changed = False
            if not isinstance(record.get("sessions"), list):
                record["sessions"] = []
                changed = True
            if "passwordHash" not in record and "password" in record:
                record["passwordHash"] = record.pop("password")
                changed = True
            if changed:
                self.store.save(USERS_TABLE, record)
                repaired.append(str(record.get("username", record.get("id"))))
        return repaired

    def check(self) -> ConsistencyReport:
        """Scan the directory and self-heal.

        - empty directory: seed every default account
        - populated but no admin: re-create the default admin account(s)
        - malformed user records: normalized in place

        Returns:
            ConsistencyReport; status "success" when nothing needed fixing
        """
        seeded: list[str] = []
        try:
            if self.users.count(strict=True) == 0:
                logger.warning("user_directory_empty", action="reseed")
                for account in self.default_accounts:
                    seeded.append(self._seed(account).username)
                repaired: list[str] = []
            else:
                repaired = self._normalize_records()
                if not any(u.is_admin for u in self.users.list()):
                    logger.warning("admin_account_missing", action="reseed")
                    for account in self.default_accounts:
                        if account.role != Role.ADMIN.value or self.users.exists(account.username):
                            continue
                        seeded.append(self._seed(account).username)
        except PersistenceError as e:
            logger.error("consistency_check_failed", error=str(e))
            return ConsistencyReport(STATUS_ERROR, {"message": str(e)})

        users = self.users.list()
        has_admin = any(u.is_admin for u in users)
        if not has_admin:
            status = STATUS_WARNING
        elif seeded or repaired:
            status = STATUS_REPAIRED
        else:
            status = STATUS_OK

        details = {
            "users": len(users),
            "admins": sum(1 for u in users if u.is_admin),
            "seeded": seeded,
            "repaired": repaired,
            "tables": self.store.stats(),
        }
        if not has_admin:
            details["message"] = "No administrator account could be restored"
        logger.info("consistency_check_done", status=status, users=len(users), seeded=len(seeded))
        return ConsistencyReport(status, details)
