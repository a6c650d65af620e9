"""Repository for the user directory.

The directory is the unscoped "users" table; each record's id is the
username, so saving a user is an idempotent upsert.
"""

from __future__ import annotations

import structlog

from learnportal.core.models import USERS_TABLE, User
from learnportal.db.record_store import RecordStore

logger = structlog.get_logger(__name__)


class UserRepository:
    """CRUD over User records."""

    def __init__(self, store: RecordStore):
        self.store = store

    def get(self, username: str) -> User | None:
        """Get a user by username, or None."""
        record = self.store.find_one(USERS_TABLE, lambda r: r.get("username") == username)
        if record is None:
            return None
        try:
            return User.from_dict(record)
        except (KeyError, ValueError) as e:
            logger.error("user_record_invalid", username=username, error=str(e))
            return None

    def list(self) -> list[User]:
        """All users that parse cleanly."""
        users = []
        for record in self.store.get_all(USERS_TABLE):
            try:
                users.append(User.from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning("user_record_skipped", record_id=record.get("id"), error=str(e))
        return users

    def raw_records(self) -> list[dict]:
        """Unparsed directory records (for consistency checks)."""
        return self.store.get_all(USERS_TABLE)

    def exists(self, username: str) -> bool:
        return self.get(username) is not None

    def count(self, strict: bool = False) -> int:
        """Number of user records.

        Raises:
            PersistenceError: If strict and the directory file cannot be parsed
        """
        return len(self.store.get_all(USERS_TABLE, strict=strict))

    def save(self, user: User) -> User:
        """Upsert a user record.

        Raises:
            PersistenceError: If the directory cannot be written
        """
        record = user.to_dict()
        existing = self.store.find_one(USERS_TABLE, lambda r: r.get("username") == user.username)
        if existing is not None:
            # Keep any legacy id
            record["id"] = existing.get("id", user.username)
        self.store.save(USERS_TABLE, record)
        return user

    def delete(self, username: str) -> bool:
        """Remove a user record. Returns True if one was removed."""
        record = self.store.find_one(USERS_TABLE, lambda r: r.get("username") == username)
        if record is None:
            return False
        return self.store.delete(USERS_TABLE, record["id"])

    def all_tokens(self) -> set[str]:
        """Every session token currently held by any user."""
        tokens: set[str] = set()
        for user in self.list():
            tokens.update(s.token for s in user.sessions)
        return tokens
