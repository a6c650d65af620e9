"""Local persistence: JSON record tables and the repositories built on them."""

from learnportal.db.audit_repository import AuditRepository
from learnportal.db.record_store import CURRENT_USER, Mutation, RecordStore
from learnportal.db.users_repository import UserRepository

__all__ = [
    "AuditRepository",
    "CURRENT_USER",
    "Mutation",
    "RecordStore",
    "UserRepository",
]
