"""Record types persisted by the portal engine.

Persisted layout (JSON, camelCase keys):
- users:     User records, id == username, unscoped table
- progress:  LessonProgress records, one per lessonId, user-scoped
- auditLogs: AuditLogEntry records, append-only, user-scoped
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

USERS_TABLE = "users"
PROGRESS_TABLE = "progress"
AUDIT_TABLE = "auditLogs"
EVENTS_TABLE = "events"
SETTINGS_TABLE = "settings"

LESSON_ID_PATTERN = re.compile(r"^(\d+)-(\d+)-(\d+)$")


class Role(str, Enum):
    """User role."""

    USER = "user"
    ADMIN = "admin"


class LessonStatus(str, Enum):
    """Lesson lifecycle status."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# =============================================================================
# USERS & SESSIONS
# =============================================================================


@dataclass
class Session:
    """One login of a user on one device."""

    token: str
    device_id: str
    user_agent_summary: str = ""
    created_at: str = ""
    last_used: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "token": self.token,
            "deviceId": self.device_id,
            "userAgent": self.user_agent_summary,
            "createdAt": self.created_at,
            "lastUsed": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            token=data["token"],
            device_id=data.get("deviceId", ""),
            user_agent_summary=data.get("userAgent", ""),
            created_at=data.get("createdAt", ""),
            last_used=data.get("lastUsed") or data.get("createdAt", ""),
        )

    def masked_token(self) -> str:
        """First characters of the token, for listings and logs."""
        return f"{self.token[:8]}..."


@dataclass
class User:
    """Account in the user directory."""

    username: str
    password_hash: str
    role: Role = Role.USER
    created_at: str = ""
    last_login: str | None = None
    is_active: bool = True
    sessions: list[Session] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def find_session(self, token: str) -> Session | None:
        """Get the session with exactly this token."""
        for session in self.sessions:
            if session.token == token:
                return session
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.username,
            "username": self.username,
            "passwordHash": self.password_hash,
            "role": self.role.value,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
            "isActive": self.is_active,
            "sessions": [s.to_dict() for s in self.sessions],
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Fields safe to hand to the view layer."""
        return {
            "username": self.username,
            "role": self.role.value,
            "createdAt": self.created_at,
            "lastLogin": self.last_login,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        # Older records stored the digest under "password"
        digest = data.get("passwordHash", data.get("password", ""))
        raw_sessions = data.get("sessions")
        sessions = []
        if isinstance(raw_sessions, list):
            sessions = [
                Session.from_dict(s)
                for s in raw_sessions
                if isinstance(s, dict) and s.get("token")
            ]
        return cls(
            username=data["username"],
            password_hash=digest,
            role=Role(data.get("role", Role.USER.value)),
            created_at=data.get("createdAt", ""),
            last_login=data.get("lastLogin"),
            is_active=bool(data.get("isActive", True)),
            sessions=sessions,
        )


# =============================================================================
# PROGRESS
# =============================================================================


def make_lesson_id(week: int, day: int, lesson_index: int) -> str:
    """Build the composite lesson id: "{week}-{day}-{index}"."""
    return f"{week}-{day}-{lesson_index}"


def parse_lesson_id(lesson_id: str) -> tuple[int, int, int]:
    """Split a composite lesson id into (week, day, index).

    Raises:
        ValueError: If the id is not in "{week}-{day}-{index}" form
    """
    match = LESSON_ID_PATTERN.match(lesson_id)
    if not match:
        raise ValueError(f"Invalid lesson id: {lesson_id!r}")
    week, day, index = match.groups()
    return int(week), int(day), int(index)


@dataclass
class LessonProgress:
    """Progress on a single lesson."""

    lesson_id: str
    week: int
    day: int
    lesson_index: int
    status: LessonStatus = LessonStatus.NOT_STARTED
    time_spent: int = 0  # milliseconds
    started_at: str | None = None
    completed_at: str | None = None
    previous_status: LessonStatus | None = None
    record_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "lessonId": self.lesson_id,
            "weekNum": self.week,
            "dayNum": self.day,
            "lessonIndex": self.lesson_index,
            "status": self.status.value,
            "timeSpent": self.time_spent,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "previousStatus": self.previous_status.value if self.previous_status else None,
        }
        if self.record_id:
            data["id"] = self.record_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LessonProgress:
        previous = data.get("previousStatus")
        return cls(
            lesson_id=data["lessonId"],
            week=int(data.get("weekNum", 0)),
            day=int(data.get("dayNum", 0)),
            lesson_index=int(data.get("lessonIndex", 0)),
            status=LessonStatus(data.get("status", LessonStatus.NOT_STARTED.value)),
            time_spent=max(0, int(data.get("timeSpent") or 0)),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            previous_status=LessonStatus(previous) if previous else None,
            record_id=data.get("id"),
        )


@dataclass
class TimerState:
    """Running/stopped view of a lesson timer."""

    lesson_id: str
    total_time: int = 0  # milliseconds, cumulative
    is_active: bool = False
    start_time: int | None = None  # epoch ms while running
    last_session: int = 0

    def __post_init__(self):
        if self.is_active and self.start_time is None:
            raise ValueError(f"Active timer for {self.lesson_id} needs a start_time")
        if not self.is_active:
            self.start_time = None

    def elapsed(self, now_ms: int) -> int:
        """Cumulative time including the running segment."""
        if self.is_active and self.start_time is not None:
            return self.total_time + max(0, now_ms - self.start_time)
        return self.total_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "lessonId": self.lesson_id,
            "totalTime": self.total_time,
            "isActive": self.is_active,
            "startTime": self.start_time,
            "lastSession": self.last_session,
        }


# =============================================================================
# AUDIT
# =============================================================================


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only audit record."""

    action: str
    entity_type: str
    entity_id: str
    details: dict[str, Any]
    timestamp: str
    user_id: str = "anonymous"

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "details": dict(self.details),
            "timestamp": self.timestamp,
            "userId": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditLogEntry:
        return cls(
            action=data.get("action", ""),
            entity_type=data.get("entityType", ""),
            entity_id=str(data.get("entityId", "")),
            details=dict(data.get("details") or {}),
            timestamp=data.get("timestamp", ""),
            user_id=data.get("userId", "anonymous"),
        )
