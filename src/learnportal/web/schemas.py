"""Pydantic schemas for the portal Web API.

Serialization models for auth, progress, timers and admin operations.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from learnportal.core.models import LessonProgress, LessonStatus, Session, TimerState, User


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str
    users: int = 0
    sync_online: bool = False


# =============================================================================
# AUTH SCHEMAS
# =============================================================================


class LoginRequest(BaseModel):
    """Request body for login."""

    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=256)


class RegisterRequest(BaseModel):
    """Request body for registration."""

    username: str = Field(..., max_length=64)
    password: str = Field(..., max_length=256)
    role: str = "user"


class ValidateRequest(BaseModel):
    """Request body for checking a stored session."""

    username: str
    token: str


class UserResponse(BaseModel):
    """Public view of a user."""

    username: str
    role: str
    created_at: str
    last_login: str | None = None
    is_active: bool = True
    session_count: int = 0

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(
            username=user.username,
            role=user.role.value,
            created_at=user.created_at,
            last_login=user.last_login,
            is_active=user.is_active,
            session_count=len(user.sessions),
        )


class AuthResponse(BaseModel):
    """Result of login / register / validate."""

    success: bool
    user: UserResponse | None = None
    token: str | None = None
    error: str | None = None


class UserListResponse(BaseModel):
    """Response for list of users."""

    users: list[UserResponse]
    count: int


class UserUpdate(BaseModel):
    """Admin edit of an account."""

    role: str | None = None
    is_active: bool | None = None
    password: str | None = Field(default=None, max_length=256)


class SessionResponse(BaseModel):
    """One session as shown in device listings (token masked)."""

    token: str
    device_id: str
    user_agent: str
    created_at: str
    last_used: str

    @classmethod
    def from_session(cls, session: Session) -> SessionResponse:
        return cls(
            token=session.masked_token(),
            device_id=session.device_id,
            user_agent=session.user_agent_summary,
            created_at=session.created_at,
            last_used=session.last_used,
        )


class SessionListResponse(BaseModel):
    """Sessions of one user, most recently used first."""

    username: str
    sessions: list[SessionResponse]
    count: int


class ConsistencyResponse(BaseModel):
    """Consistency check outcome."""

    status: str
    details: dict[str, Any] = Field(default_factory=dict)


class CleanupResponse(BaseModel):
    """Expired session cleanup outcome."""

    removed: int


# =============================================================================
# PROGRESS SCHEMAS
# =============================================================================


class ProgressUpdate(BaseModel):
    """Request body for saving lesson progress."""

    week: int = Field(..., ge=0)
    day: int = Field(..., ge=0)
    lesson_index: int = Field(..., ge=0)
    status: LessonStatus
    time_spent: int = Field(default=0, ge=0)


class ProgressResponse(BaseModel):
    """Progress of one lesson."""

    lesson_id: str
    week: int
    day: int
    lesson_index: int
    status: LessonStatus
    time_spent: int
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_progress(cls, progress: LessonProgress) -> ProgressResponse:
        return cls(
            lesson_id=progress.lesson_id,
            week=progress.week,
            day=progress.day,
            lesson_index=progress.lesson_index,
            status=progress.status,
            time_spent=progress.time_spent,
            started_at=progress.started_at,
            completed_at=progress.completed_at,
        )


class ProgressSummaryResponse(BaseModel):
    """All progress of the calling user."""

    lessons: list[ProgressResponse]
    completed: int
    total_time_spent: int
    last_activity: str | None = None


class ToggleRequest(BaseModel):
    """Request body for toggling lesson completion."""

    week: int = Field(..., ge=0)
    day: int = Field(..., ge=0)
    lesson_index: int = Field(..., ge=0)
    title: str = ""


class ToggleResponse(BaseModel):
    """Status after a toggle."""

    lesson_id: str
    status: LessonStatus


class TimerRequest(BaseModel):
    """Request body for starting or stopping a timer."""

    lesson_id: str


class TimerResponse(BaseModel):
    """Timer state of one lesson."""

    lesson_id: str
    total_time: int
    is_active: bool
    start_time: int | None = None
    last_session: int = 0

    @classmethod
    def from_timer(cls, timer: TimerState) -> TimerResponse:
        return cls(
            lesson_id=timer.lesson_id,
            total_time=timer.total_time,
            is_active=timer.is_active,
            start_time=timer.start_time,
            last_session=timer.last_session,
        )
