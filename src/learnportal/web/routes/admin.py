"""Admin endpoints: user directory, sessions and consistency."""

from fastapi import APIRouter, Depends, HTTPException, status

from learnportal.core.engine import PortalEngine
from learnportal.core.errors import AccessDeniedError, NotFoundError, ValidationError
from learnportal.core.models import User
from learnportal.web.dependencies import get_engine, require_admin
from learnportal.web.schemas import (
    CleanupResponse,
    ConsistencyResponse,
    SessionListResponse,
    SessionResponse,
    UserListResponse,
    UserResponse,
    UserUpdate,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, AccessDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/users", response_model=UserListResponse)
async def list_users(
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> UserListResponse:
    """List all users."""
    users = [UserResponse.from_user(u) for u in engine.auth.get_all_users()]
    return UserListResponse(users=users, count=len(users))


@router.patch("/users/{username}", response_model=UserResponse)
async def update_user(
    username: str,
    body: UserUpdate,
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> UserResponse:
    """Change role, active flag or password of an account."""
    try:
        user = engine.auth.update_user(
            username, role=body.role, is_active=body.is_active, password=body.password
        )
    except (NotFoundError, AccessDeniedError, ValidationError) as e:
        raise _http_error(e)
    return UserResponse.from_user(user)


@router.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    username: str,
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> None:
    """Delete a non-admin account and its data."""
    try:
        engine.auth.delete_user(username)
    except (NotFoundError, AccessDeniedError) as e:
        raise _http_error(e)


@router.get("/users/{username}/sessions", response_model=SessionListResponse)
async def list_user_sessions(
    username: str,
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> SessionListResponse:
    """Sessions of a user, most recently used first (tokens masked)."""
    try:
        sessions = engine.auth.get_user_sessions(username)
    except NotFoundError as e:
        raise _http_error(e)
    return SessionListResponse(
        username=username,
        sessions=[SessionResponse.from_session(s) for s in sessions],
        count=len(sessions),
    )


@router.delete("/users/{username}/sessions/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_session(
    username: str,
    token: str,
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> None:
    """Revoke one session. Revoking an unknown token is a no-op."""
    try:
        engine.auth.revoke_session(username, token)
    except NotFoundError as e:
        raise _http_error(e)


@router.post("/sessions/cleanup", response_model=CleanupResponse)
async def cleanup_sessions(
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> CleanupResponse:
    """Purge sessions past the retention window for every user."""
    return CleanupResponse(removed=engine.auth.cleanup_expired_sessions())


@router.post("/consistency-check", response_model=ConsistencyResponse)
async def consistency_check(
    admin: User = Depends(require_admin),
    engine: PortalEngine = Depends(get_engine),
) -> ConsistencyResponse:
    """Run the self-healing consistency check."""
    report = engine.auth.check_consistency()
    return ConsistencyResponse(status=report.status, details=report.details)
