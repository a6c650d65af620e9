"""Request dependencies: the app's engine and the authenticated caller.

All dependencies are coroutines so they run on the event loop, where
engine calls never interleave.
"""

from fastapi import Depends, Header, HTTPException, Request, status

from learnportal.core.engine import PortalEngine
from learnportal.core.models import User


async def get_engine(request: Request) -> PortalEngine:
    """Engine owned by the running app."""
    return request.app.state.engine


async def get_current_user(
    engine: PortalEngine = Depends(get_engine),
    x_username: str | None = Header(default=None),
    x_session_token: str | None = Header(default=None),
) -> User:
    """Validate the caller's session and make it the engine's current user."""
    if not x_username or not x_session_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Username or X-Session-Token header",
        )
    result = engine.auth.resume(x_username, x_session_token)
    if not result.success or result.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error or "Invalid or expired session",
        )
    return result.user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: Admin privileges required",
        )
    return user
