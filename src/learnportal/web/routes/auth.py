"""Authentication endpoints."""

from fastapi import APIRouter, Depends, Request, Response, status

from learnportal.core.engine import PortalEngine
from learnportal.core.fingerprint import signals_from_headers
from learnportal.core.models import Role, User
from learnportal.web.dependencies import get_current_user, get_engine
from learnportal.web.schemas import (
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    UserResponse,
    ValidateRequest,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DUPLICATE_USERNAME = "Username already exists"


def _to_response(result) -> AuthResponse:
    return AuthResponse(
        success=result.success,
        user=UserResponse.from_user(result.user) if result.user else None,
        token=result.token,
        error=result.error,
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    engine: PortalEngine = Depends(get_engine),
) -> AuthResponse:
    """Verify credentials and open a session for the calling device."""
    signals = signals_from_headers({k.lower(): v for k, v in request.headers.items()})
    result = engine.auth.login(body.username, body.password, signals)
    if not result.success:
        response.status_code = status.HTTP_401_UNAUTHORIZED
    return _to_response(result)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    user: User = Depends(get_current_user),
    engine: PortalEngine = Depends(get_engine),
) -> None:
    """End the caller's session."""
    engine.auth.logout()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    engine: PortalEngine = Depends(get_engine),
) -> AuthResponse:
    """Create an account. Creating an admin requires an admin caller."""
    if body.role.lower() != Role.USER.value:
        caller = engine.auth.resume(
            request.headers.get("x-username", ""),
            request.headers.get("x-session-token", ""),
        )
        if not caller.success or caller.user is None or not caller.user.is_admin:
            response.status_code = status.HTTP_403_FORBIDDEN
            return AuthResponse(success=False, error="Access denied: Admin privileges required")

    result = engine.auth.register(body.username, body.password, body.role)
    if not result.success:
        if result.error == DUPLICATE_USERNAME:
            response.status_code = status.HTTP_409_CONFLICT
        else:
            response.status_code = status.HTTP_400_BAD_REQUEST
    return _to_response(result)


@router.post("/validate", response_model=AuthResponse)
async def validate(
    body: ValidateRequest,
    response: Response,
    engine: PortalEngine = Depends(get_engine),
) -> AuthResponse:
    """Check a stored (username, token) pair and refresh its lastUsed."""
    result = engine.auth.resume(body.username, body.token)
    if not result.success:
        response.status_code = status.HTTP_401_UNAUTHORIZED
    return _to_response(result)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    """The authenticated caller."""
    return UserResponse.from_user(user)
