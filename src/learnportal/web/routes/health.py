"""Health check endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from learnportal import __version__
from learnportal.core.engine import PortalEngine
from learnportal.web.dependencies import get_engine
from learnportal.web.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: PortalEngine = Depends(get_engine)) -> HealthResponse:
    """Check API health status."""
    return HealthResponse(
        status="ok",
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        users=engine.users.count(),
        sync_online=engine.coordinator.is_online,
    )
