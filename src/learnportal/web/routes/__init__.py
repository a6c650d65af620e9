"""Route handlers for the portal Web API."""

from learnportal.web.routes.admin import router as admin_router
from learnportal.web.routes.auth import router as auth_router
from learnportal.web.routes.health import router as health_router
from learnportal.web.routes.progress import router as progress_router

__all__ = [
    "admin_router",
    "auth_router",
    "health_router",
    "progress_router",
]
