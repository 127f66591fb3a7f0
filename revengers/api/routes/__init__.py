"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter) lives here; every sub-router imports what it
needs from this package.
"""

from fastapi import APIRouter
from slowapi import Limiter
from slowapi.util import get_remote_address

from revengers.config import settings

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
GENERAL_RATE_LIMIT = f"{settings.rate_limit_max_requests} per {settings.rate_limit_window_seconds} seconds"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[GENERAL_RATE_LIMIT],
    storage_uri=settings.rate_limit_storage_uri,
    # Disabled in test mode so suites can hammer endpoints
    enabled=not settings.is_test,
)

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from revengers.api.routes.auth import router as auth_router  # noqa: E402
from revengers.api.routes.entities import (  # noqa: E402
    managers_router,
    players_router,
    trophies_router,
)
from revengers.api.routes.contact import router as contact_router  # noqa: E402
from revengers.api.routes.health import router as health_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(players_router)
router.include_router(managers_router)
router.include_router(trophies_router)
router.include_router(contact_router)
router.include_router(health_router)
