"""
Revengers Esports API Server

FastAPI server behind the team site: public roster, trophies and contact form,
plus the session-authenticated admin endpoints that manage them.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.middleware import SlowAPIASGIMiddleware

from revengers.api.error_handlers import register_exception_handlers
from revengers.api.middleware import (
    CORRELATION_HEADER,
    AccessLogMiddleware,
    BodySizeLimitMiddleware,
    CorrelationIdMiddleware,
    SecurityHeadersMiddleware,
    SessionMiddleware,
)
from revengers.api.routes import limiter, router
from revengers.config import settings
from revengers.database import db
from revengers.database.gateway import StorageGateway
from revengers.database.init_defaults import ensure_default_admin
from revengers.logging_config import setup_logging
from revengers.services import auth_service
from revengers.services.session_cleanup_service import get_session_cleanup_service
from revengers.services.session_service import (
    DatabaseSessionStore,
    MemorySessionStore,
    SessionManager,
)

setup_logging()
logger = logging.getLogger(__name__)


def _handle_loop_exception(loop, context) -> None:
    """Log exceptions from tasks nobody awaited instead of losing them."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    logger.error(f"Event loop error: {message}", exc_info=exc)


async def _connect_database(app: FastAPI) -> None:
    engine = db.create_engine()
    gateway = StorageGateway(
        engine,
        max_concurrency=settings.db_pool_max,
        max_waiters=settings.db_pool_max_waiters,
        acquire_timeout=settings.db_pool_timeout_seconds,
    )
    try:
        await db.init_database(engine)
    except Exception:
        await gateway.close()
        raise
    app.state.gateway = gateway
    logger.info("✓ Database initialized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Revengers Esports API...")
    logger.info(f"Configuration: {settings.debug_info()}")
    asyncio.get_running_loop().set_exception_handler(_handle_loop_exception)

    missing = settings.validate_required()
    if missing:
        if settings.is_production:
            raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")
        logger.warning(f"Missing environment variables: {', '.join(missing)}")

    app.state.gateway = None
    try:
        await _connect_database(app)
    except Exception as e:
        if settings.is_production:
            logger.critical(f"Database initialization failed: {e}", exc_info=True)
            raise
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    gateway = app.state.gateway
    if gateway is not None:
        # BootstrapError propagates: production must not start without an admin
        await ensure_default_admin(gateway)
        store = DatabaseSessionStore(gateway)
    else:
        store = MemorySessionStore()
    app.state.session_manager = SessionManager(store)

    # Pay the bcrypt cost for the timing-equalization hash before the first login
    try:
        await asyncio.get_running_loop().run_in_executor(None, auth_service.dummy_hash)
    except Exception as e:
        logger.error(f"Failed to prepare dummy password hash: {e}", exc_info=True)

    try:
        get_session_cleanup_service().start(app.state.session_manager)
        logger.info("✓ Session cleanup worker started")
    except Exception as e:
        logger.error(f"Failed to start session cleanup worker: {e}", exc_info=True)

    yield  # App is running

    logger.info("Shutting down Revengers Esports API...")

    try:
        get_session_cleanup_service().stop()
        logger.info("✓ Session cleanup worker stopped")
    except Exception as e:
        logger.error(f"Error stopping session cleanup worker: {e}", exc_info=True)

    if app.state.gateway is not None:
        try:
            await app.state.gateway.close()
        except Exception as e:
            logger.error(f"Error closing database engine: {e}", exc_info=True)


app = FastAPI(
    title="Revengers Esports API",
    description="Team roster, trophies, contact form and admin endpoints",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)

# Starlette wraps the last-added middleware outermost, so these are listed
# innermost first. Final order on the way in: correlation id, access log,
# security headers, compression, CORS, body cap, rate limit, session.
app.add_middleware(SessionMiddleware)
app.add_middleware(SlowAPIASGIMiddleware)
app.add_middleware(BodySizeLimitMiddleware)

if settings.is_production:
    cors_options = {"allow_origins": [settings.production_url]}
else:
    cors_options = {"allow_origin_regex": ".*"}
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", CORRELATION_HEADER],
    expose_headers=[CORRELATION_HEADER, "Retry-After"],
    **cors_options,
)
app.add_middleware(GZipMiddleware, minimum_size=1024, compresslevel=settings.compression_level)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(router)


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, timeout_graceful_shutdown=10)


if __name__ == "__main__":
    run()
