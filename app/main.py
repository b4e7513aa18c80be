"""
Geofence Auto-Checkout Service: application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.api.v1.endpoints.presence import limiter
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.db.base import Base
from app.db.session import async_session_factory, engine
from app.services.scheduler import SweepScheduler

# Ensure all models are imported so metadata.create_all can see them
from app.models.attendance_session import AttendanceSession  # noqa: F401
from app.models.auto_checkout_settings import TenantAutoCheckoutSettings  # noqa: F401
from app.models.pending_checkout import PendingCheckout  # noqa: F401
from app.models.presence_heartbeat import PresenceHeartbeat  # noqa: F401
from app.models.tenant import Branch, Employee, Tenant  # noqa: F401

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    scheduler = None
    if settings.SWEEP_SCHEDULER_ENABLED:
        scheduler = SweepScheduler(
            async_session_factory,
            interval=settings.SWEEP_INTERVAL_SECONDS,
            max_backoff=settings.SWEEP_MAX_BACKOFF_SECONDS,
        )
        scheduler.start()
    app.state.sweep_scheduler = scheduler

    logger.info("🚀 %s v%s started", settings.PROJECT_NAME, settings.VERSION)
    yield
    if scheduler is not None:
        scheduler.stop()
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Geofence presence tracking and server-authoritative auto-checkout",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Heartbeat rate limiting
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
