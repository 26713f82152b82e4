"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from future_self.core.config import settings
from future_self.core.dependencies import get_capture_manager, get_scheduler
from future_self.core.logging import setup_logging
from future_self.db.database import close_db, init_db
from future_self.api import assistants, call_status, captures, health, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    logger.info(
        f"[STARTUP] Future self service ready (clone threshold: {settings.clone_threshold_seconds}s, "
        f"fallback: {settings.fallback_timeout_seconds}s)"
    )
    yield
    # Shutdown
    await get_capture_manager().stop_all()
    cancelled = get_scheduler().cancel_all()
    await close_db()
    logger.info(f"[SHUTDOWN] Captures stopped, {cancelled} pending timers cancelled")


app = FastAPI(
    title="Future Self Voice Callback",
    description="Clones a caller's voice mid-call and calls them back as their future self",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(health.router, tags=["health"])
app.include_router(webhooks.vapi.router, prefix="/api", tags=["webhooks"])
app.include_router(call_status.router, tags=["call-status"])
app.include_router(captures.router, tags=["captures"])
app.include_router(assistants.router, tags=["assistants"])


@app.get("/")
async def root():
    return {
        "message": "Future Self Voice Callback API",
        "version": "0.1.0",
    }
