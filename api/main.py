"""
Activity Monitor - GitHub contribution tracking for a cohort of accounts
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000

The scheduler (nightly sync + snapshot regeneration) starts with the app
unless ACTIVITY_SCHEDULER_ENABLED=false.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import activity_router, snapshots_router
from config.settings import settings

logger = logging.getLogger(__name__)

# Background services (initialized on startup)
_activity_scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    global _activity_scheduler

    if not settings.github_enabled:
        logger.warning("GITHUB_TOKEN is not set; syncs will record every entity as failed")

    # Startup: cron scheduler for the sync and snapshot jobs
    if settings.scheduler_enabled:
        try:
            from api.services.scheduler import get_activity_scheduler
            _activity_scheduler = get_activity_scheduler()
            _activity_scheduler.start()
            logger.info(
                f"Activity scheduler started (sync '{settings.sync_cron}', "
                f"snapshots '{settings.snapshot_cron}' UTC)"
            )
        except Exception as e:
            logger.error(f"Failed to start activity scheduler: {e}")
    else:
        logger.info("Activity scheduler disabled")

    yield  # Application runs here

    # Shutdown: stopping the scheduler also cancels an in-flight sync
    if _activity_scheduler:
        _activity_scheduler.stop()
    else:
        from api.services.activity_jobs import cancel_all
        cancel_all()


app = FastAPI(
    title="Activity Monitor",
    description="Nightly GitHub activity sync, lifecycle classification and precomputed analytics",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(activity_router)
app.include_router(snapshots_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.get("/health")
async def health_check():
    """Health check: configuration plus job staleness."""
    from api.services.sync_health import check_sync_health

    try:
        jobs_healthy, jobs_message = check_sync_health()
    except Exception as e:
        logger.error(f"Failed to read run history: {e}")
        jobs_healthy, jobs_message = False, "run history unavailable"

    checks = {
        "github_token_configured": settings.github_enabled,
        "jobs_healthy": jobs_healthy,
    }

    return {
        "status": "healthy" if all(checks.values()) else "degraded",
        "service": "activity-monitor",
        "checks": checks,
        "jobs": jobs_message,
    }
