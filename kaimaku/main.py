"""Kaimaku API - FastAPI Application."""

import logging
import math
from contextlib import asynccontextmanager
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kaimaku.api.router import api_router
from kaimaku.config import get_settings
from kaimaku.core.animethemes_client import get_catalog_client
from kaimaku.core.cache import get_cache
from kaimaku.core.errors import CooldownActive, KaimakuError, StoreUnavailable
from kaimaku.core.limiter import limiter
from kaimaku.db.database import async_session, get_db, init_db
from kaimaku.db.models import Rating, User
from kaimaku.logging import configure_logging
from kaimaku.middleware import CorrelationIDMiddleware
from kaimaku.services.session_service import prune_expired_sessions

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    timezone=timezone.utc,
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
    },
)


async def prune_sessions_job():
    """Hourly removal of expired login sessions."""
    try:
        async with async_session() as db:
            await prune_expired_sessions(db)
    except KaimakuError as e:
        logger.error(f"Session pruning failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Kaimaku API...")
    await init_db()
    logger.info("Database initialized")

    scheduler.add_job(
        prune_sessions_job,
        IntervalTrigger(hours=1),
        id="prune_sessions",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started - expired sessions pruned hourly")

    yield

    logger.info("Shutting down application...")
    scheduler.shutdown()
    await get_catalog_client().close()
    await get_cache().close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Search anime openings, play them and rate them",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting
app.state.limiter = limiter


@app.exception_handler(KaimakuError)
async def kaimaku_error_handler(request: Request, exc: KaimakuError):
    headers = {}
    if isinstance(exc, CooldownActive):
        headers["Retry-After"] = str(max(1, math.ceil(exc.remaining)))
    elif isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = "1"
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid {location}: {first.get('msg')}" if location else first.get("msg", message)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"error": f"Too many requests: {exc.detail}"})


# CORS middleware - credentials needed for the session cookie
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)

# Correlation ID middleware for request tracing
app.add_middleware(CorrelationIDMiddleware)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/health/db")
async def db_status(db: AsyncSession = Depends(get_db)):
    """Check database connectivity and row counts."""
    try:
        user_count = await db.scalar(select(func.count()).select_from(User)) or 0
        rating_count = await db.scalar(select(func.count()).select_from(Rating)) or 0
        rated_themes = await db.scalar(select(func.count(func.distinct(Rating.theme_id)))) or 0
    except SQLAlchemyError as e:
        logger.error(f"Health check DB error: {e}")
        return {"status": "error", "error": "Database health check failed"}

    job = scheduler.get_job("prune_sessions")
    next_prune = job.next_run_time.isoformat() if job and job.next_run_time else None

    return {
        "status": "healthy",
        "users": user_count,
        "ratings": rating_count,
        "rated_themes": rated_themes,
        "next_session_prune": next_prune,
    }
