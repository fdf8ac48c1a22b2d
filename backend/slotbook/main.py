"""
Doctor Appointment Booking API - Main Application Entry Point

A slot booking service demonstrating:
- Overbooking prevention with per-slot locking (SELECT ... FOR UPDATE)
- Short-lived holds with confirmation and background expiry reclamation
- Redis caching of the open-slot listing with invalidation on every change
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from slotbook.core.config import get_settings
from slotbook.core.logging import setup_logging, get_logger
from slotbook.core.metrics import metrics_endpoint
from slotbook.api.errors import register_exception_handlers
from slotbook.api.router import api_router
from slotbook.api.middleware import RequestLoggingMiddleware
from slotbook.db.session import build_engine, build_session_factory
from slotbook.services.booking_service import BookingCoordinator
from slotbook.services.cache_service import get_redis, close_redis, get_cache_stats, invalidate_slot_cache
from slotbook.services.expiry_sweeper import ExpirySweeper

settings = get_settings()


async def _on_reclaimed(count: int) -> None:
    await invalidate_slot_cache()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    engine = build_engine(settings)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.coordinator = BookingCoordinator(
        app.state.session_factory,
        lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
        hold_window=timedelta(minutes=settings.BOOKING_HOLD_MINUTES),
        auto_confirm=settings.BOOKING_AUTO_CONFIRM,
    )

    sweeper = None
    if settings.RECLAIM_INTERVAL_SECONDS > 0:
        sweeper = ExpirySweeper(
            app.state.coordinator,
            settings.RECLAIM_INTERVAL_SECONDS,
            on_reclaimed=_on_reclaimed,
        )
        sweeper.start()

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    yield

    if sweeper is not None:
        await sweeper.stop()
    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Doctor appointment booking API with overbooking-safe slot reservations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

app.include_router(api_router)


async def _database_status() -> str:
    try:
        async with app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return "connected"
    except Exception as e:
        get_logger(__name__).error("health_db_check_failed", error=str(e))
        return "error"


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    database = await _database_status()
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "cache": cache_stats,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
