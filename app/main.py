"""
Journey Engine API - Main Application

Marketing journey automation: customer segments, trigger matching,
enrollments, and the delivery/conversion feeds that move them along.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v2.router import api_router
from app.config import settings
from app.database import init_db
from app.exceptions import JourneyEngineException, create_exception_handlers
from app.middleware import CorrelationIdMiddleware, CorrelationLogFilter
from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.segment_cache import SegmentMembershipCache
from app.tasks import transition_scheduler
# Registers every table on Base.metadata before init_db()
from app import models  # noqa: F401

API_VERSION = "2.0.0"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format=LOG_FORMAT,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationLogFilter())
    # SQL echo goes through its own logger; keep it out of INFO runs
    if not settings.sqlalchemy_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Journey Engine API ({settings.ENVIRONMENT})")
    # Only the driver, the URL may carry credentials
    logger.info(f"Database driver: {settings.DATABASE_URL.split('://', 1)[0]}")
    await init_db()

    if settings.SCHEDULER_ENABLED:
        transition_scheduler.start_transition_scheduler(
            segment_cache=app.state.segment_cache,
            locks=app.state.enrollment_locks,
        )
    yield
    if settings.SCHEDULER_ENABLED:
        transition_scheduler.stop_transition_scheduler()
    logger.info("Journey Engine API stopped")


def register_exception_handlers(target: FastAPI) -> None:
    handlers = create_exception_handlers(settings.DEBUG)
    target.add_exception_handler(JourneyEngineException, handlers["engine"])
    target.add_exception_handler(StarletteHTTPException, handlers["http"])
    target.add_exception_handler(RequestValidationError, handlers["validation"])
    target.add_exception_handler(Exception, handlers["generic"])


def cors_origins() -> list[str]:
    origins = [settings.FRONTEND_URL]
    if not settings.is_production:
        origins += ["http://localhost:5173", "http://localhost:3000"]
    return origins


app = FastAPI(
    title="Journey Engine API",
    description="Customer segmentation, trigger matching and journey enrollment engine",
    version=API_VERSION,
    docs_url="/docs" if settings.DOCS_ENABLED else None,
    redoc_url="/redoc" if settings.DOCS_ENABLED else None,
    lifespan=lifespan,
)

# Shared by every request and by the scheduler job
app.state.segment_cache = SegmentMembershipCache(default_ttl=settings.SEGMENT_CACHE_TTL_SECONDS)
app.state.enrollment_locks = EnrollmentLockRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
register_exception_handlers(app)
app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    info = {"name": "Journey Engine API", "version": API_VERSION, "health": "/health"}
    if settings.DOCS_ENABLED:
        info["docs"] = "/docs"
    return info


@app.get("/health")
async def health_check():
    """Liveness plus segment cache counters and whether timers are being polled."""
    scheduler = transition_scheduler.scheduler
    return {
        "status": "healthy",
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "scheduler_running": bool(scheduler and scheduler.running),
        "segment_cache": app.state.segment_cache.stats(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=5001, reload=settings.DEBUG)
