"""
Feedback Engine API

Survey response intake, analytics snapshots and the tiered notification
engine (crisis alerts, recovery rewards, milestones, daily alerts).

Run locally with:
    uvicorn app.main:app --reload --port 5001
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import Cache, Queue
from app.api.v2.router import api_router
from app.config import settings
from app.core.sentry import init_sentry
from app.database import init_db
from app.exceptions import EngineException, create_exception_handlers
from app.middleware import CorrelationIdMiddleware, CorrelationLogFilter
from app.models import Survey, Question, Response, Answer, Notification, TenantSettings  # noqa: F401
from app.tasks.alert_scheduler import start_alert_scheduler, stop_alert_scheduler
from app.tasks.dispatch_queue import get_dispatch_queue

API_VERSION = "1.0.0"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] [%(request_id)s] %(message)s"
DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationLogFilter())
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format=LOG_FORMAT,
        handlers=[handler],
    )


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Feedback Engine API ({settings.ENVIRONMENT})")
    init_sentry()
    try:
        await init_db()
    except Exception as e:
        # exception text may carry the connection string
        logger.error(f"Database initialization failed: {type(e).__name__}")

    if not settings.whatsapp_configured:
        logger.warning("WhatsApp credentials not configured, external alerts will be skipped")

    queue = get_dispatch_queue()
    queue.start()
    if settings.ALERTS_SCHEDULER_ENABLED:
        start_alert_scheduler()

    yield

    logger.info("Shutting down Feedback Engine API")
    stop_alert_scheduler()
    await queue.stop(drain=True)


app = FastAPI(
    title="Feedback Engine API",
    description="Survey feedback signals, analytics and tiered notifications",
    version=API_VERSION,
    docs_url="/docs" if settings.DOCS_ENABLED else None,
    redoc_url="/redoc" if settings.DOCS_ENABLED else None,
    lifespan=lifespan,
)

handlers = create_exception_handlers()
app.add_exception_handler(EngineException, handlers["engine"])
app.add_exception_handler(HTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(Exception, handlers["generic"])

app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] + ([] if settings.is_production else DEV_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    info = {"name": "Feedback Engine API", "version": API_VERSION, "health": "/health"}
    if settings.DOCS_ENABLED:
        info["docs"] = "/docs"
    return info


@app.get("/health")
async def health_check(queue: Queue, cache: Cache):
    """Liveness plus dispatch queue and analytics cache counters."""
    return {
        "status": "healthy",
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "dispatch_queue": queue.get_stats(),
        "analytics_cache": cache.get_stats(),
    }
