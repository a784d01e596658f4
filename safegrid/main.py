"""
SafeGrid Alert Hub - FastAPI Application Entry Point

Real-time safety-alerting backend: distress signals and incident reports feed
a decaying geospatial risk grid, end users get a live 0-100 safety score,
authorities get alerts the moment something happens.

DESIGN PRINCIPLES:
- The request path persists the event and updates its risk cell; everything
  else (alert fan-out, grid pushes) runs after the response
- A new distress alert is never silently lost: undeliverable alerts go to the
  fallback store
- Scoring never fails the caller; it degrades to a neutral score
"""

import logging
import sys
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from safegrid.config.firebase import initialize_firestore
from safegrid.config.redis_client import RedisConnectionManager
from safegrid.core.settings import settings
from safegrid.routes import events, fallback, health, realtime, risk, safety
from safegrid.services.alert_dispatcher import AlertDispatcher, ConnectionRegistry
from safegrid.services.event_service import EventService
from safegrid.services.fallback_store import FallbackStore
from safegrid.services.risk_aggregator import RiskAggregator
from safegrid.services.safety_scorer import SafetyScorer
from safegrid.services.scheduler import PeriodicScheduler
from safegrid.services.task_queue import SideEffectQueue

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Real-time safety alerting: risk grid, safety scores and authority alerts",
    debug=settings.DEBUG
)


# Global exception handler to catch ALL exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and log them with full traceback."""
    sys.stderr.write("=" * 80 + "\n")
    sys.stderr.write("GLOBAL EXCEPTION HANDLER CAUGHT EXCEPTION\n")
    sys.stderr.write(f"Path: {request.url.path}\n")
    sys.stderr.write(f"Method: {request.method}\n")
    sys.stderr.write("=" * 80 + "\n")
    sys.stderr.write(traceback.format_exc())
    sys.stderr.write("=" * 80 + "\n")
    sys.stderr.flush()

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Internal server error: {str(exc)}"}
    )


# Pydantic validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors and return them to the caller."""
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(exc)}
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may carry the raw exception object, which is not JSON serializable
    return [{k: v for k, v in error.items() if k != "ctx"} for error in exc.errors()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def install_services(state, db, connections: RedisConnectionManager = None) -> None:
    """
    Build the service graph onto app.state.

    The connection registry lives from here until shutdown; nothing else holds
    cross-request in-memory state.
    """
    connections = connections or RedisConnectionManager(settings.REDIS_URL)
    state.redis = connections
    state.fallback = FallbackStore(connections)
    state.registry = ConnectionRegistry()
    state.scorer = SafetyScorer(db=db)
    state.aggregator = RiskAggregator(db=db)
    state.dispatcher = AlertDispatcher(state.registry, state.scorer, state.fallback)
    state.side_effects = SideEffectQueue()
    state.event_service = EventService(state.aggregator, state.dispatcher, state.side_effects, db=db)
    state.scheduler = PeriodicScheduler(state.aggregator, state.dispatcher)


# Application lifecycle events
@app.on_event("startup")
async def startup_event():
    """
    Initialize services on application startup:
    Firestore, Redis fallback cache, dispatcher and the periodic scheduler.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    try:
        db = initialize_firestore()
    except Exception as e:
        logger.warning(f"Firestore initialization failed: {e}")
        logger.warning("The app will start but database operations may fail.")
        return

    install_services(app.state, db)

    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
    else:
        logger.info("Periodic scheduler disabled (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Cleanup on application shutdown.
    """
    logger.info(f"Shutting down {settings.APP_NAME}")

    state = app.state
    if getattr(state, "scheduler", None) is not None:
        state.scheduler.shutdown()
    if getattr(state, "side_effects", None) is not None:
        await state.side_effects.shutdown()
    if getattr(state, "dispatcher", None) is not None:
        state.dispatcher.shutdown()
    if getattr(state, "redis", None) is not None:
        await state.redis.close()


# Include routers
app.include_router(health.router)
app.include_router(events.router)
app.include_router(safety.router)
app.include_router(risk.router)
app.include_router(fallback.router)
app.include_router(realtime.router)


# Root endpoint
@app.get("/")
async def root():
    """
    Root endpoint - API information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "safety_score": "/safety/score?lat={lat}&lng={lng}",
    }
