#  Agent Watch - FastAPI Application
#
#  Main app setup: lifespan, CORS, exception mapping, router includes.
#  Creates the DI container and manages the pipeline lifecycle.
#
#  Depends on: config.py, container.py, routes/*.py
#  Used by:    run.py

import logging
import uuid
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from agentwatch.config import CORS_ORIGINS, DB_PATH, SETUP_DEFAULT_RULES, validate_config
from agentwatch.container import Container
from agentwatch.exceptions import (
    AgentWatchError,
    InvalidStateError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from agentwatch.logging_config import set_request_id
from agentwatch.rate_limit import limiter
from agentwatch.routes.activities import router as activities_router
from agentwatch.routes.changes import router as changes_router
from agentwatch.routes.events import router as events_router
from agentwatch.routes.health import router as health_router
from agentwatch.routes.monitoring import router as monitoring_router
from agentwatch.routes.notifications import router as notifications_router
from agentwatch.routes.reports import router as reports_router
from agentwatch.routes.tasks import router as tasks_router

logger = logging.getLogger("agentwatch.app")

# Create and wire the DI container
container = Container()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle.

    AsyncExitStack unwinds already-initialized resources in reverse order
    if a later startup step fails.
    """
    logger.info("Agent Watch starting...")

    validate_config()

    db = container.db()
    http_client = container.http_client()
    event_bus = container.event_bus()
    analyzer = container.analyzer()
    alerting = container.alerting()

    async with AsyncExitStack() as stack:
        await db.init(DB_PATH, run_migrations=True)
        stack.push_async_callback(db.close)

        # Shared httpx client for webhook/slack channels
        stack.push_async_callback(http_client.aclose)

        # Every pipeline event goes through rule evaluation
        event_bus.register(alerting.handle_event)
        stack.callback(event_bus.unregister, alerting.handle_event)

        if SETUP_DEFAULT_RULES:
            await alerting.setup_defaults()

        # Sessions left active by a previous process have no watcher now
        await analyzer.reconcile_sessions()

        # Watchers stop before the database closes
        stack.push_async_callback(analyzer.shutdown)

        yield

    logger.info("Agent Watch shutting down")


app = FastAPI(
    title="Agent Watch",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
    )


# Global exception handlers for business errors raised by services
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store failure: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(AgentWatchError)
async def agentwatch_handler(request: Request, exc: AgentWatchError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Request ID tracing
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = uuid.uuid4().hex[:12]
        set_request_id(rid)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            set_request_id(None)

app.add_middleware(RequestIDMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(health_router, prefix="/api")
app.include_router(activities_router, prefix="/api")
app.include_router(tasks_router, prefix="/api")
app.include_router(changes_router, prefix="/api")
app.include_router(monitoring_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(reports_router, prefix="/api")
app.include_router(events_router, prefix="/api")
