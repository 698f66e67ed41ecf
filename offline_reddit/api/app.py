"""FastAPI application entry point with lifespan, CORS, and structured logging.

This module initializes the FastAPI application with:
- Lifespan context manager for the store, Reddit client and sync scheduler
- CORS middleware for a local front-end dev server
- Structured logging (JSON) to logs/offline_reddit.log
- Exception handlers for consistent error responses
- Basic health check endpoint

On startup the lifespan opens the local store, creates the schema, inserts the
default subscriptions on first launch and applies the retention policy. The
connection, client and SyncScheduler are stored in app.state for the route
handlers. Background sync tasks are tracked in app.state.sync_tasks and
cancelled on shutdown.

All API responses follow the standard envelope format defined in offline_reddit.api.models.

Usage:
    uvicorn offline_reddit.api.app:app --reload
"""

import asyncio
import os
import traceback
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from offline_reddit.api.models import ErrorEnvelope, ErrorDetail
from offline_reddit.api.responses import (
    VALIDATION_ERROR, DATABASE_ERROR, NOT_FOUND, SYNC_ALREADY_RUNNING,
)
from offline_reddit.api.routes import posts, subscriptions, sync, system
from offline_reddit.backend.db.connection import init_schema, open_connection, resolve_db_path
from offline_reddit.backend.utils.logging_config import get_logger, setup_logging
from offline_reddit.media import MediaCache
from offline_reddit.reddit import RedditFeedClient
from offline_reddit.storage import cleanup_old_posts
from offline_reddit.subscriptions import ensure_default_subscriptions
from offline_reddit.sync import SyncScheduler, SyncSettings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for the store and the sync scheduler.

    Args:
        app: FastAPI application instance

    Yields:
        None (context manager for startup/shutdown)
    """
    logger = get_logger(__name__)

    db_path = resolve_db_path()
    app.state.sync_tasks = set()

    try:
        conn = open_connection(db_path)
        app.state.db = conn

        init_schema(conn)
        ensure_default_subscriptions(conn)
        cleanup_old_posts(conn)

        client = RedditFeedClient.from_env()
        media_cache = MediaCache(user_agent=client.user_agent, timeout=client.timeout)

        app.state.client = client
        app.state.scheduler = SyncScheduler(conn, client, media_cache, SyncSettings.from_env())

        logger.info("database_connection_acquired", db_path=db_path)

        yield

    finally:
        # Shutdown: stop background syncs before closing the connection
        tasks = list(app.state.sync_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("sync_tasks_cancelled", count=len(tasks))

        if hasattr(app.state, 'db') and app.state.db is not None:
            app.state.db.close()
            logger.info("database_connection_closed")


# Initialize logging before creating the app
setup_logging(log_dir="logs", log_filename="offline_reddit.log")

# Create FastAPI application with lifespan
app = FastAPI(
    title="Offline Reddit API",
    description="Local API for syncing Reddit feeds into an offline cache and reading them back",
    version="1.0.0",
    lifespan=lifespan,
)

# Read allowed origins from environment or use default
cors_origins = os.environ.get(
    'CORS_ORIGINS',
    'http://localhost:5173'
).split(',')

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = get_logger(__name__)
logger.info("fastapi_app_initialized", cors_origins=cors_origins)

# Include routers
app.include_router(subscriptions.router)
app.include_router(posts.router)
app.include_router(sync.router)
app.include_router(system.router)

# Exception Handlers
# These handlers convert exceptions to the standard ErrorEnvelope format


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle FastAPI request validation errors (422).

    Converts Pydantic validation errors into the standard ErrorEnvelope format.
    """
    logger = get_logger(__name__)
    logger.warning("validation_error", path=request.url.path, errors=exc.errors())

    error_envelope = ErrorEnvelope(
        error=ErrorDetail(
            code=VALIDATION_ERROR,
            message=f"Request validation failed: {exc.errors()[0]['msg']}"
        )
    )

    return JSONResponse(
        status_code=422,
        content=error_envelope.model_dump(),
        headers={"Content-Type": "application/json"}
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException with error envelope format.

    Routes exceptions raised via raise_api_error() or raw HTTPException
    into the standard ErrorEnvelope structure.
    """
    logger = get_logger(__name__)
    logger.warning("http_exception", path=request.url.path, status=exc.status_code)

    # If detail is a dict with code/message (from raise_api_error), use it
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        code = exc.detail["code"]
        message = exc.detail["message"]
    else:
        # Map status code to error code for generic HTTPExceptions
        code_map = {404: NOT_FOUND, 422: VALIDATION_ERROR, 409: SYNC_ALREADY_RUNNING}
        code = code_map.get(exc.status_code, DATABASE_ERROR)
        message = str(exc.detail) if exc.detail else "An error occurred"

    error_envelope = ErrorEnvelope(
        error=ErrorDetail(code=code, message=message)
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope.model_dump(),
        headers={"Content-Type": "application/json"}
    )


@app.exception_handler(404)
async def not_found_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle 404 Not Found errors for unknown paths."""
    logger = get_logger(__name__)
    logger.warning("not_found", path=request.url.path)

    error_envelope = ErrorEnvelope(
        error=ErrorDetail(
            code=NOT_FOUND,
            message=f"Resource not found: {request.url.path}"
        )
    )

    return JSONResponse(
        status_code=404,
        content=error_envelope.model_dump(),
        headers={"Content-Type": "application/json"}
    )


@app.exception_handler(500)
async def internal_server_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle 500 Internal Server Error.

    Converts uncaught server errors into the standard ErrorEnvelope format.
    """
    logger = get_logger(__name__)
    logger.error(
        "internal_server_error",
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(),
    )

    error_envelope = ErrorEnvelope(
        error=ErrorDetail(
            code=DATABASE_ERROR,
            message="An internal server error occurred"
        )
    )

    return JSONResponse(
        status_code=500,
        content=error_envelope.model_dump(),
        headers={"Content-Type": "application/json"}
    )


@app.get("/health")
async def health() -> Dict[str, str]:
    """Health check endpoint.

    Example:
        GET /health -> {"status": "healthy"}
    """
    return {"status": "healthy"}
