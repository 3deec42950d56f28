"""
SoulSync import service: FastAPI app with Redis and workflow lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from soulsync.config import settings
from soulsync.features.chat_import import chat_import_router
from soulsync.features.chat_import.services.registry import workflow_registry
from soulsync.infrastructure.observability.logging import (
    bind_request_context,
    get_logger,
    log_request,
    setup_logging,
)
from soulsync.routes import health
from soulsync.services.redis_client import redis_client

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=not settings.debug)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        logger.info("Initializing Redis connection")
        await redis_client.initialize()
        logger.info("All services initialized successfully", services=["redis"])
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    # Stop every poll loop before the connections they use go away
    try:
        await workflow_registry.close_all()
    except Exception as e:
        logger.error("Error closing import workflows", error=str(e))
        shutdown_errors.append(f"Workflows: {e}")

    try:
        logger.info("Closing Redis connection")
        await redis_client.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="SoulSync Import Service",
    description="Drives chat imports and relationship analysis refreshes",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(chat_import_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    bind_request_context(session_id=request.headers.get("X-Session-Id"))
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        request.method,
        request.url.path,
        response.status_code,
        round(process_time, 2),
        session_id=request.headers.get("X-Session-Id"),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
