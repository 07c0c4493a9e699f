"""
FastAPI application: health surface plus optional in-process scheduler.
"""

import asyncio
import contextlib
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from dealwatch.config import settings
from dealwatch.db.pool import db_pool
from dealwatch.features.deal_expiration.jobs.expiration_job import start_deal_expiration_scheduler
from dealwatch.infrastructure.observability.logging import get_logger, setup_logging
from dealwatch.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pool, optionally start the expiration scheduler, tear both down on exit."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    logger.info("Initializing database pool")
    await db_pool.initialize()

    scheduler_task: asyncio.Task | None = None
    if settings.DEAL_EXPIRATION_RUN_IN_APP:
        logger.info("Starting in-process deal expiration scheduler")
        scheduler_task = asyncio.create_task(start_deal_expiration_scheduler())

    yield

    logger.info("Application shutting down")

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Dealwatch",
    description="Deal expiration notifications for co-op members",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
