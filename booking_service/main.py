import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import models
from .database import engine
from .routers import booking_router, review_router
from .outbox_poller import run_outbox_poller
from .booking_scheduler import run_booking_scheduler

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

# Setup logger
logger = logging.getLogger("booking_service")

# Create database tables on startup
# This will create 'bookings', 'reviews' and 'outbox_events' if they don't exist
models.Base.metadata.create_all(bind=engine)


async def _stop_task(task: asyncio.Task, name: str):
    task.cancel()
    # Await the cancellation to allow for graceful shutdown
    try:
        await task
    except asyncio.CancelledError:
        logger.info(f"{name} task successfully cancelled.")
    except Exception as e:
        logger.error(f"Error during {name} shutdown: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("Starting background tasks...")

    redis_client = None
    try:
        redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
        await FastAPILimiter.init(redis_client)
        logger.info("FastAPILimiter initialized with Redis.")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPILimiter: {e}")

    tasks = {"Outbox poller": asyncio.create_task(run_outbox_poller())}
    if settings.SCHEDULER_ENABLED:
        # Hourly expiry sweep and daily review fallback sweep
        tasks["Booking scheduler"] = asyncio.create_task(run_booking_scheduler())

    yield  # The application is now running

    # --- Code to run on shutdown ---
    logger.info("Shutting down background tasks...")

    if redis_client is not None:
        await redis_client.close()

    for name, task in tasks.items():
        await _stop_task(task, name)


# Create the FastAPI app instance, passing the lifespan manager
app = FastAPI(
    title="Booking Service API",
    description="Booking lifecycle from inquiry to completion, and double-blind reviews.",
    version="1.0.0",
    lifespan=lifespan  # Use the new lifespan manager
)

app.include_router(booking_router.router)
app.include_router(review_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Booking Service"}
