import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from . import models
from .database import engine
from .errors import BookingError, booking_error_handler
from .routers import booking_router, conversation_router, payment_router
from .outbox_poller import run_outbox_poller
from .payment_gateway import build_payment_gateway

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

# Setup logger
logger = logging.getLogger("turf_booking")

# Create database tables on startup
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # The gateway is configured once per process and injected into each request
    app.state.payment_gateway = build_payment_gateway(settings)

    redis_client = None
    if settings.RATE_LIMIT_ENABLED:
        try:
            redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
            await FastAPILimiter.init(redis_client)
            logger.info("FastAPILimiter initialized with Redis.")
        except Exception as e:
            logger.error(f"Failed to initialize FastAPILimiter: {e}")

    poller_task = None
    if settings.OUTBOX_POLLER_ENABLED:
        poller_task = asyncio.create_task(run_outbox_poller())

    yield  # The application is now running

    # --- Code to run on shutdown ---
    if redis_client is not None:
        await redis_client.close()

    if poller_task is not None:
        logger.info("Shutting down outbox poller...")
        poller_task.cancel()
        try:
            await poller_task
        except asyncio.CancelledError:
            logger.info("Outbox poller task successfully cancelled.")
        except Exception as e:
            logger.error(f"Error during outbox poller shutdown: {e}")


# Create the FastAPI app instance, passing the lifespan manager
app = FastAPI(
    title="Turf Booking Service API",
    description="Slot reservations, payment capture, cancellations and owner settlement.",
    version="1.0.0",
    lifespan=lifespan
)

app.add_exception_handler(BookingError, booking_error_handler)

app.include_router(booking_router.router)
app.include_router(payment_router.router)
app.include_router(conversation_router.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Turf Booking Service"}
