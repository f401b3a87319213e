"""
Booking Bot API

Wires the booking engine, payment gate and session completion trigger
behind FastAPI.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_bot.api.routes import bookings, chat, health, payments
from booking_bot.config import settings
from booking_bot.core.booking.errors import BookingError
from booking_bot.core.payments import get_payment_gate
from booking_bot.infra.background import get_background_tasks
from booking_bot.infra.claude import close_claude_client
from booking_bot.infra.database import close_db, init_db
from booking_bot.infra.messaging import get_messaging_client
from booking_bot.infra.redis import close_redis, get_redis

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    for noisy in ("uvicorn.access", "httpx", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


async def payment_sweep_loop(interval_seconds: int) -> None:
    """Periodically expire overdue payment links and release their bookings."""
    gate = get_payment_gate()
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await gate.sweep_expired_links()
        except Exception as e:
            logger.error(f"Payment link sweep failed: {e}", exc_info=True)


async def _startup() -> Optional[asyncio.Task]:
    """Prepare storage and start the payment sweeper.

    Returns:
        The sweeper task, or None when sweeping is disabled
    """
    if settings.is_development:
        try:
            await init_db()
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    if await get_redis() is None:
        logger.warning("Redis unavailable - booking contexts kept in memory")

    if settings.payment_sweep_interval_seconds <= 0:
        return None
    logger.info(f"Payment link sweep every {settings.payment_sweep_interval_seconds}s")
    return asyncio.create_task(
        payment_sweep_loop(settings.payment_sweep_interval_seconds),
        name="payment-sweep",
    )


async def _shutdown(sweeper: Optional[asyncio.Task]) -> None:
    """Stop the sweeper, flush side-channel work, then close clients."""
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    # Analytics tasks may still write to Redis
    await get_background_tasks().drain()

    await get_messaging_client().close()
    await close_claude_client()
    await close_redis()
    await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")
    health.set_start_time()
    sweeper = await _startup()
    logger.info(f"Booking engine ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down booking engine...")
    await _shutdown(sweeper)
    logger.info("Shutdown complete")


app = FastAPI(
    title="Booking Bot API",
    description="""
    Conversational appointment booking engine.

    ## Features
    - 💬 Cancel, reschedule and book appointments over chat
    - 📅 Multi-session treatment plans (immediate, sequential, flexible)
    - 💳 Payment-gated confirmation via Stripe Checkout
    - 📧 Email collection before bookings are finalized
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", exc.errors())


@app.exception_handler(BookingError)
async def booking_exception_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Booking writes that could not be applied, e.g. on an unknown booking id."""
    logger.error(f"Booking error on {request.url.path}: {exc}")
    return _error(status.HTTP_409_CONFLICT, "Booking error", str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    # Internal details stay out of production responses
    detail = str(exc) if settings.is_development else "Internal server error"
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", detail)


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    started = time.monotonic()
    try:
        return await call_next(request)
    finally:
        if settings.debug:
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {time.monotonic() - started:.3f}s"
            )


for route_module in (health, chat, payments, bookings):
    app.include_router(route_module.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "booking_bot.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
