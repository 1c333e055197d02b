import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from courtside.api.routes import admin, availability, bookings, payments, venues
from courtside.core.config import Settings
from courtside.core.logging_config import get_logger, setup_logging
from courtside.core.redis import AvailabilityCache
from courtside.db.session import Database
from courtside.services.gateway import RazorpayGateway
from courtside.services.notifications import LogNotifier
from courtside.services.sweeper import sweep_once

logger = get_logger()


async def _sweep_loop(app: FastAPI, interval: int):
    state = app.state
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(
                sweep_once,
                state.database,
                state.settings,
                state.gateway,
                cache=state.cache,
                notifier=state.notifier,
            )
        except Exception as e:
            # Next tick retries; a failed sweep must not kill the loop
            logger.error(f"Sweep failed: {e}")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gateway=None,
    cache: Optional[AvailabilityCache] = None,
    notifier=None,
    run_sweeper: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Courtside API starting")
        sweeper = None
        if run_sweeper and settings.sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

        yield

        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        app.state.cache.close()
        app.state.database.close()
        logger.info("Courtside API stopped")

    app = FastAPI(
        title="Courtside Booking API",
        version="1.0.0",
        description="Court availability, bookings, payments and refunds",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.database = database or Database(settings.database_url)
    app.state.gateway = gateway or RazorpayGateway.from_settings(settings)
    app.state.cache = cache or AvailabilityCache.from_url(settings.redis_url, settings.availability_cache_ttl)
    app.state.notifier = notifier or LogNotifier()

    # Request Logging Middleware
    @app.middleware("http")
    async def log_requests(request, call_next):
        logger.info(f"REQUEST: {request.method} {request.url}")

        try:
            response = await call_next(request)
            logger.info(f"RESPONSE: {response.status_code} {request.url}")
            return response

        except Exception as e:
            logger.error(f"ERROR: {request.url} -> {str(e)}")
            raise e

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(availability.router)
    app.include_router(bookings.router)
    app.include_router(payments.router)
    app.include_router(admin.router)
    app.include_router(venues.router)

    @app.get("/", tags=["Root"])
    def root():
        return {"message": "Backend running successfully"}

    return app
