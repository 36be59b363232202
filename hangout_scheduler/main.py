"""
Application entry point.
Wires the scheduler services and exposes them over HTTP.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from hangout_scheduler.config import settings
from hangout_scheduler.infrastructure.observability.logging import get_logger, setup_logging
from hangout_scheduler.repositories.hangout_repository import (
    InMemoryHangoutRepository,
    PersistenceGateway,
)
from hangout_scheduler.routes import hangouts, health
from hangout_scheduler.services.availability.engine import AvailabilityEngine
from hangout_scheduler.services.calendar.access_provider import (
    CalendarAccessProvider,
    GoogleCalendarAccessProvider,
    InMemoryTokenSource,
)
from hangout_scheduler.services.hangouts.lifecycle import HangoutLifecycleService
from hangout_scheduler.services.notifications.dispatcher import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)

setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


def create_app(
    gateway: PersistenceGateway | None = None,
    calendar_provider: CalendarAccessProvider | None = None,
    notifier: NotificationDispatcher | None = None,
) -> FastAPI:
    """
    Build the FastAPI app with its service graph.

    Any collaborator left as None gets the default process-local wiring.
    """
    gateway = gateway or InMemoryHangoutRepository()
    notifier = notifier or LoggingNotificationDispatcher()
    owns_provider = calendar_provider is None
    if calendar_provider is None:
        calendar_provider = GoogleCalendarAccessProvider(InMemoryTokenSource())

    engine = AvailabilityEngine(calendar_provider)
    service = HangoutLifecycleService(gateway, calendar_provider, engine, notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Application starting",
            environment=settings.environment,
            debug=settings.debug,
            scheduling_timezone=settings.SCHEDULING_TIMEZONE,
        )

        yield

        logger.info("Application shutting down")
        if owns_provider:
            try:
                await calendar_provider.close()
            except Exception as e:
                logger.error("Error closing calendar client", error=str(e))

    app = FastAPI(
        title="Hangout Scheduler",
        description="Mutual availability and hangout request lifecycle",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.availability_engine = engine
    app.state.hangout_service = service
    app.state.calendar_client = getattr(calendar_provider, "client", None)

    app.include_router(health.router)
    app.include_router(hangouts.router)

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

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
