"""Main application entrypoint for SessionPulse Engine."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sessionpulse.api.v1 import routes_health
from sessionpulse.api.v1.routes_admin import router as admin_router
from sessionpulse.api.v1.routes_dimensions import router as dimensions_router
from sessionpulse.api.v1.routes_nlq import router as nlq_router
from sessionpulse.core.config import settings
from sessionpulse.core.logging import setup_logging
from sessionpulse.dwh.client import DwhClient
from sessionpulse.resolution.service import ResolutionService

logger = logging.getLogger(__name__)


async def _refresh_periodically(service: ResolutionService, interval_seconds: float) -> None:
    """Rebuild the entity indexes every interval_seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(service.refresh)
        except Exception as e:
            logger.error(f"Periodic entity index refresh failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start entity index warm-up without blocking start-up.

    Requests served before warm-up finishes resolve against whichever
    categories are already loaded.
    """
    service: ResolutionService = app.state.resolution_service
    tasks = []

    if settings.ENTITY_WARMUP_ENABLED:
        tasks.append(asyncio.create_task(asyncio.to_thread(service.warm_up)))

    if settings.ENTITY_REFRESH_INTERVAL_SECONDS > 0:
        tasks.append(
            asyncio.create_task(
                _refresh_periodically(service, settings.ENTITY_REFRESH_INTERVAL_SECONDS)
            )
        )

    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    # Empty until warm-up publishes the first index
    app.state.resolution_service = ResolutionService(source_factory=DwhClient)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(nlq_router, tags=["nlq"])
    app.include_router(dimensions_router, tags=["dimensions"])
    app.include_router(admin_router, tags=["admin"])

    return app


# Export app instance for ASGI servers
app = create_app()
