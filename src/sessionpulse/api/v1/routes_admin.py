"""Administrative API routes."""

import logging

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from sessionpulse.api.v1.routes_nlq import get_resolution_service
from sessionpulse.resolution.service import ResolutionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin")


@router.post("/entities/refresh")
async def refresh_entities(
    service: ResolutionService = Depends(get_resolution_service),
) -> dict:
    """Rebuild the entity indexes from the warehouse.

    The running indexes keep serving requests until the new ones are
    published.

    Returns:
        dict: Record count per category after the refresh
    """
    logger.info("Entity index refresh requested")
    sizes = await run_in_threadpool(service.refresh)
    return {"status": "ok", "entity_indexes": sizes}
