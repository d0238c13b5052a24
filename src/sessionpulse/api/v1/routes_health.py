"""Health check endpoint for SessionPulse Engine."""

from fastapi import APIRouter, Request

from sessionpulse.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check endpoint.

    Returns service status, name and version, plus the record count of each
    entity index. Indexes still loading report 0; this endpoint never waits
    for them.

    Returns:
        dict: Health status response
    """
    service = getattr(request.app.state, "resolution_service", None)
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "entity_indexes_ready": bool(service and service.is_warm),
        "entity_indexes": service.index_sizes() if service else {},
    }
