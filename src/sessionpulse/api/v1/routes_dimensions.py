"""Dimension listing API routes.

Serves the canonical instructor, domain, class and topic values straight from
the warehouse, e.g. for filter dropdowns.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sessionpulse.dwh.client import DwhClient
from sessionpulse.resolution.models import Category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/dimensions")


class DimensionValuesResponse(BaseModel):
    """Canonical values of one category."""

    category: Category
    values: list[str]


def get_dwh_client() -> DwhClient:
    """Warehouse client for the request.

    Raises:
        HTTPException: 500 if the client cannot be created
    """
    try:
        return DwhClient()
    except Exception as e:
        logger.error(f"Failed to initialize warehouse client: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Database connection failed: {e}")


@router.get("/{category}", response_model=DimensionValuesResponse)
def list_dimension_values(
    category: Category,
    client: DwhClient = Depends(get_dwh_client),
) -> DimensionValuesResponse:
    """List canonical values of a category in ascending order.

    Raises:
        HTTPException: 500 if the warehouse cannot be queried
    """
    try:
        values = client.list_dimension_values(category)
    except Exception as e:
        logger.error(
            f"Failed to list {category.value} values: {e}",
            extra={"category": category.value},
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=str(e))

    return DimensionValuesResponse(category=category, values=values)
