"""
Health check endpoints.

Liveness plus a readiness check that covers both stores a backup touches:
the record database and image storage.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.api.migration import get_images_store
from cardvault.db.database import get_session
from cardvault.storage.blob import BlobStore, BlobStoreError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Listing under this prefix proves the image store is reachable
_HEALTH_PREFIX = "images/_health/"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None
    images: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check. Does not check dependencies."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
    blob_store: Annotated[BlobStore, Depends(get_images_store)],
) -> HealthResponse:
    """
    Readiness check.

    Returns 503 if either the database or image storage is unavailable,
    since an import or export would fail partway through.
    """
    database = "connected"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("Database not ready: %s", e)
        database = "disconnected"

    images = "connected"
    try:
        await blob_store.list_keys(_HEALTH_PREFIX)
    except BlobStoreError as e:
        logger.warning("Image storage not ready: %s", e)
        images = "disconnected"

    if database != "connected" or images != "connected":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database=database, images=images)
    return HealthResponse(status="ready", database=database, images=images)
