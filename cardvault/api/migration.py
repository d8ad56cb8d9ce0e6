"""
Backup API endpoints.

Provides full-account export to a zip bundle and import from a bundle or
a standalone JSON document.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.db.database import get_session
from cardvault.migration.archive_builder import build_export
from cardvault.migration.archive_reader import BackupImporter
from cardvault.models.failure import MigrationError
from cardvault.models.migration import ImportResult
from cardvault.storage.blob import BlobStore, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/migration", tags=["migration"])


class ImportStatsResponse(BaseModel):
    """Per-stage counters for an import."""

    cards_imported: int = 0
    card_errors: int = 0
    sold_imported: int = 0
    sold_errors: int = 0
    sold_skipped: int = 0
    assets_uploaded: int = 0
    asset_errors: int = 0
    profile_imported: bool = False


class ImportResponse(BaseModel):
    """Response model for a backup import."""

    success: bool
    message: str
    imported_count: int = 0
    error_count: int = 0
    collection_mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Source collection id -> destination collection id",
    )
    stats: ImportStatsResponse = Field(default_factory=ImportStatsResponse)

    @classmethod
    def from_result(cls, result: ImportResult) -> "ImportResponse":
        stats = result.stats
        return cls(
            success=True,
            message=result.message(),
            imported_count=result.imported_count,
            error_count=result.error_count,
            collection_mapping=result.collection_mapping,
            stats=ImportStatsResponse(
                cards_imported=stats.cards_imported,
                card_errors=stats.card_errors,
                sold_imported=stats.sold_imported,
                sold_errors=stats.sold_errors,
                sold_skipped=stats.sold_skipped,
                assets_uploaded=stats.assets_uploaded,
                asset_errors=stats.asset_errors,
                profile_imported=stats.profile_imported,
            ),
        )


def get_images_store() -> BlobStore:
    """Dependency that provides the configured blob store."""
    return get_blob_store()


@router.post(
    "/{user_id}/import",
    response_model=ImportResponse,
    responses={400: {"model": ImportResponse}},
)
async def import_backup(
    user_id: str,
    response: Response,
    file: Annotated[UploadFile, File(description="Backup .zip bundle or .json document")],
    session: Annotated[AsyncSession, Depends(get_session)],
    blob_store: Annotated[BlobStore, Depends(get_images_store)],
) -> ImportResponse:
    """
    Import a backup into an account.

    Collections are matched to existing ones by name, so repeating an
    import never duplicates collections. Failures of individual batches
    or images are reported in the counts; only an unreadable or
    unrecognised file fails the request.
    """
    content = await file.read()
    importer = BackupImporter(session, user_id, blob_store)

    try:
        result = await importer.import_file(file.filename or "", content)
    except MigrationError as e:
        logger.warning("Import for %s failed: %s (%s)", user_id, e.message, e.detail)
        response.status_code = e.status_code
        failed = e.to_result()
        return ImportResponse(success=failed.success, message=failed.message)

    return ImportResponse.from_result(result)


@router.get(
    "/{user_id}/export",
    response_class=Response,
    responses={200: {"content": {"application/zip": {}}}},
)
async def export_backup(
    user_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    blob_store: Annotated[BlobStore, Depends(get_images_store)],
) -> Response:
    """
    Export an account as a zip bundle.

    The bundle holds every collection with its cards, the profile, the
    most recent sold items and all card images.
    """
    bundle = await build_export(session, user_id, blob_store)
    return Response(
        content=bundle.content,
        media_type="application/zip",
        status_code=status.HTTP_200_OK,
        headers={
            "Content-Disposition": f'attachment; filename="{bundle.filename}"',
            "X-Export-Summary": bundle.message(),
        },
    )
