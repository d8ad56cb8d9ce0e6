"""
Card image transfer between backup archives and blob storage.

Images travel next to the structured data as ``images/<cardId>.<ext>``.
The owning card is inferred purely from the file name; card records are
never read or modified here, so image failures cannot affect card counts.
"""

import asyncio
import logging
import mimetypes
from collections.abc import Iterable
from dataclasses import dataclass

import httpx

from cardvault.config import settings
from cardvault.models.migration import ImportStats
from cardvault.storage.blob import (
    DEFAULT_CONTENT_TYPE,
    BlobStore,
    BlobStoreError,
    image_key,
    image_prefix,
)

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_EXTENSION = "jpg"

# Failures that are isolated to a single image
UPLOAD_ERRORS = (BlobStoreError, httpx.HTTPError, OSError)


@dataclass(frozen=True, slots=True)
class ArchivedImage:
    """An image ready to be written into a backup archive."""

    card_id: str
    filename: str
    content: bytes


def card_id_from_path(path: str) -> str:
    """
    Derive the owning card id from an archive image path.

    The id is the file's base name with its final extension removed.
    ``images/ABC123.jpg`` gives ``ABC123``; ``images/.jpg`` gives ``""``.
    """
    name = path.rsplit("/", 1)[-1]
    stem, dot, _ = name.rpartition(".")
    return (stem if dot else name).strip()


def _concurrency_limit(concurrency: int | None) -> int:
    limit = settings.asset_upload_concurrency if concurrency is None else concurrency
    return max(1, limit)


def extension_for(content_type: str) -> str:
    """File extension for an image content type, ``jpg`` if unknown."""
    subtype = content_type.split(";", 1)[0].strip().split("/", 1)
    if len(subtype) == 2 and subtype[0] == "image" and subtype[1]:
        return "jpg" if subtype[1] == "jpeg" else subtype[1]
    return DEFAULT_IMAGE_EXTENSION


class AssetImporter:
    """
    Uploads archive images to blob storage.

    Uploads run concurrently, bounded by ``concurrency``. Each upload
    reports its own outcome, and counts are derived from those outcomes
    once all uploads have finished.
    """

    def __init__(self, blob_store: BlobStore, user_id: str, *, concurrency: int | None = None):
        self.blob_store = blob_store
        self.user_id = user_id
        self.concurrency = _concurrency_limit(concurrency)

    async def import_assets(self, entries: Iterable[tuple[str, bytes]]) -> ImportStats:
        """
        Upload every image entry.

        Args:
            entries: (archive path, bytes) pairs from the archive's image folder

        Returns:
            ImportStats with only the asset counters set
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = []
        scheduled: dict[str, str] = {}
        for path, content in entries:
            card_id = card_id_from_path(path)
            if not card_id:
                logger.debug("Skipping image with no card id: %s", path)
                continue
            # One image per card; the first entry for a card id wins
            if card_id in scheduled:
                logger.warning(
                    "Skipping image %s: card %s already has image %s",
                    path,
                    card_id,
                    scheduled[card_id],
                )
                continue
            scheduled[card_id] = path
            tasks.append(self._upload(semaphore, path, card_id, content))

        if not tasks:
            return ImportStats()

        outcomes = await asyncio.gather(*tasks)
        uploaded = sum(1 for ok in outcomes if ok)
        failed = len(outcomes) - uploaded

        logger.info("Uploaded %d images for %s (%d failed)", uploaded, self.user_id, failed)
        return ImportStats(assets_uploaded=uploaded, asset_errors=failed)

    async def _upload(
        self, semaphore: asyncio.Semaphore, path: str, card_id: str, content: bytes
    ) -> bool:
        content_type = mimetypes.guess_type(path)[0] or DEFAULT_CONTENT_TYPE
        async with semaphore:
            try:
                await self.blob_store.put(
                    image_key(self.user_id, card_id), content, content_type
                )
            except UPLOAD_ERRORS as e:
                logger.error("Failed to upload image %s for card %s: %s", path, card_id, e)
                return False
            except Exception:
                # A single image must never abort its siblings or the import
                logger.exception(
                    "Unexpected error uploading image %s for card %s", path, card_id
                )
                return False
        return True


async def collect_images(
    blob_store: BlobStore, user_id: str, *, concurrency: int | None = None
) -> list[ArchivedImage]:
    """
    Download all of an account's images for export.

    An image that cannot be downloaded is logged and left out; a failure to
    list images at all yields an empty list.
    """
    prefix = image_prefix(user_id)
    try:
        keys = await blob_store.list_keys(prefix)
    except UPLOAD_ERRORS as e:
        logger.error("Failed to list images for %s: %s", user_id, e)
        return []

    semaphore = asyncio.Semaphore(_concurrency_limit(concurrency))

    async def fetch(key: str) -> ArchivedImage | None:
        card_id = key.removeprefix(prefix)
        async with semaphore:
            try:
                blob = await blob_store.get(key)
            except UPLOAD_ERRORS as e:
                logger.error("Failed to export image %s: %s", key, e)
                return None
        filename = f"{card_id}.{extension_for(blob.content_type)}"
        return ArchivedImage(card_id=card_id, filename=filename, content=blob.content)

    results = await asyncio.gather(*(fetch(key) for key in keys))
    images = [image for image in results if image is not None]
    logger.info("Collected %d of %d images for %s", len(images), len(keys), user_id)
    return images
