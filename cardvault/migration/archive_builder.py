"""
Backup export.

Builds the zip bundle read back by ``archive_reader``:

    README.txt
    data/collections.json
    data/profile.json          only when a profile exists
    data/soldCards.json
    images/<cardId>.<ext>
"""

import asyncio
import io
import json
import logging
import zipfile
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.config import Settings, settings
from cardvault.db.operations import (
    card_to_record,
    get_cards_by_collection,
    get_collections,
    get_profile,
    get_sold_items,
    sold_item_to_record,
    strip_internal_fields,
)
from cardvault.migration.assets import ArchivedImage, collect_images
from cardvault.models.migration import ExportBundle
from cardvault.storage.blob import BlobStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "3.0"

COLLECTIONS_PATH = "data/collections.json"
PROFILE_PATH = "data/profile.json"
SOLD_ITEMS_PATH = "data/soldCards.json"
IMAGES_PATH = "images"
README_PATH = "README.txt"


def bundle_filename(day: date) -> str:
    """Download name for a bundle created on ``day``."""
    return f"cardvault-backup-{day.isoformat()}.zip"


def _readme(
    created: datetime, collections: int, cards: int, sold_items: int, images: int
) -> str:
    return f"""CardVault Backup
Created: {created.isoformat()}

This ZIP file contains:
- data/collections.json: {cards} cards across {collections} collections
- data/profile.json: your profile (if one was saved)
- data/soldCards.json: {sold_items} sold items
- images/: {images} card images, named by card id

To restore, import this ZIP file from the app settings. Collections are
matched by name, so importing into an account that already has them will
add the cards to the existing collections.
"""


def write_bundle(
    documents: dict[str, Any], images: list[ArchivedImage], readme: str
) -> bytes:
    """Serialize documents and images into a compressed zip."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        zf.writestr(README_PATH, readme)
        for path, document in documents.items():
            zf.writestr(path, json.dumps(document, indent=2, ensure_ascii=False, default=str))
        for image in images:
            zf.writestr(f"{IMAGES_PATH}/{image.filename}", image.content)
    return buffer.getvalue()


async def build_export(
    session: AsyncSession,
    user_id: str,
    blob_store: BlobStore,
    *,
    config: Settings = settings,
    now: datetime | None = None,
) -> ExportBundle:
    """
    Export an account into a single zip bundle.

    Args:
        session: Database session for reads
        user_id: Account to export
        blob_store: Source of card images
        config: Sold item limit and download concurrency
        now: Export timestamp, defaults to the current time

    Returns:
        ExportBundle holding the archive bytes and its counts
    """
    now = now or datetime.now(UTC)

    collections = await get_collections(session, user_id)
    collection_documents = []
    card_total = 0
    for collection in collections:
        cards = await get_cards_by_collection(session, user_id, collection.id)
        card_total += len(cards)
        collection_documents.append(
            {
                "id": collection.id,
                "name": collection.name,
                "cardCount": len(cards),
                "cards": [card_to_record(card) for card in cards],
            }
        )

    profile = await get_profile(session, user_id)
    sold_items = await get_sold_items(session, user_id, limit=config.export_sold_items_limit)
    images = await collect_images(
        blob_store, user_id, concurrency=config.asset_upload_concurrency
    )

    documents: dict[str, Any] = {
        COLLECTIONS_PATH: {
            "version": EXPORT_VERSION,
            "exportDate": now.isoformat(),
            "collections": collection_documents,
        },
        SOLD_ITEMS_PATH: {"soldCards": [sold_item_to_record(item) for item in sold_items]},
    }
    if profile is not None:
        documents[PROFILE_PATH] = strip_internal_fields(profile)

    readme = _readme(now, len(collections), card_total, len(sold_items), len(images))
    content = await asyncio.to_thread(write_bundle, documents, images, readme)

    logger.info(
        "Exported %d cards, %d collections, %d sold items and %d images for %s (%d bytes)",
        card_total,
        len(collections),
        len(sold_items),
        len(images),
        user_id,
        len(content),
    )
    return ExportBundle(
        filename=bundle_filename(now.date()),
        content=content,
        collection_count=len(collections),
        card_count=card_total,
        sold_item_count=len(sold_items),
        image_count=len(images),
    )
