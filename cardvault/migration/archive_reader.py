"""
Backup import.

Accepts either a single JSON document or a zip bundle and restores its
contents into an account:

    README.txt                 ignored
    data/collections.json      collections and their cards
    data/profile.json          profile (optional)
    data/soldCards.json        sold items (optional)
    images/<cardId>.<ext>      card images (optional)

All documents are decoded and normalized before anything is written, so a
fatal input error never leaves a half-written import behind. Writes then
proceed document by document; failures inside a collection, batch or image
are counted and the import carries on.
"""

import asyncio
import io
import json
import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.config import Settings, settings
from cardvault.db.operations import get_sold_serials, replace_profile
from cardvault.migration.assets import AssetImporter
from cardvault.migration.batch_writer import BatchWriter
from cardvault.migration.normalizer import (
    extract_profile,
    extract_sold_items,
    normalize_document,
)
from cardvault.migration.reconciler import CollectionReconciler, name_key
from cardvault.models.failure import (
    ArchiveUnreadableError,
    InvalidDocumentError,
    UnsupportedFormatError,
)
from cardvault.models.migration import ImportResult, ImportStats, NormalizedDocument, Record
from cardvault.storage.blob import BlobStore

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = (".json",)
BUNDLE_EXTENSIONS = (".zip",)

# Collections document names, newest layout first
COLLECTIONS_DOCUMENTS = (
    "collections.json",
    "pokemon-card-tracker-data.json",
    "personal_data.json",
)
PROFILE_DOCUMENT = "profile.json"
SOLD_ITEMS_DOCUMENT = "soldcards.json"
IMAGES_FOLDER = "images"
DATA_FOLDER = "data"

# Metadata folder added by macOS archive tools
_IGNORED_PREFIX = "__MACOSX/"


@dataclass
class BundleContents:
    """Decoded contents of a backup bundle."""

    collections: NormalizedDocument | None = None
    profile: Record | None = None
    sold_items: list[Record] | None = None
    images: list[tuple[str, bytes]] = field(default_factory=list)


def decode_document(name: str, content: bytes) -> Any:
    """
    Decode a JSON document.

    Raises:
        InvalidDocumentError: If the bytes are not valid UTF-8 JSON
    """
    try:
        return json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidDocumentError(name, detail=str(e)) from e


def _basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def _locate(names: list[str], basename: str) -> str | None:
    """
    Find an archive member by base name, ignoring any wrapping folder.

    Members inside a ``data`` folder win; otherwise the shallowest match.
    """
    matches = [name for name in names if _basename(name).lower() == basename.lower()]
    if not matches:
        return None
    matches.sort(key=lambda name: (DATA_FOLDER not in name.split("/")[:-1], name.count("/")))
    return matches[0]


def _is_image_entry(info: zipfile.ZipInfo) -> bool:
    if info.is_dir():
        return False
    parts = info.filename.split("/")
    return IMAGES_FOLDER in parts[:-1] and not parts[-1].startswith(".")


def read_bundle(content: bytes) -> BundleContents:
    """
    Open a zip bundle and decode its documents.

    A missing optional document is left as None. An undecodable profile or
    sold items document is logged and skipped.

    Raises:
        ArchiveUnreadableError: If the zip cannot be opened
        InvalidDocumentError: If the collections document is not valid JSON
        NoCardsFoundError: If the collections document holds no card list
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveUnreadableError(detail=str(e)) from e

    contents = BundleContents()
    with archive:
        members = [
            info for info in archive.infolist() if not info.filename.startswith(_IGNORED_PREFIX)
        ]
        names = [info.filename for info in members if not info.is_dir()]

        try:
            collections_name = next(
                (found for doc in COLLECTIONS_DOCUMENTS if (found := _locate(names, doc))),
                None,
            )
            collections_raw = None
            if collections_name is not None:
                collections_raw = decode_document(collections_name, archive.read(collections_name))
                contents.collections = normalize_document(collections_raw)

            profile_name = _locate(names, PROFILE_DOCUMENT)
            if profile_name is not None:
                contents.profile = _optional_profile(profile_name, archive.read(profile_name))
            elif collections_raw is not None:
                contents.profile = extract_profile(collections_raw)

            sold_name = _locate(names, SOLD_ITEMS_DOCUMENT)
            if sold_name is not None:
                contents.sold_items = _optional_sold_items(sold_name, archive.read(sold_name))
            elif collections_raw is not None:
                # Older bundles kept sold items inside the collections document
                contents.sold_items = extract_sold_items(collections_raw)

            contents.images = [
                (info.filename, archive.read(info)) for info in members if _is_image_entry(info)
            ]
        except (zipfile.BadZipFile, zlib.error, OSError, EOFError) as e:
            raise ArchiveUnreadableError(detail=str(e)) from e

    return contents


def _optional_profile(name: str, content: bytes) -> Record | None:
    try:
        document = decode_document(name, content)
    except InvalidDocumentError as e:
        logger.warning("Skipping unreadable profile document %s: %s", name, e.detail)
        return None
    if not isinstance(document, dict):
        logger.warning("Skipping profile document %s: expected an object", name)
        return None
    return document


def _optional_sold_items(name: str, content: bytes) -> list[Record] | None:
    try:
        document = decode_document(name, content)
    except InvalidDocumentError as e:
        logger.warning("Skipping unreadable sold items document %s: %s", name, e.detail)
        return None
    return extract_sold_items(document)


class BackupImporter:
    """
    Restores a backup file into one account.

    Args:
        session: Database session used for every write
        user_id: Destination account
        blob_store: Where card images are uploaded
        config: Batch sizes, retry and concurrency settings
    """

    def __init__(
        self,
        session: AsyncSession,
        user_id: str,
        blob_store: BlobStore,
        *,
        config: Settings = settings,
    ):
        self.session = session
        self.user_id = user_id
        self.blob_store = blob_store
        self.config = config

    def _writer(self, batch_size: int) -> BatchWriter:
        return BatchWriter(
            self.session,
            self.user_id,
            batch_size,
            max_attempts=self.config.batch_max_attempts,
            retry_backoff=self.config.batch_retry_backoff,
        )

    async def import_file(self, filename: str, content: bytes) -> ImportResult:
        """
        Import a backup, choosing the path from the file extension.

        Raises:
            UnsupportedFormatError: If the extension is neither .json nor .zip
            MigrationError: For any other fatal input error
        """
        lowered = filename.lower()
        if lowered.endswith(DOCUMENT_EXTENSIONS):
            return await self.import_document(content, name=filename)
        if lowered.endswith(BUNDLE_EXTENSIONS):
            return await self.import_bundle(content)
        raise UnsupportedFormatError(filename)

    async def import_document(self, content: bytes, name: str = "document") -> ImportResult:
        """
        Import a standalone JSON document into a single collection.

        Every card, whatever collection the document grouped it under, goes
        into the account's first regular collection, or into a new
        "Imported Cards" collection when the account has none.
        """
        document = normalize_document(decode_document(name, content))
        cards = document.all_cards()
        logger.info(
            "Importing %d cards from %s (%s) for %s",
            len(cards),
            name,
            document.shape.value,
            self.user_id,
        )

        reconciler = CollectionReconciler(self.session, self.user_id)
        try:
            target_id = await reconciler.default_target()
        except SQLAlchemyError:
            logger.exception("Failed to resolve import collection for %s", self.user_id)
            return ImportResult(stats=ImportStats(card_errors=len(cards)))

        written = await self._writer(self.config.document_batch_size).write_cards(
            cards, target_id
        )

        mapping = {c.source_id: target_id for c in document.collections if c.source_id}
        names = {name_key(c.name): target_id for c in document.collections}
        return ImportResult(
            stats=ImportStats(cards_imported=written.count, card_errors=written.error_count),
            collection_mapping=mapping,
            name_index=names,
        )

    async def import_bundle(self, content: bytes) -> ImportResult:
        """
        Import a zip bundle.

        Records and images are restored concurrently; the two pipelines
        share no state and their counters are merged at the end.
        """
        contents = await asyncio.to_thread(read_bundle, content)
        logger.info(
            "Importing bundle for %s: collections=%s profile=%s sold_items=%s images=%d",
            self.user_id,
            contents.collections is not None,
            contents.profile is not None,
            contents.sold_items is not None,
            len(contents.images),
        )

        assets = AssetImporter(
            self.blob_store, self.user_id, concurrency=self.config.asset_upload_concurrency
        )
        (record_stats, mapping, names), asset_stats = await asyncio.gather(
            self._import_records(contents),
            assets.import_assets(contents.images),
        )
        return ImportResult(
            stats=record_stats + asset_stats,
            collection_mapping=mapping,
            name_index=names,
        )

    async def _import_records(
        self, contents: BundleContents
    ) -> tuple[ImportStats, dict[str, str], dict[str, str]]:
        stats = ImportStats()
        mapping: dict[str, str] = {}
        names: dict[str, str] = {}
        writer = self._writer(self.config.archive_batch_size)

        if contents.collections is not None:
            collection_stats, mapping, names = await self._import_collections(
                contents.collections, writer
            )
            stats += collection_stats

        if contents.profile is not None:
            stats += await self._import_profile(contents.profile)

        if contents.sold_items:
            stats += await self._import_sold_items(contents.sold_items, writer)

        return stats, mapping, names

    async def _import_collections(
        self, document: NormalizedDocument, writer: BatchWriter
    ) -> tuple[ImportStats, dict[str, str], dict[str, str]]:
        reconciler = CollectionReconciler(self.session, self.user_id)
        try:
            reconciliation = await reconciler.reconcile(document.collections)
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Failed to reconcile collections for %s", self.user_id)
            return ImportStats(card_errors=document.total_cards()), {}, {}

        logger.info(
            "Reconciled %d collections for %s (%d created, %d failed)",
            len(reconciliation.name_index),
            self.user_id,
            len(reconciliation.created),
            len(reconciliation.failed),
        )
        stats = ImportStats()

        for collection in document.collections:
            destination_id = reconciliation.name_index.get(name_key(collection.name))
            if destination_id is None:
                logger.warning(
                    "Skipping %d cards for collection %r",
                    len(collection.cards),
                    collection.name,
                )
                stats += ImportStats(card_errors=len(collection.cards))
                continue
            written = await writer.write_cards(collection.cards, destination_id)
            stats += ImportStats(cards_imported=written.count, card_errors=written.error_count)

        if document.loose_cards:
            try:
                target_id = await reconciler.default_target()
            except SQLAlchemyError:
                logger.exception("Failed to resolve collection for ungrouped cards")
                stats += ImportStats(card_errors=len(document.loose_cards))
            else:
                written = await writer.write_cards(document.loose_cards, target_id)
                stats += ImportStats(
                    cards_imported=written.count, card_errors=written.error_count
                )

        return stats, reconciliation.id_mapping, reconciliation.name_index

    async def _import_profile(self, profile: Record) -> ImportStats:
        try:
            await replace_profile(self.session, self.user_id, profile)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Failed to restore profile for %s", self.user_id)
            return ImportStats()
        return ImportStats(profile_imported=True)

    async def _import_sold_items(self, items: list[Record], writer: BatchWriter) -> ImportStats:
        try:
            seen = await get_sold_serials(self.session, self.user_id)
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Failed to read existing sold items for %s", self.user_id)
            return ImportStats(sold_errors=len(items))

        fresh: list[Record] = []
        skipped = 0
        for item in items:
            serial = item.get("slabSerial")
            if serial not in (None, ""):
                if str(serial) in seen:
                    skipped += 1
                    continue
                seen.add(str(serial))
            fresh.append(item)

        written = await writer.write_sold_items(fresh)
        return ImportStats(
            sold_imported=written.count,
            sold_errors=written.error_count,
            sold_skipped=skipped,
        )
