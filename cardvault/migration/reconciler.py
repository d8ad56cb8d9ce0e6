"""
Collection reconciliation.

Maps the collections named in an import onto the destination account.
A collection whose name already exists (case-insensitively) is reused;
otherwise it is created once and reused for any later occurrence of the
same name in the same import.

Name matching folds case, applies NFKC normalization and ignores
surrounding and repeated whitespace, so "  holiday   SET " matches
"Holiday Set".
"""

import logging
import unicodedata
from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.config import (
    DEFAULT_IMPORT_COLLECTION,
    SYSTEM_COLLECTION_IDS,
    SYSTEM_COLLECTION_NAMES,
)
from cardvault.db.operations import create_collection, get_collections
from cardvault.models.migration import NormalizedCollection, Reconciliation

logger = logging.getLogger(__name__)


def display_name(name: str) -> str:
    """Collapse whitespace in a collection name for storage."""
    cleaned = " ".join(name.split())
    return cleaned or DEFAULT_IMPORT_COLLECTION


def name_key(name: str) -> str:
    """Match key used to compare collection names."""
    return unicodedata.normalize("NFKC", display_name(name)).casefold()


def is_system_collection(collection_id: str, name: str) -> bool:
    """True for virtual collections that never receive imported cards."""
    return (
        collection_id in SYSTEM_COLLECTION_IDS
        or name_key(name) in SYSTEM_COLLECTION_NAMES
    )


class CollectionReconciler:
    """
    Resolves import collection names to destination collection ids.

    Existing collections are fetched once by ``load`` and indexed by match
    key. Each created collection is committed immediately so that a later
    batch rollback cannot remove it.
    """

    def __init__(self, session: AsyncSession, user_id: str):
        self.session = session
        self.user_id = user_id
        self._existing: list[tuple[str, str]] = []
        self._index: dict[str, str] = {}
        self._created: list[str] = []
        self._loaded = False

    async def load(self) -> None:
        """Fetch the account's collections and build the name index."""
        collections = await get_collections(self.session, self.user_id)
        # Plain values so later rollbacks cannot expire them
        self._existing = [(collection.id, collection.name) for collection in collections]
        self._index = {}
        for collection_id, name in self._existing:
            # First collection with a given name wins
            self._index.setdefault(name_key(name), collection_id)
        self._loaded = True
        logger.debug(
            "Loaded %d existing collections for %s", len(self._existing), self.user_id
        )

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def resolve(self, name: str) -> str:
        """
        Get the destination id for a collection name, creating it if needed.

        Raises:
            SQLAlchemyError: If the collection had to be created and creation failed
        """
        await self._ensure_loaded()

        key = name_key(name)
        existing_id = self._index.get(key)
        if existing_id is not None:
            return existing_id

        try:
            collection = await create_collection(self.session, self.user_id, display_name(name))
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

        self._index[key] = collection.id
        self._created.append(collection.id)
        logger.info(
            "Created collection %r (%s) for %s", collection.name, collection.id, self.user_id
        )
        return collection.id

    async def reconcile(self, collections: Iterable[NormalizedCollection]) -> Reconciliation:
        """
        Map every import collection to a destination collection.

        A collection that cannot be created is recorded in ``failed`` and
        reconciliation continues with the rest.
        """
        await self._ensure_loaded()

        id_mapping: dict[str, str] = {}
        name_index: dict[str, str] = {}
        failed: list[str] = []

        for collection in collections:
            try:
                destination_id = await self.resolve(collection.name)
            except SQLAlchemyError:
                logger.exception("Failed to create collection %r", collection.name)
                failed.append(collection.name)
                continue

            name_index[name_key(collection.name)] = destination_id
            if collection.source_id is not None:
                id_mapping[collection.source_id] = destination_id

        return Reconciliation(
            id_mapping=id_mapping,
            name_index=name_index,
            created=tuple(self._created),
            failed=tuple(failed),
        )

    async def default_target(self) -> str:
        """
        Pick the collection that receives a standalone document import.

        Uses the first non-system collection in the account, creating
        "Imported Cards" when there is none.
        """
        await self._ensure_loaded()

        for collection_id, name in self._existing:
            if not is_system_collection(collection_id, name):
                return collection_id

        return await self.resolve(DEFAULT_IMPORT_COLLECTION)
