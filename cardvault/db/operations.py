"""
Database CRUD operations.

Provides async functions for reading and writing the records of a single
account: collections, cards, sold items and the profile. Functions flush
but never commit; transaction boundaries belong to the caller.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardvault.models.db import CardDB, CollectionDB, ProfileDB, SoldItemDB

# Identity fields held in columns rather than in the JSON document
CARD_IDENTITY_FIELDS = ("id", "collectionId")

# Client-side bookkeeping that never leaves the account
INTERNAL_FIELDS = ("_lastUpdateTime", "_syncStatus", "_localId")


def _card_document(card: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in card.items() if k not in CARD_IDENTITY_FIELDS}


def strip_internal_fields(record: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a record without client bookkeeping fields."""
    return {k: v for k, v in record.items() if k not in INTERNAL_FIELDS}


# --- Collection Operations ---


async def get_collections(session: AsyncSession, user_id: str) -> list[CollectionDB]:
    """Get all collections for an account, oldest first."""
    result = await session.execute(
        select(CollectionDB)
        .where(CollectionDB.user_id == user_id)
        .order_by(CollectionDB.created_at, CollectionDB.id)
    )
    return list(result.scalars().all())


async def get_collection(
    session: AsyncSession, user_id: str, collection_id: str
) -> CollectionDB | None:
    """
    Get a single collection by id.

    Returns None if the collection does not exist or belongs to another user.
    """
    result = await session.execute(
        select(CollectionDB).where(
            CollectionDB.id == collection_id,
            CollectionDB.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def create_collection(session: AsyncSession, user_id: str, name: str) -> CollectionDB:
    """Create a new empty collection."""
    collection = CollectionDB(user_id=user_id, name=name, card_count=0)
    session.add(collection)
    await session.flush()
    return collection


async def count_cards(session: AsyncSession, user_id: str, collection_id: str) -> int:
    """Count the cards stored in a collection."""
    result = await session.execute(
        select(func.count())
        .select_from(CardDB)
        .where(CardDB.user_id == user_id, CardDB.collection_id == collection_id)
    )
    return int(result.scalar_one())


async def update_collection_card_count(
    session: AsyncSession, user_id: str, collection_id: str
) -> int | None:
    """
    Recompute and persist a collection's card count.

    The count is re-queried from the cards table so that cards written by
    an earlier, partial import are included.

    Returns the new count, or None if the collection does not exist.
    """
    collection = await get_collection(session, user_id, collection_id)
    if collection is None:
        return None

    collection.card_count = await count_cards(session, user_id, collection_id)
    await session.flush()
    return collection.card_count


# --- Card Operations ---


async def add_cards(
    session: AsyncSession,
    user_id: str,
    collection_id: str,
    cards: list[dict[str, Any]],
) -> int:
    """
    Insert cards into a collection.

    Each card receives a fresh id; the source ``id`` and ``collectionId``
    fields are replaced by the stored identity.

    Returns the number of cards added.
    """
    session.add_all(
        [
            CardDB(user_id=user_id, collection_id=collection_id, data=_card_document(card))
            for card in cards
        ]
    )
    await session.flush()
    return len(cards)


async def get_cards_by_collection(
    session: AsyncSession, user_id: str, collection_id: str
) -> list[CardDB]:
    """Get all cards in a collection in insertion order."""
    result = await session.execute(
        select(CardDB)
        .where(CardDB.user_id == user_id, CardDB.collection_id == collection_id)
        .order_by(CardDB.created_at, CardDB.id)
    )
    return list(result.scalars().all())


def card_to_record(card: CardDB) -> dict[str, Any]:
    """Convert a stored card to its exported document form."""
    return {"id": card.id, "collectionId": card.collection_id, **strip_internal_fields(card.data)}


# --- Sold Item Operations ---


async def get_sold_items(
    session: AsyncSession, user_id: str, limit: int | None = None
) -> list[SoldItemDB]:
    """Get sold items, most recently sold first."""
    query = (
        select(SoldItemDB)
        .where(SoldItemDB.user_id == user_id)
        .order_by(SoldItemDB.sold_date.desc().nulls_last(), SoldItemDB.created_at.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_sold_serials(session: AsyncSession, user_id: str) -> set[str]:
    """Get the slab serials already present in the sold bucket."""
    result = await session.execute(
        select(SoldItemDB.slab_serial).where(
            SoldItemDB.user_id == user_id,
            SoldItemDB.slab_serial.is_not(None),
        )
    )
    return {serial for serial in result.scalars().all() if serial}


async def add_sold_items(
    session: AsyncSession, user_id: str, items: list[dict[str, Any]]
) -> int:
    """
    Insert sold items.

    Items without a ``soldDate`` are stamped with the current time.

    Returns the number of items added.
    """
    now = datetime.now(UTC).isoformat()
    rows = []
    for item in items:
        data = {k: v for k, v in item.items() if k != "id"}
        data.setdefault("soldDate", now)
        serial = data.get("slabSerial")
        rows.append(
            SoldItemDB(
                user_id=user_id,
                slab_serial=str(serial) if serial not in (None, "") else None,
                sold_date=str(data["soldDate"]) if data["soldDate"] is not None else None,
                data=data,
            )
        )
    session.add_all(rows)
    await session.flush()
    return len(rows)


def sold_item_to_record(item: SoldItemDB) -> dict[str, Any]:
    """Convert a stored sold item to its exported document form."""
    return {"id": item.id, **strip_internal_fields(item.data)}


# --- Profile Operations ---


async def get_profile(session: AsyncSession, user_id: str) -> dict[str, Any] | None:
    """Get the account profile, or None if none has been saved."""
    result = await session.execute(select(ProfileDB).where(ProfileDB.user_id == user_id))
    profile = result.scalar_one_or_none()
    return dict(profile.data) if profile else None


async def replace_profile(
    session: AsyncSession, user_id: str, data: dict[str, Any]
) -> ProfileDB:
    """
    Overwrite the account profile.

    The previous document is replaced wholesale; fields are never merged.
    """
    await session.execute(delete(ProfileDB).where(ProfileDB.user_id == user_id))
    profile = ProfileDB(user_id=user_id, data=dict(data))
    session.add(profile)
    await session.flush()
    return profile
