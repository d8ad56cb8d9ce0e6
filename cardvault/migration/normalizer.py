"""
Import document normalizer.

Backups written by earlier versions of the app come in several layouts:

- A flat array of cards
- ``{"cards": [...]}``
- ``{"collections": [{"id": ..., "name": ..., "cards": [...]}, ...]}``
- ``{"collections": {"Collection Name": [...], ...}}``
- Any other object holding at least one array, taken as a card list

``normalize_document`` detects the layout once and returns a
``NormalizedDocument``. Everything downstream works on that canonical form.
Card dicts are passed through untouched; only their container changes.
"""

from typing import Any

from cardvault.config import DEFAULT_IMPORT_COLLECTION
from cardvault.models.failure import NoCardsFoundError
from cardvault.models.migration import (
    DocumentShape,
    NormalizedCollection,
    NormalizedDocument,
    Record,
)

# Keys that hold sold items in combined documents. Never read as cards.
SOLD_ITEM_KEYS = ("soldCards", "soldItems")


def _card_list(values: list[Any]) -> tuple[Record, ...]:
    """Keep only mapping entries from a card array."""
    return tuple(value for value in values if isinstance(value, dict))


def _collection_name(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return DEFAULT_IMPORT_COLLECTION


def _source_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _from_collections_array(entries: list[Any]) -> tuple[NormalizedCollection, ...]:
    collections = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        cards = entry.get("cards")
        collections.append(
            NormalizedCollection(
                name=_collection_name(entry.get("name")),
                cards=_card_list(cards) if isinstance(cards, list) else (),
                source_id=_source_id(entry.get("id")),
            )
        )
    return tuple(collections)


def _from_collections_map(entries: dict[str, Any]) -> tuple[NormalizedCollection, ...]:
    collections = []
    for name, value in entries.items():
        # Oldest layout: name -> [cards]
        if isinstance(value, list):
            collections.append(
                NormalizedCollection(name=_collection_name(name), cards=_card_list(value))
            )
        # Intermediate layout: name -> {id, name, cards: [...]}
        elif isinstance(value, dict) and isinstance(value.get("cards"), list):
            collections.append(
                NormalizedCollection(
                    name=_collection_name(name),
                    cards=_card_list(value["cards"]),
                    source_id=_source_id(value.get("id")),
                )
            )
    return tuple(collections)


def detect_shape(document: Any) -> DocumentShape | None:
    """
    Identify which known layout a decoded document uses.

    Returns None if the document holds no array at all.
    """
    if isinstance(document, list):
        return DocumentShape.ARRAY_OF_CARDS

    if not isinstance(document, dict):
        return None

    if isinstance(document.get("cards"), list):
        return DocumentShape.CARDS_PROPERTY

    collections = document.get("collections")
    if isinstance(collections, list):
        return DocumentShape.COLLECTIONS_ARRAY
    if isinstance(collections, dict):
        return DocumentShape.COLLECTIONS_MAP

    if _first_card_array(document) is not None:
        return DocumentShape.FALLBACK

    return None


def _first_card_array(document: dict[str, Any]) -> list[Any] | None:
    for key, value in document.items():
        if key in SOLD_ITEM_KEYS:
            continue
        if isinstance(value, list):
            return value
    return None


def normalize_document(document: Any) -> NormalizedDocument:
    """
    Convert a decoded import document to canonical form.

    Args:
        document: Parsed JSON of unknown layout

    Returns:
        NormalizedDocument tagged with the detected shape

    Raises:
        NoCardsFoundError: If the document contains no card array
    """
    shape = detect_shape(document)

    if shape is DocumentShape.ARRAY_OF_CARDS:
        return NormalizedDocument(shape=shape, loose_cards=_card_list(document))

    if shape is DocumentShape.CARDS_PROPERTY:
        return NormalizedDocument(shape=shape, loose_cards=_card_list(document["cards"]))

    if shape is DocumentShape.COLLECTIONS_ARRAY:
        return NormalizedDocument(
            shape=shape, collections=_from_collections_array(document["collections"])
        )

    if shape is DocumentShape.COLLECTIONS_MAP:
        return NormalizedDocument(
            shape=shape, collections=_from_collections_map(document["collections"])
        )

    if shape is DocumentShape.FALLBACK:
        cards = _first_card_array(document) or []
        return NormalizedDocument(shape=shape, loose_cards=_card_list(cards))

    raise NoCardsFoundError(detail=f"Unrecognised document of type {type(document).__name__}")


def extract_sold_items(document: Any) -> list[Record] | None:
    """
    Pull a sold item list out of a document.

    Accepts a bare array or an object carrying ``soldCards``/``soldItems``.
    Returns None when the document holds no sold items.
    """
    if isinstance(document, list):
        return list(_card_list(document))
    if isinstance(document, dict):
        for key in SOLD_ITEM_KEYS:
            value = document.get(key)
            if isinstance(value, list):
                return list(_card_list(value))
    return None


def extract_profile(document: Any) -> Record | None:
    """
    Pull an embedded profile out of a combined document.

    Older backups stored the profile next to the collections, either as
    ``profile`` or as ``user.profile``.
    """
    if not isinstance(document, dict):
        return None
    profile = document.get("profile")
    if isinstance(profile, dict) and profile:
        return profile
    user = document.get("user")
    if isinstance(user, dict):
        nested = user.get("profile")
        if isinstance(nested, dict) and nested:
            return nested
    return None
