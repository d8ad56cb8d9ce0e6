"""
Domain models for backup import and export.

These values flow between the stages of a migration. They are immutable:
each stage returns a new value and counters are merged with ``+`` at call
boundaries rather than mutated in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

Record = dict[str, Any]


class DocumentShape(str, Enum):
    """The closed set of document layouts accepted on import."""

    ARRAY_OF_CARDS = "array_of_cards"
    CARDS_PROPERTY = "cards_property"
    COLLECTIONS_ARRAY = "collections_array"
    COLLECTIONS_MAP = "collections_map"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class NormalizedCollection:
    """
    A collection as described by an import document.

    Attributes:
        name: Display name from the document
        cards: Card records, unmodified from the source
        source_id: The collection's id in the exporting account, if known
    """

    name: str
    cards: tuple[Record, ...] = ()
    source_id: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizedDocument:
    """Canonical, shape-agnostic view of an import document."""

    shape: DocumentShape
    collections: tuple[NormalizedCollection, ...] = ()
    loose_cards: tuple[Record, ...] = ()

    def total_cards(self) -> int:
        """Number of cards across collections and loose cards."""
        return len(self.loose_cards) + sum(len(c.cards) for c in self.collections)

    def all_cards(self) -> list[Record]:
        """Every card in document order, ignoring collection boundaries."""
        cards: list[Record] = []
        for collection in self.collections:
            cards.extend(collection.cards)
        cards.extend(self.loose_cards)
        return cards


@dataclass(frozen=True, slots=True)
class ImportStats:
    """Counters for one import, or one stage of an import."""

    cards_imported: int = 0
    card_errors: int = 0
    sold_imported: int = 0
    sold_errors: int = 0
    sold_skipped: int = 0
    assets_uploaded: int = 0
    asset_errors: int = 0
    profile_imported: bool = False

    def __add__(self, other: "ImportStats") -> "ImportStats":
        if not isinstance(other, ImportStats):
            return NotImplemented
        return ImportStats(
            cards_imported=self.cards_imported + other.cards_imported,
            card_errors=self.card_errors + other.card_errors,
            sold_imported=self.sold_imported + other.sold_imported,
            sold_errors=self.sold_errors + other.sold_errors,
            sold_skipped=self.sold_skipped + other.sold_skipped,
            assets_uploaded=self.assets_uploaded + other.assets_uploaded,
            asset_errors=self.asset_errors + other.asset_errors,
            profile_imported=self.profile_imported or other.profile_imported,
        )


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of writing one record list through the batch writer."""

    count: int = 0
    error_count: int = 0
    batches: int = 0


@dataclass(frozen=True, slots=True)
class Reconciliation:
    """
    Mapping from import collections to destination collections.

    Attributes:
        id_mapping: Source collection id -> destination id
        name_index: Match key of every reconciled name -> destination id
        created: Destination ids created by this reconciliation
        failed: Names whose collection could not be created or matched
    """

    id_mapping: dict[str, str] = field(default_factory=dict)
    name_index: dict[str, str] = field(default_factory=dict)
    created: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ImportResult:
    """
    Summary returned to the caller once per import.

    Attributes:
        stats: Merged counters for every stage
        collection_mapping: Source collection id -> destination id
        name_index: Collection match key -> destination id, covering
            collections that carried no id in the source
    """

    stats: ImportStats
    collection_mapping: dict[str, str] = field(default_factory=dict)
    name_index: dict[str, str] = field(default_factory=dict)

    @property
    def imported_count(self) -> int:
        return self.stats.cards_imported

    @property
    def error_count(self) -> int:
        return self.stats.card_errors

    def message(self) -> str:
        """Human readable summary of the import."""
        stats = self.stats
        parts = [f"Imported {stats.cards_imported} cards"]
        if stats.card_errors:
            parts.append(f"{stats.card_errors} cards failed")
        if stats.sold_imported or stats.sold_errors or stats.sold_skipped:
            parts.append(f"{stats.sold_imported} sold items imported")
            if stats.sold_skipped:
                parts.append(f"{stats.sold_skipped} sold items already present")
            if stats.sold_errors:
                parts.append(f"{stats.sold_errors} sold items failed")
        if stats.assets_uploaded or stats.asset_errors:
            parts.append(f"{stats.assets_uploaded} images uploaded")
            if stats.asset_errors:
                parts.append(f"{stats.asset_errors} images failed")
        if stats.profile_imported:
            parts.append("profile restored")
        return ", ".join(parts) + "."


@dataclass(frozen=True, slots=True)
class ExportBundle:
    """A finished backup archive ready for download."""

    filename: str
    content: bytes
    collection_count: int = 0
    card_count: int = 0
    sold_item_count: int = 0
    image_count: int = 0

    def message(self) -> str:
        """Human readable summary of the export."""
        return (
            f"Exported {self.card_count} cards across {self.collection_count} collections, "
            f"{self.sold_item_count} sold items and {self.image_count} images."
        )
