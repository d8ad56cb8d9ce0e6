"""Tests for backup export."""

import json
from datetime import UTC, date, datetime
from typing import Any

import pytest

from cardvault.config import Settings
from cardvault.db.operations import (
    add_cards,
    add_sold_items,
    create_collection,
    get_collections,
    replace_profile,
    update_collection_card_count,
)
from cardvault.migration.archive_builder import build_export, bundle_filename
from cardvault.migration.archive_reader import BackupImporter

EXPORT_TIME = datetime(2024, 5, 17, 9, 30, tzinfo=UTC)


@pytest.fixture
async def populated_account(session, blob_store, sample_cards: list[dict[str, Any]]) -> str:
    """An account with two collections, sold items, a profile and images."""
    vintage = await create_collection(session, "u1", "Vintage")
    modern = await create_collection(session, "u1", "Modern")
    await add_cards(session, "u1", vintage.id, sample_cards[:2])
    await add_cards(
        session, "u1", modern.id, [{**sample_cards[2], "_syncStatus": "pending"}]
    )
    await add_sold_items(
        session,
        "u1",
        [
            {"slabSerial": "9001", "soldDate": "2024-01-01", "_localId": "tmp-1"},
            {"slabSerial": "9002", "soldDate": "2024-02-01"},
        ],
    )
    await replace_profile(session, "u1", {"displayName": "Ash", "_lastUpdateTime": 123})
    await update_collection_card_count(session, "u1", vintage.id)
    await update_collection_card_count(session, "u1", modern.id)
    await session.commit()

    await blob_store.put("images/u1/CARD1", b"\xff\xd8jpeg", "image/jpeg")
    await blob_store.put("images/u1/CARD2", b"\x89PNG", "image/png")
    return "u1"


class TestBundleFilename:
    """Tests for the download name."""

    def test_dated(self) -> None:
        """The name carries the export date."""
        assert bundle_filename(date(2024, 5, 17)) == "cardvault-backup-2024-05-17.zip"


class TestBuildExport:
    """Tests for building the export bundle."""

    @pytest.mark.asyncio
    async def test_layout(self, session, blob_store, populated_account, open_bundle) -> None:
        """The bundle holds the readme, documents and images."""
        bundle = await build_export(session, populated_account, blob_store, now=EXPORT_TIME)
        files = open_bundle(bundle.content)

        assert set(files) == {
            "README.txt",
            "data/collections.json",
            "data/profile.json",
            "data/soldCards.json",
            "images/CARD1.jpg",
            "images/CARD2.png",
        }
        assert bundle.filename == "cardvault-backup-2024-05-17.zip"
        assert files["images/CARD1.jpg"] == b"\xff\xd8jpeg"

    @pytest.mark.asyncio
    async def test_collections_document(
        self, session, blob_store, populated_account, open_bundle
    ) -> None:
        """Collections carry their cards and counts."""
        bundle = await build_export(session, populated_account, blob_store, now=EXPORT_TIME)
        document = json.loads(open_bundle(bundle.content)["data/collections.json"])

        assert document["version"] == "3.0"
        assert document["exportDate"] == EXPORT_TIME.isoformat()
        by_name = {c["name"]: c for c in document["collections"]}
        assert by_name["Vintage"]["cardCount"] == 2
        assert sorted(card["name"] for card in by_name["Vintage"]["cards"]) == [
            "Blastoise",
            "Charizard",
        ]
        assert all(
            card["collectionId"] == by_name["Vintage"]["id"]
            for card in by_name["Vintage"]["cards"]
        )
        assert bundle.card_count == 3
        assert bundle.collection_count == 2

    @pytest.mark.asyncio
    async def test_internal_fields_stripped(
        self, session, blob_store, populated_account, open_bundle
    ) -> None:
        """Client bookkeeping fields never leave the account."""
        bundle = await build_export(session, populated_account, blob_store, now=EXPORT_TIME)
        files = open_bundle(bundle.content)

        modern = next(
            c
            for c in json.loads(files["data/collections.json"])["collections"]
            if c["name"] == "Modern"
        )
        assert "_syncStatus" not in modern["cards"][0]
        assert json.loads(files["data/profile.json"]) == {"displayName": "Ash"}
        sold = json.loads(files["data/soldCards.json"])["soldCards"]
        assert all("_localId" not in item for item in sold)

    @pytest.mark.asyncio
    async def test_sold_items_newest_first(
        self, session, blob_store, populated_account, open_bundle
    ) -> None:
        """Sold items are ordered by sale date, newest first."""
        bundle = await build_export(session, populated_account, blob_store, now=EXPORT_TIME)
        sold = json.loads(open_bundle(bundle.content)["data/soldCards.json"])["soldCards"]

        assert [item["slabSerial"] for item in sold] == ["9002", "9001"]
        assert bundle.sold_item_count == 2

    @pytest.mark.asyncio
    async def test_sold_items_limit(
        self, session, blob_store, populated_account, open_bundle
    ) -> None:
        """Only the most recent sold items are exported."""
        bundle = await build_export(
            session,
            populated_account,
            blob_store,
            config=Settings(export_sold_items_limit=1),
            now=EXPORT_TIME,
        )
        sold = json.loads(open_bundle(bundle.content)["data/soldCards.json"])["soldCards"]

        assert [item["slabSerial"] for item in sold] == ["9002"]

    @pytest.mark.asyncio
    async def test_empty_account(self, session, blob_store, open_bundle) -> None:
        """An empty account exports empty documents and no profile."""
        bundle = await build_export(session, "nobody", blob_store, now=EXPORT_TIME)
        files = open_bundle(bundle.content)

        assert "data/profile.json" not in files
        assert json.loads(files["data/collections.json"])["collections"] == []
        assert json.loads(files["data/soldCards.json"]) == {"soldCards": []}
        assert bundle.message() == (
            "Exported 0 cards across 0 collections, 0 sold items and 0 images."
        )


class TestRoundTrip:
    """Tests for exporting and re-importing an account."""

    @pytest.mark.asyncio
    async def test_round_trip_into_empty_account(
        self, session, blob_store, populated_account
    ) -> None:
        """Collections and per-collection card counts survive a round trip."""
        bundle = await build_export(session, populated_account, blob_store, now=EXPORT_TIME)

        importer = BackupImporter(session, "u2", blob_store)
        result = await importer.import_file(bundle.filename, bundle.content)

        source = {c.name: c.card_count for c in await get_collections(session, "u1")}
        restored = {c.name: c.card_count for c in await get_collections(session, "u2")}
        assert restored == source == {"Vintage": 2, "Modern": 1}
        assert result.stats.cards_imported == 3
        assert result.stats.sold_imported == 2
        assert result.stats.assets_uploaded == 2
        assert result.stats.profile_imported
        assert set(await blob_store.list_keys("images/u2/")) == {
            "images/u2/CARD1",
            "images/u2/CARD2",
        }
