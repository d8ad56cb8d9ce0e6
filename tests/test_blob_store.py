"""Tests for blob storage backends."""

from pathlib import Path

import httpx
import pytest
import respx

from cardvault.config import Settings
from cardvault.storage.blob import (
    BlobStoreError,
    HttpBlobStore,
    LocalBlobStore,
    get_blob_store,
    image_key,
    image_prefix,
)

BASE_URL = "https://blobs.example.com"


class TestKeys:
    """Tests for key helpers."""

    def test_image_key(self) -> None:
        """Image keys are namespaced by account."""
        assert image_key("u1", "ABC123") == "images/u1/ABC123"
        assert image_key("u1", "ABC123").startswith(image_prefix("u1"))


class TestLocalBlobStore:
    """Tests for the filesystem backend."""

    @pytest.mark.asyncio
    async def test_put_and_get(self, tmp_path: Path) -> None:
        """Stored bytes and content type are read back."""
        store = LocalBlobStore(tmp_path)

        ref = await store.put("images/u1/ABC", b"\xff\xd8data", "image/jpeg")
        blob = await store.get("images/u1/ABC")

        assert ref.startswith("file://")
        assert blob.content == b"\xff\xd8data"
        assert blob.content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_list_keys(self, tmp_path: Path) -> None:
        """Listing returns blob keys only, without metadata sidecars."""
        store = LocalBlobStore(tmp_path)
        await store.put("images/u1/A", b"a", "image/png")
        await store.put("images/u1/B", b"b", "image/png")
        await store.put("images/u2/C", b"c", "image/png")

        assert await store.list_keys("images/u1/") == ["images/u1/A", "images/u1/B"]
        assert await store.list_keys("images/u3/") == []

    @pytest.mark.asyncio
    async def test_missing_blob(self, tmp_path: Path) -> None:
        """Reading an absent key raises BlobStoreError."""
        with pytest.raises(BlobStoreError):
            await LocalBlobStore(tmp_path).get("images/u1/nope")

    @pytest.mark.asyncio
    async def test_rejects_escaping_keys(self, tmp_path: Path) -> None:
        """Keys cannot leave the storage root."""
        store = LocalBlobStore(tmp_path)

        with pytest.raises(BlobStoreError, match="Invalid blob key"):
            await store.put("../outside", b"x")
        with pytest.raises(BlobStoreError, match="Invalid blob key"):
            await store.put("/etc/passwd", b"x")


class TestHttpBlobStore:
    """Tests for the HTTP backend."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_put(self) -> None:
        """Uploads bytes and returns the service URL."""
        route = respx.put(f"{BASE_URL}/objects/images/u1/ABC").mock(
            return_value=httpx.Response(200, json={"url": "https://cdn.example.com/ABC"})
        )

        store = HttpBlobStore(BASE_URL, token="secret")
        ref = await store.put("images/u1/ABC", b"bytes", "image/png")

        assert ref == "https://cdn.example.com/ABC"
        request = route.calls.last.request
        assert request.content == b"bytes"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["contentType"] == "image/png"

    @pytest.mark.asyncio
    @respx.mock
    async def test_put_failure(self) -> None:
        """HTTP errors are reported as BlobStoreError."""
        respx.put(f"{BASE_URL}/objects/images/u1/ABC").mock(
            return_value=httpx.Response(507, text="quota")
        )

        with pytest.raises(BlobStoreError, match="HTTP 507"):
            await HttpBlobStore(BASE_URL).put("images/u1/ABC", b"bytes")

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error(self) -> None:
        """Connection failures are reported as BlobStoreError."""
        respx.get(f"{BASE_URL}/objects/images/u1/ABC").mock(
            side_effect=httpx.ConnectError("refused")
        )

        with pytest.raises(BlobStoreError, match="Network error"):
            await HttpBlobStore(BASE_URL).get("images/u1/ABC")

    @pytest.mark.asyncio
    @respx.mock
    async def test_get(self) -> None:
        """Downloads bytes with their content type."""
        respx.get(f"{BASE_URL}/objects/images/u1/ABC").mock(
            return_value=httpx.Response(
                200, content=b"png", headers={"content-type": "image/png"}
            )
        )

        blob = await HttpBlobStore(BASE_URL).get("images/u1/ABC")

        assert blob.content == b"png"
        assert blob.content_type == "image/png"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_keys(self) -> None:
        """Listing reads the keys array."""
        respx.get(f"{BASE_URL}/objects", params={"prefix": "images/u1/"}).mock(
            return_value=httpx.Response(200, json={"keys": ["images/u1/A", "images/u1/B"]})
        )

        keys = await HttpBlobStore(BASE_URL).list_keys("images/u1/")

        assert keys == ["images/u1/A", "images/u1/B"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_put_non_object_body(self) -> None:
        """A JSON body that is not an object falls back to the request URL."""
        respx.put(f"{BASE_URL}/objects/images/u1/ABC").mock(
            return_value=httpx.Response(200, json=["ok"])
        )

        ref = await HttpBlobStore(BASE_URL).put("images/u1/ABC", b"bytes")

        assert ref == f"{BASE_URL}/objects/images/u1/ABC"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_keys_non_object_body(self) -> None:
        """A listing that is not an object is reported as BlobStoreError."""
        respx.get(f"{BASE_URL}/objects", params={"prefix": "images/u1/"}).mock(
            return_value=httpx.Response(200, json=["images/u1/A"])
        )

        with pytest.raises(BlobStoreError, match="Unexpected blob listing"):
            await HttpBlobStore(BASE_URL).list_keys("images/u1/")


class TestGetBlobStore:
    """Tests for backend selection."""

    def test_local_default(self, tmp_path: Path) -> None:
        """The local backend is used by default."""
        store = get_blob_store(Settings(blob_root=str(tmp_path)))
        assert isinstance(store, LocalBlobStore)

    def test_http_requires_url(self) -> None:
        """The http backend needs a base URL."""
        with pytest.raises(BlobStoreError):
            get_blob_store(Settings(blob_backend="http", blob_base_url=""))

    def test_http(self) -> None:
        """The http backend is built from settings."""
        store = get_blob_store(Settings(blob_backend="http", blob_base_url=BASE_URL))
        assert isinstance(store, HttpBlobStore)
