"""
Blob storage for card images.

A blob store accepts bytes under a logical key and returns a reference to
the stored object. Two backends are provided:

- ``LocalBlobStore``: files under a root directory (development, tests, CLI)
- ``HttpBlobStore``: an object storage service spoken to over HTTP

Keys are slash separated, e.g. ``images/<user_id>/<card_id>``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

import httpx

from cardvault.config import Settings, settings

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Sidecar suffix holding a local blob's content type
_META_SUFFIX = ".meta.json"


class BlobStoreError(Exception):
    """Raised when a blob cannot be stored or retrieved."""


@dataclass(frozen=True, slots=True)
class StoredBlob:
    """A blob read back from storage."""

    key: str
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


class BlobStore(Protocol):
    """Minimal interface the migration engine needs from blob storage."""

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """Store bytes under a key and return a reference to them."""
        ...

    async def get(self, key: str) -> StoredBlob:
        """Read a blob back."""
        ...

    async def list_keys(self, prefix: str) -> list[str]:
        """List keys starting with ``prefix``."""
        ...


def image_key(user_id: str, card_id: str) -> str:
    """Blob key for a card image, namespaced by account."""
    return f"{image_prefix(user_id)}{card_id}"


def image_prefix(user_id: str) -> str:
    """Key prefix holding all of an account's card images."""
    return f"images/{user_id}/"


def _validate_key(key: str) -> PurePosixPath:
    path = PurePosixPath(key)
    if not key or path.is_absolute() or ".." in path.parts:
        raise BlobStoreError(f"Invalid blob key: {key!r}")
    return path


class LocalBlobStore:
    """Stores blobs as files below a root directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*_validate_key(key).parts)

    def _write(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            path.with_name(path.name + _META_SUFFIX).write_text(
                json.dumps({"content_type": content_type})
            )
        except OSError as exc:
            raise BlobStoreError(f"Failed to write blob '{key}': {exc}") from exc
        return path.as_uri()

    def _read(self, key: str) -> StoredBlob:
        path = self._path(key)
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise BlobStoreError(f"Failed to read blob '{key}': {exc}") from exc

        content_type = DEFAULT_CONTENT_TYPE
        meta_path = path.with_name(path.name + _META_SUFFIX)
        if meta_path.exists():
            try:
                content_type = json.loads(meta_path.read_text()).get(
                    "content_type", DEFAULT_CONTENT_TYPE
                )
            except (OSError, json.JSONDecodeError):
                logger.warning("Ignoring unreadable metadata for blob %s", key)
        return StoredBlob(key=key, content=content, content_type=content_type)

    def _list(self, prefix: str) -> list[str]:
        base = self.root.joinpath(*_validate_key(prefix).parts)
        if not base.is_dir():
            return []
        keys = []
        for path in sorted(base.rglob("*")):
            if path.is_file() and not path.name.endswith(_META_SUFFIX):
                keys.append(path.relative_to(self.root).as_posix())
        return keys

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        return await asyncio.to_thread(self._write, key, data, content_type)

    async def get(self, key: str) -> StoredBlob:
        return await asyncio.to_thread(self._read, key)

    async def list_keys(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list, prefix)


class HttpBlobStore:
    """
    Object storage reached over HTTP.

    Expected endpoints, relative to ``base_url``:
        PUT  /objects/{key}          store bytes, responds {"url": ...}
        GET  /objects/{key}          fetch bytes
        GET  /objects?prefix={p}     responds {"keys": [...]}
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"User-Agent": "CardVault/1.0"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client = client

    def _url(self, key: str) -> str:
        _validate_key(key)
        return f"{self.base_url}/objects/{key}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=self._headers, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method, url, headers=self._headers, **kwargs
                    )
        except httpx.RequestError as exc:
            raise BlobStoreError(f"Network error during {method} {url}: {exc}") from exc

        if not response.is_success:
            raise BlobStoreError(
                f"{method} {url} failed: HTTP {response.status_code} - {response.text}"
            )
        return response

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        url = self._url(key)
        response = await self._request(
            "PUT", url, content=data, params={"contentType": content_type}
        )
        try:
            body = response.json()
        except json.JSONDecodeError:
            return url
        if isinstance(body, dict) and body.get("url"):
            return str(body["url"])
        return url

    async def get(self, key: str) -> StoredBlob:
        response = await self._request("GET", self._url(key))
        return StoredBlob(
            key=key,
            content=response.content,
            content_type=response.headers.get("content-type", DEFAULT_CONTENT_TYPE),
        )

    async def list_keys(self, prefix: str) -> list[str]:
        response = await self._request(
            "GET", f"{self.base_url}/objects", params={"prefix": prefix}
        )
        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise BlobStoreError(f"Invalid JSON listing blobs: {response.text}") from exc
        keys = body.get("keys", []) if isinstance(body, dict) else None
        if not isinstance(keys, list):
            raise BlobStoreError(f"Unexpected blob listing: {response.text}")
        return [str(key) for key in keys]


def get_blob_store(config: Settings = settings) -> BlobStore:
    """Build the blob store selected by configuration."""
    if config.blob_backend == "http":
        if not config.blob_base_url:
            raise BlobStoreError("blob_base_url must be set for the http blob backend")
        return HttpBlobStore(config.blob_base_url, token=config.blob_api_token)
    return LocalBlobStore(config.blob_root)
