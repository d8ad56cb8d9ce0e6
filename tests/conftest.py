import io
import json
import zipfile
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardvault.models.db import Base
from cardvault.storage.blob import DEFAULT_CONTENT_TYPE, BlobStoreError, StoredBlob


class MemoryBlobStore:
    """
    In-memory blob store for tests.

    Keys listed in ``failing_keys`` raise BlobStoreError on put.
    """

    def __init__(self, failing_keys: set[str] | None = None):
        self.blobs: dict[str, StoredBlob] = {}
        self.failing_keys = failing_keys or set()
        self.put_calls: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        self.put_calls.append(key)
        if key in self.failing_keys:
            raise BlobStoreError(f"upload rejected for {key}")
        self.blobs[key] = StoredBlob(key=key, content=data, content_type=content_type)
        return f"memory://{key}"

    async def get(self, key: str) -> StoredBlob:
        if key not in self.blobs:
            raise BlobStoreError(f"missing blob {key}")
        return self.blobs[key]

    async def list_keys(self, prefix: str) -> list[str]:
        return sorted(key for key in self.blobs if key.startswith(prefix))


def make_zip(files: dict[str, Any]) -> bytes:
    """Build a zip in memory. Non-bytes values are written as JSON."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, value in files.items():
            if isinstance(value, bytes):
                zf.writestr(name, value)
            elif isinstance(value, str):
                zf.writestr(name, value)
            else:
                zf.writestr(name, json.dumps(value))
    return buffer.getvalue()


def read_zip(content: bytes) -> dict[str, bytes]:
    """Read every member of a zip into a dict."""
    with zipfile.ZipFile(io.BytesIO(content)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


@pytest.fixture
async def async_engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def sample_cards() -> list[dict[str, Any]]:
    """Cards as they appear in a backup document."""
    return [
        {"id": "c1", "name": "Charizard", "slabSerial": "1001", "investmentAUD": 250},
        {"id": "c2", "name": "Blastoise", "slabSerial": "1002", "investmentAUD": 120},
        {"id": "c3", "name": "Venusaur", "slabSerial": "1003", "investmentAUD": 90},
    ]


@pytest.fixture
def blob_store_factory() -> type[MemoryBlobStore]:
    """Build blob stores with failing keys."""
    return MemoryBlobStore


@pytest.fixture
def make_bundle():
    return make_zip


@pytest.fixture
def open_bundle():
    return read_zip
