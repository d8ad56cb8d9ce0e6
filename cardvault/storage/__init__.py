from cardvault.storage.blob import (
    BlobStore,
    BlobStoreError,
    HttpBlobStore,
    LocalBlobStore,
    StoredBlob,
    get_blob_store,
    image_key,
    image_prefix,
)

__all__ = [
    "BlobStore",
    "BlobStoreError",
    "HttpBlobStore",
    "LocalBlobStore",
    "StoredBlob",
    "get_blob_store",
    "image_key",
    "image_prefix",
]
