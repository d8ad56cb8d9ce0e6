from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "CardVault"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/cardvault"

    # Blob storage for card images
    blob_backend: Literal["local", "http"] = "local"
    blob_root: str = "./blobs"
    blob_base_url: str = ""
    blob_api_token: str = ""

    # Batch sizes differ per import path: standalone documents are written
    # in larger batches than archive imports.
    document_batch_size: int = 500
    archive_batch_size: int = 250

    # Retry policy for batch commits (1 disables retries)
    batch_max_attempts: int = 3
    batch_retry_backoff: float = 0.5

    # Maximum simultaneous image uploads during archive import
    asset_upload_concurrency: int = 8

    # Most recent sold items included in an export
    export_sold_items_limit: int = 1000


settings = Settings()


# =============================================================================
# COLLECTION NAMING
# =============================================================================

# Name used when an import has no collection to put cards in
DEFAULT_IMPORT_COLLECTION = "Imported Cards"

# Virtual collections that never receive imported cards directly
SYSTEM_COLLECTION_IDS = frozenset({"all-cards"})
SYSTEM_COLLECTION_NAMES = frozenset({"all cards"})
