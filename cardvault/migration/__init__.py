"""
CardVault migration engine.

Exports an account to a zip bundle and imports bundles or standalone
JSON documents back into an account.
"""

from cardvault.migration.archive_builder import build_export, bundle_filename, write_bundle
from cardvault.migration.archive_reader import BackupImporter, decode_document, read_bundle
from cardvault.migration.assets import AssetImporter, card_id_from_path, collect_images
from cardvault.migration.batch_writer import BatchWriter, iter_batches
from cardvault.migration.normalizer import (
    detect_shape,
    extract_profile,
    extract_sold_items,
    normalize_document,
)
from cardvault.migration.reconciler import CollectionReconciler, display_name, name_key

__all__ = [
    "AssetImporter",
    "BackupImporter",
    "BatchWriter",
    "CollectionReconciler",
    "build_export",
    "bundle_filename",
    "card_id_from_path",
    "collect_images",
    "decode_document",
    "detect_shape",
    "display_name",
    "extract_profile",
    "extract_sold_items",
    "iter_batches",
    "name_key",
    "normalize_document",
    "read_bundle",
    "write_bundle",
]
