from cardvault.models.failure import (
    ArchiveUnreadableError,
    FailureKind,
    InvalidDocumentError,
    KnownError,
    MigrationError,
    NoCardsFoundError,
    OperationResult,
    UnsupportedFormatError,
)
from cardvault.models.migration import (
    DocumentShape,
    ExportBundle,
    ImportResult,
    ImportStats,
    NormalizedCollection,
    NormalizedDocument,
    Reconciliation,
    Record,
    WriteResult,
)

__all__ = [
    "ArchiveUnreadableError",
    "DocumentShape",
    "ExportBundle",
    "FailureKind",
    "ImportResult",
    "ImportStats",
    "InvalidDocumentError",
    "KnownError",
    "MigrationError",
    "NoCardsFoundError",
    "NormalizedCollection",
    "NormalizedDocument",
    "OperationResult",
    "Reconciliation",
    "Record",
    "UnsupportedFormatError",
    "WriteResult",
]
