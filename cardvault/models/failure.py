"""
Operation outcome envelope and failure classification.

Every export or import ends in a single ``OperationResult``: a success
flag plus a human readable message. Only fatal failures produce
``success=False``; recovered per-collection, per-batch and per-asset
errors are reported through counts in the message instead.

Fatal conditions are raised as ``MigrationError`` subclasses so the API
and CLI layers can turn them into the envelope without inspecting
exception text.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of fatal migration failures."""

    # Input selection
    UNSUPPORTED_FORMAT = "unsupported_format"

    # Input decoding
    ARCHIVE_UNREADABLE = "archive_unreadable"
    INVALID_DOCUMENT = "invalid_document"

    # Input content
    NO_CARDS_FOUND = "no_cards_found"


class OperationResult(BaseModel):
    """Summary returned once per export or import."""

    success: bool = Field(..., description="False only when a fatal error aborted the operation")
    message: str = Field(..., description="Human readable summary including counts")


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.status_code = status_code
        super().__init__(message)

    def to_result(self) -> OperationResult:
        """Convert to a failed OperationResult."""
        return OperationResult(success=False, message=self.message)


class MigrationError(KnownError):
    """A failure that aborts a whole export or import."""


class UnsupportedFormatError(MigrationError):
    """Raised when the input file extension is not recognised."""

    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(
            kind=FailureKind.UNSUPPORTED_FORMAT,
            message=f"Unsupported file type: {filename!r}. Expected a .json or .zip file.",
        )


class ArchiveUnreadableError(MigrationError):
    """Raised when a bundle cannot be opened at all."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            kind=FailureKind.ARCHIVE_UNREADABLE,
            message="The backup archive could not be opened.",
            detail=detail,
        )


class InvalidDocumentError(MigrationError):
    """Raised when a structured document cannot be decoded."""

    def __init__(self, name: str, detail: str | None = None):
        self.name = name
        super().__init__(
            kind=FailureKind.INVALID_DOCUMENT,
            message=f"{name} is not a valid JSON document.",
            detail=detail,
        )


class NoCardsFoundError(MigrationError):
    """Raised when a document contains no extractable card list."""

    def __init__(self, detail: str | None = None):
        super().__init__(
            kind=FailureKind.NO_CARDS_FOUND,
            message="No cards found in the imported document.",
            detail=detail,
        )
