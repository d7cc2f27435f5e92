"""
Exception hierarchy for the ingestion and archival pipeline.

Pure-function failures (FormatError) are raised to the immediate caller.
I/O failures from collaborators are raised by the component that talks to
the collaborator and caught, logged and counted by the event dispatcher.
"""


class ArchiverError(Exception):
    """Base class for all pipeline errors."""


class FormatError(ArchiverError):
    """Raised when audio bytes are not an Ogg stream."""


class LookupMiss(ArchiverError):
    """No stored name or directory entry exists. Always has a fallback."""


class PersistenceError(ArchiverError):
    """A write or read against the relational store failed."""


class MediaFetchError(ArchiverError):
    """Media could not be fetched or decrypted from the messaging network."""


class ArchiveError(ArchiverError):
    """Generic object-store upload failure."""


class DuplicateObjectError(ArchiveError):
    """The destination key already exists in the bucket."""

    def __init__(self, bucket: str, key: str):
        super().__init__(f"object {key} already exists in bucket {bucket}")
        self.bucket = bucket
        self.key = key


class OversizeError(ArchiveError):
    """The object exceeds the store's single-request upload limit."""


class BucketMissingError(ArchiveError):
    """The destination bucket does not exist."""
