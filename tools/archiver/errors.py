"""Exception hierarchy shared by the fetcher, the stores and the sync engine."""

from __future__ import annotations


class ArchiverError(Exception):
    """Base class for every failure the archiver reports."""


class FetchError(ArchiverError):
    """Transport failure, non-success status or malformed payload."""

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class AttachmentFetchError(FetchError):
    """Raw attachment bytes could not be fetched."""


class StoreError(ArchiverError):
    pass


class StoreWriteError(StoreError):
    """The storage medium refused a write."""


class StoreReadError(StoreError):
    """A persisted record is missing or cannot be decoded."""


class ProtocolInvariantViolation(ArchiverError):
    """The remote payload broke an assumption the archive depends on."""


class InvalidBoardError(StoreError, ValueError):
    """A board id that cannot name a directory in the archive."""
