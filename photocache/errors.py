"""Typed failures raised by the fetcher, downloader, stores and cache.

Every error carries a short ``caption`` and a human readable ``message`` so
callers can present any failure the same way.
"""

from __future__ import annotations

from typing import Tuple


class CacheError(Exception):
    """Base class for every failure surfaced by photocache."""

    caption = "Error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.caption

    def __str__(self) -> str:
        return self.message


class FetchError(CacheError):
    """Listing locators for a location failed."""

    caption = "Photo search failed"


class ResolveError(CacheError):
    """Downloading the payload of an entry failed."""

    caption = "Photo download failed"


class NetworkError(FetchError, ResolveError):
    """Transport-level failure: no usable response arrived."""

    caption = "Network error"


class DecodeError(FetchError, ResolveError):
    """A response arrived but did not match the expected shape."""

    caption = "Unexpected response"


class RemoteError(FetchError):
    """The photo service answered with a well-formed error."""

    caption = "Photo service error"

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"{self.message} (code {self.code})"


class StoreError(CacheError):
    """The persistent store failed to read or write."""

    caption = "Storage error"


class EntryNotFoundError(CacheError):
    """No entry exists for the requested id."""

    caption = "Photo not found"

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"No photo with id {entry_id}")
        self.entry_id = entry_id


class CollectionClearedError(FetchError):
    """Entries were deleted for a refresh and the refetch then failed."""

    caption = "Collection cleared"

    def __init__(self, cause: FetchError) -> None:
        super().__init__(f"collection cleared; refetch failed, try again: {cause}")
        self.cause = cause


def describe_error(exc: BaseException) -> Tuple[str, str]:
    """Return a ``(caption, message)`` pair suitable for showing to a user."""
    if isinstance(exc, CacheError):
        return exc.caption, str(exc)
    return "Error", str(exc) or exc.__class__.__name__
