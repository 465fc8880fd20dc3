"""Interfaces and helpers for the remote collaborators of the cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Protocol

from photocache.models import LocationKey


class LocatorFetcher(Protocol):
    """Anything that can list photo locators for a location."""

    def fetch_locators(self, location_key: LocationKey) -> List[str]:
        """Return locators in server order, raising FetchError on failure."""
        ...


class PayloadDownloader(Protocol):
    """Anything that can download the bytes behind a locator."""

    def download(self, locator: str) -> bytes:
        """Return the raw payload, raising ResolveError on failure."""
        ...


@dataclass
class CallableLocatorFetcher(LocatorFetcher):
    """Adapter that wraps a plain function as a LocatorFetcher."""

    fetch: Callable[[LocationKey], List[str]]

    def fetch_locators(self, location_key: LocationKey) -> List[str]:
        return list(self.fetch(location_key))


@dataclass
class CallablePayloadDownloader(PayloadDownloader):
    """Adapter that wraps a plain function as a PayloadDownloader."""

    fetch: Callable[[str], bytes]

    def download(self, locator: str) -> bytes:
        return self.fetch(locator)
