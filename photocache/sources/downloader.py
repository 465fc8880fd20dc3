"""Plain HTTP download of photo bytes."""
from __future__ import annotations

import requests

from photocache import config
from photocache.errors import DecodeError, NetworkError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="downloader")

session = requests.Session()


def download_bytes(locator: str, *, timeout: float = 10.0) -> bytes:
    """GET ``locator`` and return the body, raising typed errors on failure."""
    try:
        resp = session.get(locator, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Photo download failed", extra={"locator": locator, "error": str(exc)})
        raise NetworkError(f"Could not download {locator}: {exc}") from exc

    content = resp.content
    if not content:
        raise DecodeError(f"Empty response body for {locator}")
    return content


class HttpPayloadDownloader:
    """PayloadDownloader using the module-level requests session."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: config.Settings | None = None) -> "HttpPayloadDownloader":
        settings = settings or config.settings
        return cls(timeout=settings.request_timeout_seconds)

    def download(self, locator: str) -> bytes:
        logger.debug(f"Downloading {locator}")
        return download_bytes(locator, timeout=self.timeout)
