"""Helpers for listing photo URLs near a location from the Flickr REST API."""
from __future__ import annotations

from typing import List, Literal, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError

from photocache import config
from photocache.errors import DecodeError, NetworkError, RemoteError
from photocache.models import LocationKey
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="flickr_client")

session = requests.Session()

SEARCH_METHOD = "flickr.photos.search"
# url_n: 320px on the longest side, small enough for a grid cell.
PHOTO_URL_EXTRA = "url_n"


class PhotoItem(BaseModel):
    """A single photo record from a search response."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    title: str = ""
    url_n: Optional[str] = None


class PhotosPage(BaseModel):
    """The page of photos wrapped by a search response."""
    model_config = ConfigDict(extra="ignore")

    page: int
    pages: int
    perpage: int
    total: int
    photo: List[PhotoItem]


class PhotoURLsResponse(BaseModel):
    """Successful ``flickr.photos.search`` response."""
    model_config = ConfigDict(extra="ignore")

    stat: Literal["ok"]
    photos: PhotosPage


class ErrorResponse(BaseModel):
    """Flickr error envelope, e.g. invalid API key or rate limiting."""
    model_config = ConfigDict(extra="ignore")

    stat: Literal["fail"]
    code: int
    message: str


def build_search_params(latitude: float, longitude: float, *, api_key: str, per_page: int) -> dict:
    """Query parameters for a one-page photo search around a point."""
    return {
        "method": SEARCH_METHOD,
        "api_key": api_key,
        "lat": latitude,
        "lon": longitude,
        "page": 1,
        "per_page": per_page,
        "format": "json",
        "nojsoncallback": 1,
        "extras": PHOTO_URL_EXTRA,
    }


def parse_search_response(status_code: int, payload) -> List[str]:
    """Turn a decoded search body into locators, raising typed errors."""
    if isinstance(payload, dict) and payload.get("stat") == "fail":
        try:
            error = ErrorResponse.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(f"Malformed Flickr error response: {exc.error_count()} problem(s)") from exc
        raise RemoteError(error.code, error.message)

    try:
        parsed = PhotoURLsResponse.model_validate(payload)
    except ValidationError as exc:
        if not 200 <= status_code < 300:
            raise NetworkError(f"Flickr returned HTTP {status_code}") from exc
        raise DecodeError(f"Malformed Flickr search response: {exc.error_count()} problem(s)") from exc

    locators = []
    for item in parsed.photos.photo:
        if not item.url_n:
            logger.debug("Skipping photo without a sized URL", extra={"photo_id": item.id})
            continue
        locators.append(item.url_n)
    return locators


def fetch_photo_urls(latitude: float,
                     longitude: float,
                     *,
                     api_key: str,
                     base_url: str,
                     per_page: int = 25,
                     timeout: float = 10.0,
                     ) -> List[str]:
    """Search one page of photos taken near the given coordinates."""
    params = build_search_params(latitude, longitude, api_key=api_key, per_page=per_page)
    try:
        resp = session.get(f"{base_url}/", params=params, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("Flickr search request failed", extra={"error": str(exc)})
        raise NetworkError(f"Could not reach Flickr: {exc}") from exc

    try:
        payload = resp.json()
    except ValueError as exc:
        if not 200 <= resp.status_code < 300:
            raise NetworkError(f"Flickr returned HTTP {resp.status_code}") from exc
        raise DecodeError("Flickr response was not valid JSON") from exc

    return parse_search_response(resp.status_code, payload)


class FlickrLocatorFetcher:
    """LocatorFetcher bound to the configured Flickr credentials."""

    def __init__(self,
                 api_key: str,
                 *,
                 base_url: str = "https://www.flickr.com/services/rest",
                 per_page: int = 25,
                 timeout: float = 10.0,
                 ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: config.Settings | None = None) -> "FlickrLocatorFetcher":
        """Create a fetcher from application settings."""
        settings = settings or config.settings
        if not settings.flickr_api_key:
            logger.warning("No Flickr API key configured; searches will be rejected by Flickr")
        return cls(
            settings.flickr_api_key,
            base_url=settings.flickr_base_url,
            per_page=settings.page_size,
            timeout=settings.request_timeout_seconds,
        )

    def fetch_locators(self, location_key: LocationKey) -> List[str]:
        """Return photo URLs near ``location_key`` in server order."""
        logger.info("Searching Flickr photos", extra={"location": location_key.token})
        locators = fetch_photo_urls(
            location_key.latitude,
            location_key.longitude,
            api_key=self.api_key,
            base_url=self.base_url,
            per_page=self.per_page,
            timeout=self.timeout,
        )
        logger.debug(f"Flickr returned {len(locators)} photo URL(s) for {location_key.token}")
        return locators
