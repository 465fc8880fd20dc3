"""HTTP API exposing the photo cache for map pins."""

import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import (
    CacheError,
    CollectionClearedError,
    DecodeError,
    EntryNotFoundError,
    NetworkError,
    RemoteError,
    StoreError,
    describe_error,
)
from .models import CacheEntry, EntryState, LocationKey
from .resource_cache import ResourceCache
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="app/api")

DEFAULT_MEDIA_TYPE = "image/jpeg"
NO_PHOTOS_MESSAGE = "No photos found for this location."

router = APIRouter()


class EntryResponse(BaseModel):
    """Serialized cache entry without its payload."""
    id: str
    locator: str
    position: int
    state: EntryState
    latitude: float
    longitude: float


class LocationPhotosResponse(BaseModel):
    """Entries for one location, with a notice when there are none."""
    latitude: float
    longitude: float
    photos: list[EntryResponse]
    message: Optional[str] = None


class LocationRequest(BaseModel):
    """Coordinates of a pin to save."""
    latitude: float
    longitude: float


class LocationResponse(BaseModel):
    latitude: float
    longitude: float


class LocationsResponse(BaseModel):
    """Every saved pin."""
    locations: list[LocationResponse]


class ErrorResponse(BaseModel):
    """Caption/message pair returned for every cache failure."""
    caption: str
    message: str


class PrefetchResponse(BaseModel):
    """Outcome of resolving a pin's pending photos."""
    resolved: list[str]
    failed: dict[str, ErrorResponse]


def get_cache(request: Request) -> ResourceCache:
    """Return the cache attached to the running application."""
    return request.app.state.cache


def status_for_error(exc: CacheError) -> int:
    """Map a cache error to the HTTP status reported to clients."""
    if isinstance(exc, EntryNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, StoreError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(exc, (CollectionClearedError, RemoteError, DecodeError)):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, NetworkError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_cache_error(request: Request, exc: CacheError) -> JSONResponse:
    """Render a CacheError as a caption/message JSON body."""
    caption, message = describe_error(exc)
    code = status_for_error(exc)
    log = logger.error if isinstance(exc, StoreError) else logger.warning
    log(f"{request.method} {request.url.path} failed: {caption}: {message}")
    return JSONResponse(status_code=code, content=ErrorResponse(caption=caption, message=message).model_dump())


def _location(latitude: float, longitude: float) -> LocationKey:
    """Build a LocationKey, rejecting out-of-range coordinates with a 400."""
    try:
        return LocationKey(latitude, longitude)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _entry_response(entry: CacheEntry) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        locator=entry.locator,
        position=entry.position,
        state=entry.state,
        latitude=entry.location_key.latitude,
        longitude=entry.location_key.longitude,
    )


def _photos_response(location_key: LocationKey, entries: list[CacheEntry]) -> LocationPhotosResponse:
    return LocationPhotosResponse(
        latitude=location_key.latitude,
        longitude=location_key.longitude,
        photos=[_entry_response(entry) for entry in entries],
        message=None if entries else NO_PHOTOS_MESSAGE,
    )


def _media_type(locator: str) -> str:
    """Guess the content type from the locator's extension."""
    guessed, _encoding = mimetypes.guess_type(locator)
    return guessed or DEFAULT_MEDIA_TYPE


@router.get("/locations/{latitude}/{longitude}/photos", response_model=LocationPhotosResponse)
async def list_photos(latitude: float, longitude: float, cache: ResourceCache = Depends(get_cache)):
    """Return the photos for a pin, searching Flickr the first time."""
    location_key = _location(latitude, longitude)
    entries = await cache.entries_for(location_key)
    return _photos_response(location_key, entries)


@router.post("/locations/{latitude}/{longitude}/refresh", response_model=LocationPhotosResponse)
async def refresh_photos(latitude: float, longitude: float, cache: ResourceCache = Depends(get_cache)):
    """Replace a pin's photos with a fresh search."""
    location_key = _location(latitude, longitude)
    logger.info(f"Refreshing photos for {location_key}")
    entries = await cache.clear_and_refetch(location_key)
    return _photos_response(location_key, entries)


@router.get("/photos/{entry_id}", response_model=EntryResponse)
async def get_photo(entry_id: str, cache: ResourceCache = Depends(get_cache)):
    """Return metadata for one photo."""
    return _entry_response(cache.get_entry(entry_id))


@router.get("/photos/{entry_id}/image")
async def get_photo_image(entry_id: str, cache: ResourceCache = Depends(get_cache)):
    """Return the image bytes, downloading them on first request."""
    entry = cache.get_entry(entry_id)
    payload = await cache.resolve(entry_id)
    return Response(content=payload, media_type=_media_type(entry.locator))


@router.delete("/photos/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_photo(entry_id: str, cache: ResourceCache = Depends(get_cache)):
    """Delete one photo; deleting an unknown id succeeds."""
    cache.delete_entry(entry_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/locations", response_model=LocationsResponse)
async def list_locations(cache: ResourceCache = Depends(get_cache)):
    """Return every saved pin, including pins without photos."""
    return LocationsResponse(
        locations=[LocationResponse(latitude=key.latitude, longitude=key.longitude) for key in cache.list_locations()]
    )


@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def add_location(body: LocationRequest, response: Response, cache: ResourceCache = Depends(get_cache)):
    """Save a pin without searching for photos; saving it again returns 200."""
    location_key = _location(body.latitude, body.longitude)
    if not cache.add_location(location_key):
        response.status_code = status.HTTP_200_OK
    return LocationResponse(latitude=location_key.latitude, longitude=location_key.longitude)


@router.delete("/locations/{latitude}/{longitude}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(latitude: float, longitude: float, cache: ResourceCache = Depends(get_cache)):
    """Forget a pin and all of its photos."""
    await cache.delete_location(_location(latitude, longitude))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/locations/{latitude}/{longitude}/prefetch", response_model=PrefetchResponse)
async def prefetch_photos(
    latitude: float,
    longitude: float,
    limit: Optional[int] = Query(default=None, ge=1),
    cache: ResourceCache = Depends(get_cache),
):
    """Download a pin's pending photos ahead of display."""
    results = await cache.prefetch(_location(latitude, longitude), limit=limit)
    resolved = []
    failed = {}
    for entry_id, result in results.items():
        if isinstance(result, CacheError):
            caption, message = describe_error(result)
            failed[entry_id] = ErrorResponse(caption=caption, message=message)
        elif isinstance(result, BaseException):
            raise result
        else:
            resolved.append(entry_id)
    return PrefetchResponse(resolved=resolved, failed=failed)
