"""Remote collaborators: photo search and payload download."""

from .base import CallableLocatorFetcher, CallablePayloadDownloader, LocatorFetcher, PayloadDownloader
from .downloader import HttpPayloadDownloader, download_bytes
from .flickr_client import FlickrLocatorFetcher, fetch_photo_urls

__all__ = [
    "LocatorFetcher",
    "PayloadDownloader",
    "CallableLocatorFetcher",
    "CallablePayloadDownloader",
    "FlickrLocatorFetcher",
    "HttpPayloadDownloader",
    "fetch_photo_urls",
    "download_bytes",
]
