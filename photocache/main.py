"""FastAPI application setup for the photo cache service."""

from fastapi import FastAPI

from .api import handle_cache_error, router as api_router
from .config import settings
from .errors import CacheError
from .resource_cache import ResourceCache


def create_app(cache: ResourceCache | None = None) -> FastAPI:
    """Build the application around ``cache`` (default: assembled from settings)."""
    app = FastAPI(title="Photocache")
    app.state.cache = cache if cache is not None else ResourceCache.from_settings(settings)
    app.add_exception_handler(CacheError, handle_cache_error)
    # API routes
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
