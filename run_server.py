import os

import uvicorn

from photocache.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


def maybe_warn_missing_api_key() -> None:
    """
    Warn early when no Flickr key is configured. Controlled by:
    - PHOTOCACHE_FLICKR_API_KEY to provide the key.
    - PHOTOCACHE_SKIP_KEY_CHECK=true to silence the warning (useful in dev/tests).
    """
    if os.getenv("PHOTOCACHE_SKIP_KEY_CHECK", "false").lower() in ("1", "true", "yes"):
        logger.info("Skipping Flickr key check (PHOTOCACHE_SKIP_KEY_CHECK=true)")
        return
    if not settings.flickr_api_key:
        logger.warning("PHOTOCACHE_FLICKR_API_KEY is not set; photo searches will fail with a Flickr error.")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="photocache")
    maybe_warn_missing_api_key()

    uvicorn.run(
        "photocache.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
