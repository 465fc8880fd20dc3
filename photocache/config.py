"""Application configuration pulled from environment variables via pydantic."""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the photocache service."""
    model_config = SettingsConfigDict(env_prefix="PHOTOCACHE_", extra="ignore")

    flickr_api_key: str = ""
    flickr_base_url: str = "https://www.flickr.com/services/rest"
    page_size: int = Field(default=25, ge=1, le=500)
    request_timeout_seconds: float = 10.0
    store_backend: str = "memory"  # options: memory, sql, redis
    store_database_url: str = "sqlite:///./photocache.db"
    store_redis_url: str | None = None
    redis_prefix: str = "photocache:"
    log_level: str = "INFO"

    @field_validator("flickr_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4)}")
