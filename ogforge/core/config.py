"""
Configuration for the OG image service.
Values are read from the environment (and a local .env file when present).
"""
import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """Service settings. Re-reads the environment on every instantiation."""

    def __init__(self):
        self.DEBUG = _env_bool("DEBUG", True)
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = int(os.getenv("PORT", 8001))

        # CORS
        self.CORS_ORIGINS = _env_list("CORS_ORIGINS", ["http://localhost:5173"])
        self.EXTRA_CORS_ORIGINS = _env_list("EXTRA_CORS_ORIGINS", [])

        # Public URL used when building og:image links in page metadata
        self.PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8001").rstrip("/")

        # Cache
        self.OG_CACHE_ENABLED = _env_bool("OG_CACHE_ENABLED", True)
        self.OG_CACHE_CAPACITY = int(os.getenv("OG_CACHE_CAPACITY", 100))
        self.OG_IMAGE_TTL_SECONDS = float(os.getenv("OG_IMAGE_TTL_SECONDS", 3600))
        self.OG_METADATA_TTL_SECONDS = float(os.getenv("OG_METADATA_TTL_SECONDS", 300))
        # Entries unread for this long expire early; 0 disables idle expiry
        self.OG_CACHE_MAX_IDLE_SECONDS = float(os.getenv("OG_CACHE_MAX_IDLE_SECONDS", 1800))

        # Rendering
        self.OG_WORKER_POOL_SIZE = int(os.getenv("OG_WORKER_POOL_SIZE", 4))
        self.OG_RENDER_TIMEOUT_SECONDS = float(os.getenv("OG_RENDER_TIMEOUT_SECONDS", 10))
        self.OG_ENCODER_BACKEND = os.getenv("OG_ENCODER_BACKEND", "pillow").lower()
        self.OG_JPEG_QUALITY = int(os.getenv("OG_JPEG_QUALITY", 90))
        self.OG_TEMPLATES_DIR: Optional[str] = os.getenv("OG_TEMPLATES_DIR") or None

        # Remote logo/background images are only downloaded when enabled
        self.OG_FETCH_REMOTE_ASSETS = _env_bool("OG_FETCH_REMOTE_ASSETS", False)
        self.OG_ASSET_TIMEOUT_SECONDS = float(os.getenv("OG_ASSET_TIMEOUT_SECONDS", 5))

    @property
    def ALL_CORS_ORIGINS(self) -> List[str]:
        origins = list(self.CORS_ORIGINS)
        for origin in self.EXTRA_CORS_ORIGINS:
            if origin not in origins:
                origins.append(origin)
        return origins


settings = Settings()
