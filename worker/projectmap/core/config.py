"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PHOTON_URL = "https://photon.komoot.io/api/"
DEFAULT_OVERPASS_URL = "https://overpass-api.de/api/interpreter"


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    photon_url: str = DEFAULT_PHOTON_URL
    overpass_url: str = DEFAULT_OVERPASS_URL
    http_timeout: float = 10.0
    footprint_search_radius_m: int = 100
    notification_ttl_seconds: float = 3.0
    feed_channel: str = "projects_changes"
    default_profit_margin: float = 20.0


def _get_number(name: str, default: str, cast):
    raw = os.getenv(name, default).strip() or default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    photon_url = os.getenv("PHOTON_URL") or DEFAULT_PHOTON_URL
    overpass_url = os.getenv("OVERPASS_URL") or DEFAULT_OVERPASS_URL
    http_timeout = _get_number("HTTP_TIMEOUT", "10", float)
    search_radius = _get_number("FOOTPRINT_SEARCH_RADIUS_M", "100", int)
    notification_ttl = _get_number("NOTIFICATION_TTL_SECONDS", "3", float)
    feed_channel = os.getenv("FEED_CHANNEL") or "projects_changes"
    default_margin = _get_number("DEFAULT_PROFIT_MARGIN", "20", float)

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not feed_channel.isidentifier():
        raise ConfigError(f"FEED_CHANNEL must be a plain identifier, got {feed_channel!r}")

    return Settings(
        database_url=database_url,
        photon_url=photon_url,
        overpass_url=overpass_url,
        http_timeout=http_timeout,
        footprint_search_radius_m=search_radius,
        notification_ttl_seconds=notification_ttl,
        feed_channel=feed_channel,
        default_profit_margin=default_margin,
    )
