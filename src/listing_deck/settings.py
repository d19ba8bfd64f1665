from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from listing_deck.errors import ConfigurationError


_PREFIX = "LISTING_DECK_"


def _env(name: str) -> Optional[str]:
    raw = os.getenv(_PREFIX + name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    v = raw.lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{_PREFIX}{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from ``LISTING_DECK_*`` environment variables.

    Defaults match the free tier of the listings API (1000 calls/month) and a
    one-day cache lifetime.
    """

    api_base_url: str = "https://api.hasdata.com"
    api_key: Optional[str] = None
    monthly_quota: int = 1000
    quota_warn_ratio: float = 0.9
    cache_ttl_hours: float = 24.0
    cache_read_limit: int = 100
    fetch_limit: int = 50
    http_timeout: float = 30.0
    min_request_interval: float = 1.0
    db_path: str = "./listing_deck.sqlite"
    geocoder_url: str = "https://nominatim.openstreetmap.org/reverse"
    acquire_timeout: Optional[float] = None
    cache_only: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        settings = cls(
            api_base_url=_env("API_BASE_URL") or defaults.api_base_url,
            api_key=_env("API_KEY"),
            monthly_quota=_env_int("MONTHLY_QUOTA", defaults.monthly_quota),
            quota_warn_ratio=_env_float("QUOTA_WARN_RATIO", defaults.quota_warn_ratio),
            cache_ttl_hours=_env_float("CACHE_TTL_HOURS", defaults.cache_ttl_hours),
            cache_read_limit=_env_int("CACHE_READ_LIMIT", defaults.cache_read_limit),
            fetch_limit=_env_int("FETCH_LIMIT", defaults.fetch_limit),
            http_timeout=_env_float("HTTP_TIMEOUT", defaults.http_timeout),
            min_request_interval=_env_float(
                "MIN_REQUEST_INTERVAL", defaults.min_request_interval
            ),
            db_path=_env("DB_PATH") or defaults.db_path,
            geocoder_url=_env("GEOCODER_URL") or defaults.geocoder_url,
            acquire_timeout=_env_float("ACQUIRE_TIMEOUT", None),
            cache_only=_env_bool("CACHE_ONLY", False),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.monthly_quota <= 0:
            raise ConfigurationError("monthly_quota must be positive")
        if not 0 < self.quota_warn_ratio <= 1:
            raise ConfigurationError("quota_warn_ratio must be in (0, 1]")
        if self.cache_ttl_hours <= 0:
            raise ConfigurationError("cache_ttl_hours must be positive")
        if self.cache_read_limit <= 0 or self.fetch_limit <= 0:
            raise ConfigurationError("read and fetch limits must be positive")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()
