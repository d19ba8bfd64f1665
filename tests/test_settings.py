import pytest

from listing_deck.errors import ConfigurationError
from listing_deck.settings import Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = get_settings()
    assert settings.monthly_quota == 1000
    assert settings.cache_ttl_hours == 24.0
    assert settings.cache_read_limit == 100
    assert settings.api_key is None
    assert settings.acquire_timeout is None
    assert settings.cache_only is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LISTING_DECK_API_KEY", " secret ")
    monkeypatch.setenv("LISTING_DECK_MONTHLY_QUOTA", "250")
    monkeypatch.setenv("LISTING_DECK_ACQUIRE_TIMEOUT", "2.5")
    monkeypatch.setenv("LISTING_DECK_CACHE_ONLY", "yes")
    reset_settings_cache()
    settings = get_settings()
    assert settings.api_key == "secret"
    assert settings.monthly_quota == 250
    assert settings.acquire_timeout == 2.5
    assert settings.cache_only is True


def test_settings_are_cached(monkeypatch):
    first = get_settings()
    monkeypatch.setenv("LISTING_DECK_FETCH_LIMIT", "5")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().fetch_limit == 5


def test_bad_number_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("LISTING_DECK_MONTHLY_QUOTA", "lots")
    with pytest.raises(ConfigurationError):
        Settings.from_env()


def test_validate_rejects_out_of_range(monkeypatch):
    monkeypatch.setenv("LISTING_DECK_QUOTA_WARN_RATIO", "1.5")
    with pytest.raises(ConfigurationError):
        Settings.from_env()
