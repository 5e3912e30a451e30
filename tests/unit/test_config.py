"""Tests for configuration."""

from speechstats.config import Settings, _env_bool


def test_settings_overrides():
    settings = Settings(timezone="UTC", ranking_cache_size=5, stats_debug_log=True)

    assert settings.timezone == "UTC"
    assert settings.ranking_cache_size == 5
    assert settings.stats_debug_log is True


def test_cache_settings_are_numbers():
    settings = Settings()

    for name in ("entity_cache_size", "group_cache_size", "ranking_cache_size", "global_cache_size", "archived_cache_size"):
        assert isinstance(getattr(settings, name), int)
    for name in ("entity_cache_ttl", "group_cache_ttl", "ranking_cache_ttl", "global_cache_ttl", "archived_cache_ttl"):
        assert isinstance(getattr(settings, name), float)


def test_env_bool(monkeypatch):
    monkeypatch.setenv("SPEECHSTATS_FLAG", "TRUE")
    assert _env_bool("SPEECHSTATS_FLAG", "false") is True

    monkeypatch.setenv("SPEECHSTATS_FLAG", "no")
    assert _env_bool("SPEECHSTATS_FLAG", "true") is False

    monkeypatch.delenv("SPEECHSTATS_FLAG")
    assert _env_bool("SPEECHSTATS_FLAG", "true") is True
