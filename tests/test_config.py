from __future__ import annotations

import importlib

import config


def test_scheduler_max_workers_from_env(monkeypatch):
    monkeypatch.setenv("SCHEDULER_MAX_WORKERS", "8")
    reloaded = importlib.reload(config)
    assert reloaded.Config.SCHEDULER_MAX_WORKERS == 8

    monkeypatch.setenv("SCHEDULER_MAX_WORKERS", "-3")
    reloaded = importlib.reload(config)
    assert reloaded.Config.SCHEDULER_MAX_WORKERS == 4

    monkeypatch.delenv("SCHEDULER_MAX_WORKERS", raising=False)
    reloaded = importlib.reload(config)
    assert reloaded.Config.SCHEDULER_MAX_WORKERS == 4


def test_feed_settings_from_env(monkeypatch):
    monkeypatch.setenv("FEED_BATCH_SIZE", "25")
    monkeypatch.setenv("FEED_FETCH_INTERVAL", "2.5")
    monkeypatch.setenv("FEED_FETCH_TIMEOUT", "nope")
    monkeypatch.setenv("FEED_FETCH_ENABLED", "off")
    try:
        reloaded = importlib.reload(config)
        assert reloaded.Config.FEED_BATCH_SIZE == 25
        assert reloaded.Config.FEED_FETCH_INTERVAL == 2.5
        assert reloaded.Config.FEED_FETCH_TIMEOUT == 10.0
        assert reloaded.Config.FEED_FETCH_ENABLED is False
    finally:
        for name in ("FEED_BATCH_SIZE", "FEED_FETCH_INTERVAL", "FEED_FETCH_TIMEOUT", "FEED_FETCH_ENABLED"):
            monkeypatch.delenv(name, raising=False)
        importlib.reload(config)


def test_bool_env_falls_back_on_unknown_values(monkeypatch):
    monkeypatch.setenv("FEATURE_FLAG", "maybe")

    assert config._get_bool_env("FEATURE_FLAG", True) is True
    assert config._get_bool_env("UNSET_FLAG_FOR_TEST") is False


def test_empty_env_uses_default(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "")

    assert config._get_env("DATABASE_URL", "sqlite:///fallback.db") == "sqlite:///fallback.db"
