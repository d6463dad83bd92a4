import dataclasses
import os

import pytest

from scraper.config import DEFAULT_OUTPUT_ROOT, load_config, validate_config
from scraper.utils import ConfigurationError


def _clear_env(keys):
    for k in keys:
        os.environ.pop(k, None)


_KEYS = [
    "HARVEST_CONCURRENCY",
    "HARVEST_MIN_DELAY_MS",
    "HARVEST_MAX_DELAY_MS",
    "HARVEST_RETRIES",
    "HARVEST_BACKOFF_INITIAL_MS",
    "HARVEST_BACKOFF_GROWTH",
    "HARVEST_BACKOFF_MAX_MS",
    "HARVEST_NAV_TIMEOUT_MS",
    "HARVEST_IDLE_WINDOW_MS",
    "HARVEST_QUIESCENCE_TIMEOUT_MS",
    "HARVEST_CHECKPOINT_EVERY",
    "HARVEST_MAX_LOAD_ATTEMPTS",
    "HARVEST_MIN_CONTENT_CHARS",
    "HARVEST_HEADLESS",
    "HARVEST_OUTPUT_ROOT",
    "HARVEST_LOG_LEVEL",
]


def test_load_config_defaults(monkeypatch):
    _clear_env(_KEYS)
    cfg = load_config()

    assert cfg.concurrency == 2
    assert (cfg.min_delay_ms, cfg.max_delay_ms) == (1200, 2200)
    assert cfg.retries == 3
    assert (cfg.backoff_initial_ms, cfg.backoff_growth, cfg.backoff_max_ms) == (1000, 2.0, 5000)
    assert cfg.navigation_timeout_ms == 30_000
    assert cfg.idle_window_ms == 500
    assert cfg.quiescence_timeout_ms == 30_000
    assert cfg.checkpoint_every == 5
    assert cfg.max_load_attempts == 10
    assert cfg.min_content_chars == 100
    assert cfg.headless is True
    assert cfg.output_root == DEFAULT_OUTPUT_ROOT
    assert cfg.log_level == "INFO"
    assert cfg.delay_range_s == (1.2, 2.2)

    # defaults are valid as-is
    assert validate_config(cfg) is cfg


def test_env_overrides_are_clamped(monkeypatch):
    monkeypatch.setenv("HARVEST_CONCURRENCY", "50")
    monkeypatch.setenv("HARVEST_RETRIES", "-4")
    monkeypatch.setenv("HARVEST_BACKOFF_GROWTH", "0.5")
    monkeypatch.setenv("HARVEST_HEADLESS", "no")
    monkeypatch.setenv("HARVEST_LOG_LEVEL", "debug")
    cfg = load_config()

    assert cfg.concurrency == 10
    assert cfg.retries == 0
    assert cfg.backoff_growth == 1.0
    assert cfg.headless is False
    assert cfg.log_level == "DEBUG"


def test_bad_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("HARVEST_CONCURRENCY", "many")
    monkeypatch.setenv("HARVEST_BACKOFF_GROWTH", "fast")
    cfg = load_config()
    assert cfg.concurrency == 2
    assert cfg.backoff_growth == 2.0


@pytest.mark.parametrize(
    "changes",
    [
        {"concurrency": 0},
        {"concurrency": 11},
        {"min_delay_ms": 3000, "max_delay_ms": 1000},
        {"min_delay_ms": -1},
        {"retries": -1},
        {"backoff_growth": 0.5},
        {"idle_window_ms": 0},
        {"quiescence_timeout_ms": 0},
        {"navigation_timeout_ms": -5},
        {"checkpoint_every": 0},
    ],
)
def test_validate_config_rejects(changes):
    _clear_env(_KEYS)
    cfg = dataclasses.replace(load_config(), **changes)
    with pytest.raises(ConfigurationError):
        validate_config(cfg)
