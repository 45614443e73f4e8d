"""Tests for configuration loading."""

import pytest
import yaml
from pydantic import ValidationError

from polytracking.config import (
    API_URL_ENV,
    DEFAULT_API_URL,
    WatchlistConfig,
    load_config,
)
from polytracking.session import EnvIdentity


def test_load_config_from_yaml(tmp_path):
    config_data = {
        "backend": {"url": "https://api.example.com", "request_timeout_seconds": 3},
        "poller": {"interval_seconds": 5},
        "sync": {"refresh_after_toggle": True, "default_flags": ["2pct", "whale10k"]},
        "telegram": {"bot_username": "polytracking_bot"},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config_data))

    cfg = load_config(path)
    assert cfg.backend.url == "https://api.example.com"
    assert cfg.backend.request_timeout_seconds == 3
    assert cfg.poller.interval_seconds == 5
    assert cfg.sync.refresh_after_toggle is True
    assert cfg.sync.default_flags == ["2pct", "whale10k"]
    assert cfg.telegram.bot_username == "polytracking_bot"


def test_load_config_defaults(monkeypatch):
    monkeypatch.delenv(API_URL_ENV, raising=False)
    cfg = WatchlistConfig()
    assert cfg.backend.url == DEFAULT_API_URL
    assert cfg.poller.interval_seconds == 15
    assert cfg.sync.default_flags == ["5pct"]
    assert cfg.metrics.enabled is False


def test_backend_url_from_environment(monkeypatch):
    monkeypatch.setenv(API_URL_ENV, "http://localhost:8000")
    assert WatchlistConfig().backend.url == "http://localhost:8000"


def test_user_key_from_configured_environment_variable(monkeypatch):
    cfg = WatchlistConfig.model_validate({"identity": {"user_key_env": "MY_KEY"}})
    identity = EnvIdentity(cfg.identity.user_key_env)
    monkeypatch.delenv("MY_KEY", raising=False)
    assert identity.user_key() is None
    monkeypatch.setenv("MY_KEY", "secret")
    assert identity.user_key() == "secret"


def test_default_flags_must_respect_exclusion_groups():
    with pytest.raises(ValidationError, match="more than one flag enabled"):
        WatchlistConfig.model_validate({"sync": {"default_flags": ["0.5pct", "2pct"]}})
    with pytest.raises(ValidationError):
        WatchlistConfig.model_validate({"sync": {"default_flags": ["whale10k", "whale50k"]}})
    cfg = WatchlistConfig.model_validate({"sync": {"default_flags": ["2pct", "liquidity"]}})
    assert cfg.sync.default_flags == ["2pct", "liquidity"]


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path).poller.enabled is True


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        WatchlistConfig.model_validate({"poller": {"interval_seconds": 0}})
    with pytest.raises(ValidationError):
        WatchlistConfig.model_validate({"sync": {"default_flags": ["10pct"]}})
    with pytest.raises(ValidationError):
        WatchlistConfig.model_validate({"logging": {"format": "xml"}})


def test_load_config_file_not_found():
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/path.yaml")
