"""
Configuration loading and validation.

Loads client configuration from a YAML file. The user key is resolved from an
environment variable and is never stored in config files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from .flags import DEFAULT_ENABLED, default_flags, require_exclusive

DEFAULT_API_URL = "https://polytracking-backend-tv7j.onrender.com"
API_URL_ENV = "POLYTRACKING_API_URL"


def _default_api_url() -> str:
    return os.environ.get(API_URL_ENV) or DEFAULT_API_URL


class BackendConfig(BaseModel):
    url: str = Field(default_factory=_default_api_url)
    verify_tls: bool = True
    request_timeout_seconds: float = 10.0
    retry_base_seconds: float = 0.5


class IdentityConfig(BaseModel):
    user_key_env: str = "POLYTRACKING_USER_KEY"


class PollerConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = 15.0

    @field_validator("interval_seconds")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval_seconds must be positive")
        return value


class SyncConfig(BaseModel):
    refresh_after_toggle: bool = False
    default_flags: list[str] = Field(default_factory=lambda: list(DEFAULT_ENABLED))
    shutdown_timeout_seconds: float = 15.0

    @field_validator("default_flags")
    @classmethod
    def _known_exclusive_flags(cls, value: list[str]) -> list[str]:
        require_exclusive(default_flags(value))
        return value


class TelegramConfig(BaseModel):
    bot_username: str | None = None


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "text"


class MetricsConfig(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9095


class WatchlistConfig(BaseModel):
    backend: BackendConfig = Field(default_factory=BackendConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def load_config(path: str | Path) -> WatchlistConfig:
    """Load and validate client configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return WatchlistConfig.model_validate(raw)
