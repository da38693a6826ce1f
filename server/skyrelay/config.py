"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: SKYRELAY_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    backend: str = "sqlite"
    db_path: str = "data/skyrelay.db"
    timeout_seconds: float = 5.0


@dataclass
class LimitsConfig:
    default_query_limit: int = 100
    active_window_seconds: float = 120.0


@dataclass
class EventsConfig:
    subscriber_queue_size: int = 1_000
    push_aggregate_on_transmission: bool = False


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    events: EventsConfig = field(default_factory=EventsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "SKYRELAY_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "SKYRELAY_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "SKYRELAY_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "SKYRELAY_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "SKYRELAY_STORAGE_DB_PATH": lambda v: setattr(config.storage, "db_path", v),
        "SKYRELAY_STORAGE_TIMEOUT": lambda v: setattr(config.storage, "timeout_seconds", float(v)),
        "SKYRELAY_LIMITS_DEFAULT_QUERY_LIMIT": lambda v: setattr(config.limits, "default_query_limit", int(v)),
        "SKYRELAY_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "SKYRELAY_EVENTS_QUEUE_SIZE": lambda v: setattr(config.events, "subscriber_queue_size", int(v)),
        "SKYRELAY_EVENTS_PUSH_AGGREGATE": lambda v: setattr(config.events, "push_aggregate_on_transmission", _parse_bool(v)),
        "SKYRELAY_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "SKYRELAY_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
        "SKYRELAY_LOG_FILE": lambda v: setattr(config.logging, "file", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("SKYRELAY_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        sections = {
            "server": config.server,
            "storage": config.storage,
            "limits": config.limits,
            "events": config.events,
            "logging": config.logging,
        }
        for name, section in sections.items():
            for k, v in (raw.get(name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
