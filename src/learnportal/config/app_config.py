"""Application configuration loader.

Loads centralized configuration from data/config/portal_config_v1.yaml,
falling back to built-in defaults when the file is missing.

Environment overrides:
- LEARNPORTAL_DATA_DIR: base directory for record tables
- LEARNPORTAL_REMOTE_URL: remote document store (enables replication)

Usage:
    from learnportal.config.app_config import load_app_config

    config = load_app_config()
    cap = config.auth.session_limits["user"]
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/portal_config_v1.yaml")

DATA_DIR_ENV = "LEARNPORTAL_DATA_DIR"
REMOTE_URL_ENV = "LEARNPORTAL_REMOTE_URL"


@dataclass
class DefaultAccount:
    """Baseline account seeded by the consistency checker."""

    username: str
    password: str
    role: str = "user"


@dataclass
class StorageConfig:
    """Where the local record tables live."""

    data_dir: Path = Path("data")
    global_tables: list[str] = field(default_factory=lambda: ["users"])


@dataclass
class AuthConfig:
    """Credential and session policy."""

    static_salt: str = "learning_portal_salt"
    session_retention_days: int = 30
    # None means unlimited
    session_limits: dict[str, int | None] = field(
        default_factory=lambda: {"user": 10, "admin": None}
    )
    min_username_length: int = 3
    min_password_length: int = 4
    default_accounts: list[DefaultAccount] = field(
        default_factory=lambda: [DefaultAccount("admin", "admin", "admin")]
    )


@dataclass
class SyncConfig:
    """Best-effort replication settings."""

    enabled: bool = False
    remote_url: str | None = None
    delay_seconds: float = 0.1
    timeout_seconds: float = 5.0
    reconnect_seconds: float = 30.0


@dataclass
class LoggingConfig:
    """Structured logging settings."""

    level: str = "INFO"
    json: bool = False


@dataclass
class AppConfig:
    """Application-wide configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "storage": {
            "data_dir": "data",
            "global_tables": ["users"],
        },
        "auth": {
            "static_salt": "learning_portal_salt",
            "session_retention_days": 30,
            "session_limits": {"user": 10, "admin": None},
            "min_username_length": 3,
            "min_password_length": 4,
            "default_accounts": [
                {"username": "admin", "password": "admin", "role": "admin"},
            ],
        },
        "sync": {
            "enabled": False,
            "remote_url": None,
            "delay_seconds": 0.1,
            "timeout_seconds": 5.0,
            "reconnect_seconds": 30.0,
        },
        "logging": {
            "level": "INFO",
            "json": False,
        },
    }


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        data_dir=Path(storage_data.get("data_dir", "data")),
        global_tables=list(storage_data.get("global_tables", ["users"])),
    )

    auth_data = data.get("auth", {})
    accounts = [
        DefaultAccount(
            username=a["username"],
            password=a["password"],
            role=a.get("role", "user"),
        )
        for a in auth_data.get("default_accounts", [])
    ]
    auth = AuthConfig(
        static_salt=auth_data.get("static_salt", "learning_portal_salt"),
        session_retention_days=int(auth_data.get("session_retention_days", 30)),
        session_limits=dict(auth_data.get("session_limits", {"user": 10, "admin": None})),
        min_username_length=int(auth_data.get("min_username_length", 3)),
        min_password_length=int(auth_data.get("min_password_length", 4)),
        default_accounts=accounts,
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        enabled=bool(sync_data.get("enabled", False)),
        remote_url=sync_data.get("remote_url"),
        delay_seconds=float(sync_data.get("delay_seconds", 0.1)),
        timeout_seconds=float(sync_data.get("timeout_seconds", 5.0)),
        reconnect_seconds=float(sync_data.get("reconnect_seconds", 30.0)),
    )

    logging_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=str(logging_data.get("level", "INFO")),
        json=bool(logging_data.get("json", False)),
    )

    return AppConfig(storage=storage, auth=auth, sync=sync, logging=logging_config)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides on top of file/default values."""
    data_dir = os.environ.get(DATA_DIR_ENV)
    if data_dir:
        data.setdefault("storage", {})["data_dir"] = data_dir

    remote_url = os.environ.get(REMOTE_URL_ENV)
    if remote_url:
        sync = data.setdefault("sync", {})
        sync["remote_url"] = remote_url
        sync["enabled"] = True

    return data


def load_app_config(force_reload: bool = False, config_file: Path | None = None) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternative YAML file (bypasses the cache).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_file is None:
        return _cached_config

    path = config_file or CONFIG_FILE
    data = _get_defaults()

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        data = _merge(data, loaded)
    else:
        logger.info("using_default_config")

    config = _parse_config(_apply_env_overrides(data))
    if config_file is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
