"""Configuration package for the learning portal engine."""

from learnportal.config.app_config import (
    AppConfig,
    AuthConfig,
    DefaultAccount,
    LoggingConfig,
    StorageConfig,
    SyncConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "AuthConfig",
    "DefaultAccount",
    "LoggingConfig",
    "StorageConfig",
    "SyncConfig",
    "clear_config_cache",
    "load_app_config",
]
