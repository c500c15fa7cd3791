"""Configuration models and loading for ReleaseHub."""

from ReleaseHub.config.loader import export_config_schema, load_config, validate_config_file
from ReleaseHub.config.models import (
    AuthConfig,
    BintrayConfig,
    BuildkiteConfig,
    CircleCIConfig,
    HttpConfig,
    LoggingConfig,
    ManifestConfig,
    QueryConfig,
    ReleaseHubConfig,
    ServerConfig,
    StoreConfig,
    SyncConfig,
)

__all__ = [
    "AuthConfig",
    "BintrayConfig",
    "BuildkiteConfig",
    "CircleCIConfig",
    "HttpConfig",
    "LoggingConfig",
    "ManifestConfig",
    "QueryConfig",
    "ReleaseHubConfig",
    "ServerConfig",
    "StoreConfig",
    "SyncConfig",
    "export_config_schema",
    "load_config",
    "validate_config_file",
]
