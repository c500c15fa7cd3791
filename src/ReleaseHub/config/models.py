"""
Pydantic v2 Configuration Models for ReleaseHub

Provides strict, typed configuration for every ReleaseHub subsystem:
- HTTP server surface (bind address, public base URL, API prefix)
- Signing salt and token-gated path prefixes
- Sync scheduling (interval, page size, page budget, sources)
- Upstream clients (CircleCI, Buildkite, Bintray) and shared HTTP settings
- Entity store backend
- Installer manifest metadata
- Logging

All models use extra="forbid" for strict validation. Environment variables
and CLI overrides follow: file < env < CLI precedence (see ``loader``).
"""

from __future__ import annotations

import hashlib
import json
from typing import ClassVar, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# Server & Auth
# ============================================================================


class ServerConfig(BaseModel):
    """Configuration for the inbound HTTP surface."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8000, description="Bind port")
    base_url: Optional[str] = Field(
        default=None,
        description="Public base URL; derived from request headers when unset",
    )
    api_prefix: str = Field(default="/api", description="Prefix of the query/artifact routes")

    @field_validator("api_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v and not v.startswith("/"):
            raise ValueError("api_prefix must start with '/'")
        return v.rstrip("/")

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v


class AuthConfig(BaseModel):
    """Configuration for the signed-token authority."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    salt: Optional[str] = Field(
        default=None,
        description="Secret salt; a random one is generated per process when unset",
    )
    token_path_prefixes: List[str] = Field(
        default_factory=lambda: [
            "/auth/ipa/build",
            "/auth/apk/build",
            "/auth/dmg/build",
            "/auth/itms/release",
        ],
        description="Path prefixes whose next segment must be a valid path token",
    )

    @field_validator("token_path_prefixes")
    @classmethod
    def validate_prefixes(cls, v: List[str]) -> List[str]:
        for prefix in v:
            if not prefix.startswith("/"):
                raise ValueError(f"token path prefix must start with '/': {prefix!r}")
        return [prefix.rstrip("/") for prefix in v]


# ============================================================================
# Sync & Query
# ============================================================================


SourceName = Literal["circleci", "buildkite"]


class SyncConfig(BaseModel):
    """Configuration for the background sync engine."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Run the background scheduler")
    interval_s: float = Field(default=10.0, description="Pause between sync cycles")
    page_size: int = Field(default=100, description="Records per upstream page")
    max_pages: int = Field(default=20, description="Page budget of a cold (full) fetch")
    sources: List[SourceName] = Field(
        default_factory=list, description="Upstream build sources to poll"
    )

    @field_validator("interval_s")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_s must be > 0")
        return v

    @field_validator("page_size", "max_pages")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be > 0")
        return v


class QueryConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    max_results: int = Field(default=300, description="Upper bound of a build listing")

    @field_validator("max_results")
    @classmethod
    def validate_max_results(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_results must be > 0")
        return v


# ============================================================================
# Upstream clients
# ============================================================================


class HttpConfig(BaseModel):
    """Shared HTTP client behaviour for upstream calls."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(default="ReleaseHub/0.1", description="User-Agent string")
    timeout_connect_s: float = Field(default=10.0, description="Connection timeout in seconds")
    timeout_read_s: float = Field(default=60.0, description="Read timeout in seconds")
    max_attempts: int = Field(default=3, description="Attempts per upstream listing call")
    backoff_base_s: float = Field(default=0.5, description="Exponential backoff multiplier")
    backoff_max_s: float = Field(default=8.0, description="Maximum backoff between attempts")
    retry_statuses: List[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="HTTP status codes that trigger retry",
    )

    @field_validator("timeout_connect_s", "timeout_read_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("backoff_base_s", "backoff_max_s")
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Backoff values must be >= 0")
        return v


class CircleCIConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    token: Optional[str] = Field(default=None, description="CircleCI API token")
    base_url: str = Field(default="https://circleci.com/api/v1.1")


class BuildkiteConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    token: Optional[str] = Field(default=None, description="Buildkite API token")
    organization: Optional[str] = Field(default=None, description="Organization slug")
    base_url: str = Field(default="https://api.buildkite.com")
    fetch_artifacts: bool = Field(
        default=True, description="List artifacts of finished builds while syncing"
    )


class BintrayConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    base_url: str = Field(default="https://dl.bintray.com")


# ============================================================================
# Store, manifest, logging
# ============================================================================


class StoreConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    backend: Literal["memory", "sqlite"] = Field(default="memory")
    path: str = Field(default="releasehub.sqlite3", description="SQLite database path")
    wal_mode: bool = Field(default=True)


class ManifestConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    bundle_id: str = Field(default="tech.berty.ios")
    title: str = Field(default="YOLO")
    version: str = Field(default="v0.0.1")


class LoggingConfig(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: str = Field(default="INFO")
    json_output: bool = Field(default=False, description="Emit JSON on the console")
    log_dir: Optional[str] = Field(default=None, description="Directory of rotating JSONL logs")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Invalid log level: {v}. Must be in {valid}")
        return v.upper()


# ============================================================================
# Top-level
# ============================================================================


class ReleaseHubConfig(BaseModel):
    """Single source of truth for a ReleaseHub process."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    circleci: CircleCIConfig = Field(default_factory=CircleCIConfig)
    buildkite: BuildkiteConfig = Field(default_factory=BuildkiteConfig)
    bintray: BintrayConfig = Field(default_factory=BintrayConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def config_hash(self) -> str:
        """Stable hash of the effective configuration (secrets included)."""
        payload = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def redacted(self) -> dict:
        """Dump suitable for printing: secrets are masked."""
        data = self.model_dump(mode="json")
        for section, key in (("auth", "salt"), ("circleci", "token"), ("buildkite", "token")):
            if data[section].get(key):
                data[section][key] = "***"
        return data
