# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.settings",
#   "purpose": "Pydantic configuration models, YAML loading, and environment overrides",
#   "sections": [
#     {"id": "models", "name": "Configuration models", "anchor": "MOD", "kind": "section"},
#     {"id": "env", "name": "EnvironmentOverrides", "anchor": "class-environmentoverrides", "kind": "class"},
#     {"id": "loading", "name": "load_config", "anchor": "function-load-config", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration for the dataset synchronisation subsystem.

Configuration is resolved in three layers: built-in defaults, an optional YAML
file, and ``SDESYNC_*`` environment variables. The result is a validated
:class:`SyncConfig` which is handed to :func:`~NexusSDE.DatasetSync.context.build_context`
once at startup; nothing in the package reads configuration from module state.

Examples:
    >>> config = get_default_config()
    >>> config.checker.cooldown_seconds
    60.0
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import platformdirs
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError, UserConfigError

__all__ = [
    "APP_NAME",
    "CLIENT_VERSION",
    "RemoteStoreSettings",
    "StorageSettings",
    "CheckerSettings",
    "LoggingConfiguration",
    "SyncConfig",
    "EnvironmentOverrides",
    "get_default_config",
    "build_config",
    "load_raw_yaml",
    "load_config",
]

APP_NAME = "sdesync"

# Version of the client build this package ships with; release records are
# filtered against it.
CLIENT_VERSION = "1.8.1"


def _default_data_root() -> Path:
    return Path(platformdirs.user_data_dir(APP_NAME))


def _normalize_path(value: Any) -> Path:
    if isinstance(value, str):
        return Path(value).expanduser().resolve()
    if isinstance(value, Path):
        return value.expanduser().resolve()
    raise ValueError("path must be string or Path")


class RemoteStoreSettings(BaseModel):
    """Remote record store coordinates and transport behaviour."""

    base_url: str = Field(
        default="https://sde-releases.example.invalid/api/v1",
        description="Base URL of the release record store",
    )
    record_type: str = Field(default="SDE_Record", description="Record type holding releases")
    client_version: str = Field(
        default=CLIENT_VERSION, description="Client version used for release eligibility"
    )
    eligibility: Literal["exact", "at_most"] = Field(
        default="exact",
        description="exact: minimum_app_version must equal client_version; "
        "at_most: minimum_app_version must not exceed client_version",
    )
    api_token: Optional[str] = Field(default=None, description="Bearer token for the store")
    timeout_sec: float = Field(default=30.0, gt=0, description="Per-request timeout")
    download_timeout_sec: float = Field(
        default=300.0, gt=0, description="Read timeout for artifact streams"
    )
    max_attempts: int = Field(default=4, ge=1, le=10, description="Attempts for JSON requests")
    max_retry_delay_sec: float = Field(
        default=30.0, gt=0, description="Overall deadline for retried JSON requests"
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Strip trailing slashes and require an http(s) scheme."""

        stripped = value.strip().rstrip("/")
        if not stripped.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return stripped

    model_config = {"validate_assignment": True, "extra": "forbid"}


class StorageSettings(BaseModel):
    """Filesystem locations for the baseline, local dataset, staging, and state."""

    baseline_root: Path = Field(
        default_factory=lambda: _default_data_root() / "baseline",
        description="Read-only dataset shipped with the application",
    )
    data_root: Path = Field(
        default_factory=_default_data_root,
        description="Writable root holding local, staging, state, and log directories",
    )

    @field_validator("baseline_root", "data_root", mode="before")
    @classmethod
    def normalize_root(cls, v: Any) -> Path:
        """Normalize roots to absolute paths."""
        return _normalize_path(v)

    @property
    def local_root(self) -> Path:
        return self.data_root / "local"

    @property
    def staging_dir(self) -> Path:
        return self.data_root / "staging"

    @property
    def state_dir(self) -> Path:
        return self.data_root / "state"

    @property
    def log_dir(self) -> Path:
        return self.data_root / "logs"

    model_config = {"validate_assignment": True, "extra": "forbid"}


class CheckerSettings(BaseModel):
    """Update check throttling."""

    cooldown_seconds: float = Field(
        default=60.0, ge=0, description="Minimum interval between non-forced checks"
    )
    state_file: str = Field(default="update_check.json", description="Cooldown state filename")

    @field_validator("state_file")
    @classmethod
    def validate_state_file(cls, v: str) -> str:
        if "/" in v or "\\" in v or not v.strip():
            raise ValueError("state_file must be a plain filename")
        return v.strip()

    model_config = {"validate_assignment": True, "extra": "forbid"}


class LoggingConfiguration(BaseModel):
    """Logging-related configuration for dataset synchronisation."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=20, gt=0, description="Maximum size of rotated log files")
    retention_days: int = Field(default=14, ge=1, description="Retention period for log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class SyncConfig(BaseModel):
    """Complete, validated configuration for one process."""

    remote: RemoteStoreSettings = Field(default_factory=RemoteStoreSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    checker: CheckerSettings = Field(default_factory=CheckerSettings)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    def config_hash(self) -> str:
        """Compute a deterministic hash of the configuration for provenance tracking."""

        payload = self.model_dump(mode="json")
        payload["remote"].pop("api_token", None)
        config_str = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(config_str.encode("utf-8")).hexdigest()[:16]

    model_config = {"validate_assignment": True, "extra": "forbid"}


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    base_url: Optional[str] = Field(default=None, alias="SDESYNC_BASE_URL")
    api_token: Optional[str] = Field(default=None, alias="SDESYNC_API_TOKEN")
    eligibility: Optional[str] = Field(default=None, alias="SDESYNC_ELIGIBILITY")
    timeout_sec: Optional[float] = Field(default=None, alias="SDESYNC_TIMEOUT_SEC")
    max_attempts: Optional[int] = Field(default=None, alias="SDESYNC_MAX_ATTEMPTS")
    baseline_root: Optional[Path] = Field(default=None, alias="SDESYNC_BASELINE_ROOT")
    data_root: Optional[Path] = Field(default=None, alias="SDESYNC_DATA_ROOT")
    cooldown_seconds: Optional[float] = Field(default=None, alias="SDESYNC_COOLDOWN_SECONDS")
    log_level: Optional[str] = Field(default=None, alias="SDESYNC_LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_prefix="SDESYNC_", case_sensitive=False, extra="ignore"
    )


_ENV_TARGETS = {
    "base_url": ("remote", "base_url"),
    "api_token": ("remote", "api_token"),
    "eligibility": ("remote", "eligibility"),
    "timeout_sec": ("remote", "timeout_sec"),
    "max_attempts": ("remote", "max_attempts"),
    "baseline_root": ("storage", "baseline_root"),
    "data_root": ("storage", "data_root"),
    "cooldown_seconds": ("checker", "cooldown_seconds"),
    "log_level": ("logging", "level"),
}


def _merge_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Layer ``SDESYNC_*`` environment values over a raw configuration mapping."""

    overrides = EnvironmentOverrides().model_dump(exclude_none=True)
    for key, value in overrides.items():
        section, field = _ENV_TARGETS[key]
        bucket = raw.setdefault(section, {})
        if not isinstance(bucket, dict):
            raise UserConfigError(f"Configuration section '{section}' must be a mapping")
        bucket[field] = value
    return raw


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        lines.append(f"{location}: {error.get('msg')}")
    return "Configuration validation failed:\n- " + "\n- ".join(lines)


def build_config(raw_config: Mapping[str, object]) -> SyncConfig:
    """Validate a raw configuration mapping with environment overrides applied.

    Args:
        raw_config: Mapping parsed from YAML (may be empty).

    Returns:
        Validated :class:`SyncConfig`.

    Raises:
        UserConfigError: If any value fails validation.
    """

    raw = json.loads(json.dumps(dict(raw_config), default=str))
    raw = _merge_env_overrides(raw)
    try:
        return SyncConfig.model_validate(raw)
    except ValidationError as exc:
        raise UserConfigError(_format_validation_error(exc)) from exc


def get_default_config() -> SyncConfig:
    """Return defaults with environment overrides applied."""

    return build_config({})


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Read a YAML configuration file and return its top-level mapping."""

    normalized_path = Path(config_path).expanduser()
    if not normalized_path.exists():
        raise ConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise UserConfigError(
            f"Configuration file '{normalized_path}' contains invalid YAML"
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise UserConfigError("Configuration file must contain a mapping at the root")
    return data


def load_config(config_path: Optional[Path] = None) -> SyncConfig:
    """Load configuration from ``config_path`` (when given) and the environment."""

    if config_path is None:
        return get_default_config()
    return build_config(load_raw_yaml(config_path))
