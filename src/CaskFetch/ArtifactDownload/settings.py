# === NAVMAP v1 ===
# {
#   "module": "CaskFetch.ArtifactDownload.settings",
#   "purpose": "Typed settings for cache, locking, logging, and quarantine with file/env/override precedence",
#   "sections": [
#     {"id": "models", "name": "Settings Models", "anchor": "MOD", "kind": "api"},
#     {"id": "env", "name": "EnvironmentOverrides", "anchor": "ENV", "kind": "api"},
#     {"id": "loader", "name": "load_settings", "anchor": "LOD", "kind": "api"},
#     {"id": "defaults", "name": "Default Settings Cache", "anchor": "DEF", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Settings for the artifact download pipeline.

Settings compose in three levels, lowest precedence first:

1. an optional YAML or JSON file,
2. ``CASKFETCH_*`` environment variables read through ``pydantic-settings``,
3. programmatic overrides passed by the installation workflow.

The cache root is an explicit value threaded into the strategy resolver and
every strategy instance; nothing in the package reads a process-wide cache
path on its own.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

__all__ = [
    "CacheSettings",
    "LockSettings",
    "LoggingSettings",
    "QuarantineSettings",
    "ArtifactDownloadSettings",
    "EnvironmentOverrides",
    "load_settings",
    "get_default_settings",
    "invalidate_default_settings",
]

_LOGGER = logging.getLogger(__name__)


def _default_cache_root() -> Path:
    return Path.home() / ".cache" / "caskfetch" / "downloads"


class CacheSettings(BaseModel):
    """Location of the download cache shared by all strategies."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    root: Path = Field(
        default_factory=_default_cache_root,
        description="Directory holding cached downloads (auto-created on first write)",
    )

    @field_validator("root", mode="before")
    @classmethod
    def normalize_root(cls, v: Any) -> Path:
        """Expand ``~`` and make the cache root absolute."""
        return Path(v).expanduser().resolve()


class LockSettings(BaseModel):
    """Advisory locking and cache-busy retry settings."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    timeout_sec: float = Field(default=30.0, ge=0.0, le=3600.0)
    poll_interval_sec: float = Field(default=0.1, gt=0.0, le=10.0)
    busy_retry_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Fetch attempts made while the cache entry is locked by another writer",
    )
    busy_backoff_base_sec: float = Field(default=0.5, ge=0.0, le=60.0)
    busy_backoff_max_sec: float = Field(default=10.0, ge=0.0, le=600.0)
    use_soft_locks: bool = Field(
        default=False,
        description="Use filelock.SoftFileLock (for filesystems without flock support)",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    emit_json_logs: bool = Field(default=True, description="Write JSON lines to the log directory")
    max_log_size_mb: int = Field(default=50, gt=0)
    retention_days: int = Field(default=30, ge=1)
    log_dir: Optional[Path] = Field(
        default=None,
        description="Directory for JSON log files; defaults to <cache root>/../logs",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper

    def level_int(self) -> int:
        """Convert level string to logging module integer."""
        return getattr(logging, self.level)


class QuarantineSettings(BaseModel):
    """Provenance details attached when marking downloads."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    agent_name: str = Field(default="CaskFetch", min_length=1)


class ArtifactDownloadSettings(BaseModel):
    """Top-level settings for the artifact download pipeline."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="forbid")

    cache: CacheSettings = Field(default_factory=CacheSettings)
    locks: LockSettings = Field(default_factory=LockSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    quarantine: QuarantineSettings = Field(default_factory=QuarantineSettings)

    def resolved_log_dir(self) -> Path:
        """Return the configured log directory, falling back beside the cache root."""
        if self.logging.log_dir is not None:
            return Path(self.logging.log_dir).expanduser()
        return self.cache.root.parent / "logs"


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    cache_dir: Optional[Path] = Field(default=None, alias="CASKFETCH_CACHE_DIR")
    log_level: Optional[str] = Field(default=None, alias="CASKFETCH_LOG_LEVEL")
    log_dir: Optional[Path] = Field(default=None, alias="CASKFETCH_LOG_DIR")
    lock_timeout_sec: Optional[float] = Field(default=None, alias="CASKFETCH_LOCK_TIMEOUT_SEC")
    lock_busy_retries: Optional[int] = Field(default=None, alias="CASKFETCH_LOCK_BUSY_RETRIES")

    model_config = SettingsConfigDict(env_prefix="CASKFETCH_", case_sensitive=False, extra="ignore")

    def as_nested(self) -> Dict[str, Any]:
        """Return overrides shaped like :class:`ArtifactDownloadSettings` input."""

        nested: Dict[str, Any] = {}
        if self.cache_dir is not None:
            nested.setdefault("cache", {})["root"] = self.cache_dir
        if self.log_level is not None:
            nested.setdefault("logging", {})["level"] = self.log_level
        if self.log_dir is not None:
            nested.setdefault("logging", {})["log_dir"] = self.log_dir
        if self.lock_timeout_sec is not None:
            nested.setdefault("locks", {})["timeout_sec"] = self.lock_timeout_sec
        if self.lock_busy_retries is not None:
            nested.setdefault("locks", {})["busy_retry_attempts"] = self.lock_busy_retries
        return nested


# --- Loading ---


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    else:
        raise ConfigError(f"Unsupported config format: {suffix}. Use .yaml or .json")
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return dict(data)


def _deep_merge(base: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(dict(current), value)
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
    use_env: bool = True,
) -> ArtifactDownloadSettings:
    """Compose settings from file, environment, and programmatic overrides.

    Args:
        path: Optional YAML/JSON settings file.
        overrides: Nested mapping applied last (highest precedence).
        use_env: Read ``CASKFETCH_*`` variables when true.

    Returns:
        Validated, frozen :class:`ArtifactDownloadSettings`.

    Raises:
        ConfigError: If the file cannot be parsed or the merged values fail validation.
    """

    data: Dict[str, Any] = {}
    if path is not None:
        data = _read_file(Path(path))
    if use_env:
        data = _deep_merge(data, EnvironmentOverrides().as_nested())
    if overrides:
        data = _deep_merge(data, overrides)
    try:
        settings = ArtifactDownloadSettings.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid artifact download settings: {exc}") from exc
    _LOGGER.debug(
        "settings loaded",
        extra={"stage": "config", "cache_root": str(settings.cache.root)},
    )
    return settings


_DEFAULT_SETTINGS_LOCK = threading.Lock()
_DEFAULT_SETTINGS: Optional[ArtifactDownloadSettings] = None


def get_default_settings() -> ArtifactDownloadSettings:
    """Return settings built from the environment, cached per interpreter."""

    global _DEFAULT_SETTINGS  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        if _DEFAULT_SETTINGS is None:
            _DEFAULT_SETTINGS = load_settings()
        return _DEFAULT_SETTINGS


def invalidate_default_settings() -> None:
    """Invalidate the cached default settings."""

    global _DEFAULT_SETTINGS  # noqa: PLW0603

    with _DEFAULT_SETTINGS_LOCK:
        _DEFAULT_SETTINGS = None
