"""Configuration models for oci-retag.

Settings come from three layers, highest precedence first:

1. Environment variables prefixed with ``RETAG_`` (nested fields use ``__``,
   e.g. ``RETAG_RETRY__MAX_ATTEMPTS=5``)
2. An optional YAML file passed with ``--config``
3. Defaults declared on the models

Example:
    >>> settings = get_settings()
    >>> settings.retry.max_attempts
    4
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from oci_retag.errors import RetagError


class RetryConfig(BaseModel):
    """Retry policy configuration for transient registry failures.

    Uses exponential backoff with optional jitter. Only the shape of the
    policy is guaranteed (bounded attempts, non-decreasing delays); the
    numbers are tunable.

    Examples:
        >>> config = RetryConfig(max_attempts=5, initial_delay_ms=200)
        >>> config.max_delay_ms
        8000
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(
        default=4,
        ge=1,
        le=10,
        description="Maximum number of attempts per registry call (including the first)",
    )
    initial_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry in milliseconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=5.0,
        description="Multiplier applied to the delay after each attempt",
    )
    max_delay_ms: int = Field(
        default=8000,
        ge=0,
        description="Maximum delay cap in milliseconds",
    )
    jitter: bool = Field(
        default=True,
        description="Add random jitter to delays to spread out concurrent retries",
    )


class RetagSettings(BaseSettings):
    """Runtime settings for a retag invocation.

    Environment Variables:
        RETAG_TIMEOUT_SECONDS: Per-request timeout
        RETAG_INSECURE_REGISTRIES: JSON list of hosts reached over plain HTTP
        RETAG_PLATFORM: Platform used to read timestamps from image indexes
        RETAG_LOG_LEVEL: Minimum log level written to stderr
        RETAG_LOG_FORMAT: ``console`` or ``json``
        RETAG_RETRY__*: Fields of RetryConfig
    """

    model_config = SettingsConfigDict(
        env_prefix="RETAG_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy for registry calls",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for each registry request in seconds",
    )
    insecure_registries: list[str] = Field(
        default_factory=list,
        description="Registry hosts reached over plain HTTP",
    )
    platform: str = Field(
        default="linux/amd64",
        pattern=r"^[a-z0-9]+/[a-z0-9_]+(/[a-z0-9]+)?$",
        description="os/arch[/variant] used to pick a child manifest from an index",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum log level",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        description="Log renderer",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        if isinstance(v, str):
            return v.upper()
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Let environment variables override values loaded from YAML."""
        return env_settings, init_settings


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load configuration values from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary of configuration values, or empty dict for an empty file.

    Raises:
        RetagError: If the file is missing, unreadable or not a mapping.
    """
    if not config_path.exists():
        raise RetagError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RetagError(f"Failed to parse config YAML {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RetagError(f"Config file {config_path} must contain a mapping")
    return data


def get_settings(config_path: Path | None = None, **overrides: Any) -> RetagSettings:
    """Build settings from YAML, environment and explicit overrides.

    Args:
        config_path: Optional YAML file.
        **overrides: Values that win over both YAML and environment
            (used for CLI flags). ``None`` values are ignored.

    Returns:
        Validated RetagSettings.

    Raises:
        RetagError: If the YAML file cannot be loaded or settings are invalid.
    """
    data = load_yaml_config(config_path) if config_path is not None else {}

    try:
        settings = RetagSettings(**data)
        explicit = {k: v for k, v in overrides.items() if v is not None}
        if explicit:
            settings = RetagSettings.model_validate({**settings.model_dump(), **explicit})
    except ValueError as e:
        raise RetagError(f"Invalid configuration: {e}") from e

    return settings


__all__ = [
    "RetagSettings",
    "RetryConfig",
    "get_settings",
    "load_yaml_config",
]
