"""Configuration management for Reviewgate.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to ReviewgateConfig constructor)
2. Environment variables (REVIEWGATE_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [gate]
    required_stages = ["implementation", "security-review"]

    [review]
    stage_timeout_seconds = 300

    [review.commands]
    "security-review" = "bandit -q -r src"
    "qa-review" = "pytest -q"

Example environment variable override:
    REVIEWGATE_DATABASE__URL="postgresql+asyncpg://prod/reviewgate"
    REVIEWGATE_REVIEW__STAGE_TIMEOUT_SECONDS=120
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from reviewgate.workflow.models import (
    ChangeClassification,
    FindingSeverity,
    StageName,
)


class DatabaseConfig(BaseSettings):
    """Database connection configuration.

    Attributes:
        url: SQLAlchemy async database URL (aiosqlite or asyncpg driver)
        pool_size: Number of connections to maintain in the pool
        max_overflow: Maximum number of connections beyond pool_size
        echo: Enable SQL query logging
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_DATABASE__",
        extra="forbid",
    )

    url: str = Field(
        default="sqlite+aiosqlite:///reviewgate.db",
        description="Async SQLAlchemy connection URL",
    )
    pool_size: int = Field(default=5, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    echo: bool = Field(default=False)


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=50, ge=1, le=1000)
    retention_count: int = Field(default=10, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class GateConfig(BaseSettings):
    """Gate policy configuration.

    Attributes:
        required_stages: Stages every non-exempt change must pass
        exempt_classifications: Classifications that skip the full workflow
        exempt_stages: Stages still required for exempt classifications
        blocking_severities: Finding severities that block regardless of outcome
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_GATE__",
        extra="forbid",
    )

    required_stages: list[StageName] = Field(default_factory=lambda: list(StageName))
    exempt_classifications: list[ChangeClassification] = Field(
        default_factory=lambda: [ChangeClassification.TRIVIAL_FIX]
    )
    exempt_stages: list[StageName] = Field(
        default_factory=lambda: [StageName.IMPLEMENTATION]
    )
    blocking_severities: list[FindingSeverity] = Field(
        default_factory=lambda: [FindingSeverity.CRITICAL, FindingSeverity.HIGH]
    )

    @field_validator("required_stages")
    @classmethod
    def validate_required_stages(cls, v: list[StageName]) -> list[StageName]:
        """Validate the required stage list is non-empty and duplicate-free."""
        if not v:
            raise ValueError("required_stages must name at least one stage")
        if len(set(v)) != len(v):
            raise ValueError("required_stages must not contain duplicates")
        return v


class ReviewConfig(BaseSettings):
    """Review execution configuration.

    Attributes:
        stage_timeout_seconds: Per-stage time limit before a reviewer is
            marked blocked
        max_revisions: Revise-and-resubmit rounds allowed before escalation
        commands: Shell command per review stage for command reviewers
        command_failure_severity: Severity of the finding a failing command
            produces
        working_directory: Directory review commands run in (None for cwd)
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_REVIEW__",
        extra="forbid",
    )

    stage_timeout_seconds: float = Field(default=900.0, gt=0, le=86400)
    max_revisions: int = Field(default=5, ge=1, le=100)
    commands: dict[StageName, str] = Field(default_factory=dict)
    command_failure_severity: FindingSeverity = Field(default=FindingSeverity.HIGH)
    working_directory: Path | None = Field(default=None)


class WebConfig(BaseSettings):
    """HTTP API configuration.

    Attributes:
        host: Bind host address
        port: Bind port number
        cors_origins: Allowed CORS origins
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_WEB__",
        extra="forbid",
    )

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


# TOML data for the ReviewgateConfig being built by load_config
_toml_data: ContextVar[dict[str, Any] | None] = ContextVar("reviewgate_toml_data", default=None)


class TomlDataSettingsSource(PydanticBaseSettingsSource):
    """Settings source serving configuration parsed from a TOML file.

    It is placed below the environment source, so REVIEWGATE_* variables
    override values from the file key by key.
    """

    def __init__(self, settings_cls: type[BaseSettings], data: dict[str, Any]) -> None:
        super().__init__(settings_cls)
        self.data = data

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self.data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return dict(self.data)


class ReviewgateConfig(BaseSettings):
    """Root configuration for Reviewgate.

    Aggregates all subsystem configurations. Configuration can be loaded from:
    1. TOML files (using load_config function)
    2. Environment variables (REVIEWGATE_* prefix)
    3. Direct instantiation with keyword arguments

    Environment variable format for nested config:
        REVIEWGATE_<SECTION>__<KEY>=value
    """

    model_config = SettingsConfigDict(
        env_prefix="REVIEWGATE_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Order sources as keyword arguments, environment, TOML file."""
        return (
            init_settings,
            env_settings,
            TomlDataSettingsSource(settings_cls, _toml_data.get() or {}),
            dotenv_settings,
            file_secret_settings,
        )


def load_config(config_path: Path | None = None) -> ReviewgateConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./reviewgate.toml (current directory)
    3. ~/.config/reviewgate/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        ReviewgateConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path = config_path
    else:
        search_paths = [
            Path.cwd() / "reviewgate.toml",
            Path.home() / ".config" / "reviewgate" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    token = _toml_data.set(toml_data)
    try:
        return ReviewgateConfig()
    except Exception as e:
        if selected_path:
            raise ValueError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        else:
            raise ValueError(f"Invalid configuration: {e}") from e
    finally:
        _toml_data.reset(token)
