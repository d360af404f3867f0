"""Configuration management for snow-plow."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
import os
import shlex

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REGISTRY_FILE = "registry.yaml"


def default_config_dir() -> Path:
    """Return ``$XDG_CONFIG_HOME/snow-plow``, falling back to ``~/.config/snow-plow``."""

    xdg = os.environ.get("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "snow-plow"


class SnowPlowSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    config_dir: Path = Field(default_factory=default_config_dir, validation_alias="SNOW_PLOW_CONFIG")
    nix_path: str | None = Field(default=None, validation_alias="SNOW_PLOW_NIX")
    update_args: str = Field(default="flake update", validation_alias="SNOW_PLOW_UPDATE_ARGS")
    descriptor_name: str = Field(default="flake.nix", validation_alias="SNOW_PLOW_DESCRIPTOR")
    lock_name: str = Field(default="flake.lock", validation_alias="SNOW_PLOW_LOCK")
    jobs: int | None = Field(default=None, validation_alias="SNOW_PLOW_JOBS")
    timeout: float = Field(default=600.0, validation_alias="SNOW_PLOW_TIMEOUT")
    log_level: str = Field(default="WARNING", validation_alias="SNOW_PLOW_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SNOW_PLOW_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("jobs")
    @classmethod
    def _validate_jobs(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("SNOW_PLOW_JOBS must be >= 1")
        return value

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SNOW_PLOW_TIMEOUT must be > 0")
        return value

    @field_validator("descriptor_name", "lock_name")
    @classmethod
    def _validate_file_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized or "/" in normalized:
            raise ValueError("descriptor and lock names must be plain file names")
        return normalized

    @property
    def registry_path(self) -> Path:
        return self.config_dir / REGISTRY_FILE

    @property
    def log_dir(self) -> Path:
        return self.config_dir / "logs"

    @property
    def update_command(self) -> tuple[str, ...]:
        """Arguments passed to the Nix executable for a single project update."""

        return tuple(shlex.split(self.update_args))

    @property
    def effective_jobs(self) -> int:
        return self.jobs or os.cpu_count() or 1


@lru_cache(maxsize=1)
def get_settings() -> SnowPlowSettings:
    """Return cached settings instance."""

    settings = SnowPlowSettings()
    settings.config_dir = settings.config_dir.expanduser().resolve()
    return settings


__all__ = ["REGISTRY_FILE", "SnowPlowSettings", "default_config_dir", "get_settings"]
