"""Configuration for toolsmith.

Values come from environment variables and a local `.env` file (if present).
Tests can bypass the environment by passing values directly, e.g.
`ToolkitConfig(log_level="DEBUG")`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResourceConfig(BaseSettings):
    """Where prompts and workflows are discovered."""

    dir_name: str = Field(
        default=".toolsmith",
        description="Directory name searched under the home directory and project ancestors",
    )
    home_dir: Path | None = Field(
        default=None,
        description="Home directory for the user tier (None = the current user's home)",
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_RESOURCES_",
        env_file=".env",
        extra="ignore",
    )


class RunConfig(BaseSettings):
    """How workflow runs are persisted and driven."""

    state_path: Path = Field(
        default=Path(".toolsmith") / "runs.json",
        description="JSON file where workflow runs are persisted",
    )
    persist: bool = Field(
        default=True,
        description="Persist runs to state_path (False keeps them in memory only)",
    )
    max_steps: int = Field(
        default=1000,
        gt=0,
        description="Upper bound on advance() calls for `flow run`",
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_RUNS_",
        env_file=".env",
        extra="ignore",
    )


class ToolkitConfig(BaseSettings):
    """Main configuration."""

    log_level: str = Field(
        default="WARNING",
        description="Root logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug logging for toolsmith loggers",
    )

    resources: ResourceConfig = Field(
        default_factory=ResourceConfig,
        description="Resource discovery configuration",
    )
    runs: RunConfig = Field(
        default_factory=RunConfig,
        description="Run persistence configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="TOOLSMITH_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        from toolsmith.app.logging import configure_logging

        configure_logging(self.log_level)
        if self.debug:
            logging.getLogger("toolsmith").setLevel(logging.DEBUG)
