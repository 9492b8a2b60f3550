"""Configuration management for relboard."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from relboard.github.client import DEFAULT_TIMEOUT, GITHUB_API_BASE, MAX_RETRIES

HOME_ENV_VAR = "RELBOARD_HOME"


class Config(BaseModel):
    """relboard configuration."""

    api_base_url: str = Field(default=GITHUB_API_BASE, description="GitHub REST API root (override for GitHub Enterprise)")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="HTTP request timeout in seconds")
    max_retries: int = Field(default=MAX_RETRIES, ge=1, description="Attempts per request before giving up")
    state_dir: Path | None = Field(default=None, description="Directory holding state.db (default: the relboard dir)")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="WARNING", description="Log level when --verbose is not given")

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            config_path = get_relboard_dir() / "config.yaml"

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)

    @property
    def db_path(self) -> Path:
        """Location of the SQLite state database."""
        return (self.state_dir or get_relboard_dir()) / "state.db"


def get_relboard_dir() -> Path:
    """Get the relboard directory, creating it if needed.

    Defaults to ``~/.relboard``; ``RELBOARD_HOME`` overrides it.
    """
    override = os.environ.get(HOME_ENV_VAR)
    relboard_dir = Path(override) if override else Path.home() / ".relboard"
    relboard_dir.mkdir(parents=True, exist_ok=True)
    return relboard_dir
