"""Configuration models for agentspace.

Settings are pydantic models loaded from a YAML file. Every field has a
default, so a missing config file yields a fully usable configuration.

Example YAML:
    workspace:
      base_dir: /var/lib/agentspace/worktrees
      disable_orphan_cleanup: false
    auto_merge:
      remote: origin
    logging:
      level: DEBUG
      format: json
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

ORPHAN_CLEANUP_ENV_VAR = "DISABLE_WORKTREE_ORPHAN_CLEANUP"


def _default_base_dir() -> Path:
    return Path(tempfile.gettempdir()) / "agentspace" / "worktrees"


class WorkspaceSettings(BaseModel):
    """Where workspace containers live and how they are reconciled."""

    base_dir: Path = Field(
        default_factory=_default_base_dir,
        description="Directory holding every workspace container. "
        "Each immediate subdirectory is one workspace.",
    )
    disable_orphan_cleanup: bool = Field(
        default=False,
        description="Skip the orphan workspace sweep. The "
        f"{ORPHAN_CLEANUP_ENV_VAR} environment variable has the same effect.",
    )

    @field_validator("base_dir")
    @classmethod
    def _expand_base_dir(cls, v: Path) -> Path:
        return v.expanduser()


class AutoMergeSettings(BaseModel):
    """Settings for folding finished agent work back into target branches."""

    remote: str = Field(
        default="origin",
        min_length=1,
        description="Remote to fetch from and push to",
    )
    favor_incoming: bool = Field(
        default=True,
        description="Resolve rebase hunks in favor of the agent's changes",
    )


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console"] = Field(
        default="console",
        description="Output format: json for structured, console for human-readable",
    )
    file_path: Path | None = Field(
        default=None,
        description="Optional rotating log file",
    )
    max_file_size_mb: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Maximum log file size before rotation (MB)",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        le=100,
        description="Number of rotated log files to keep",
    )
    include_timestamps: bool = Field(
        default=True,
        description="Include ISO8601 UTC timestamps in log entries",
    )
    include_context: bool = Field(
        default=True,
        description="Include session context (session_id, workspace_dir) in log entries",
    )


class AgentspaceConfig(BaseModel):
    """Root configuration."""

    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    auto_merge: AutoMergeSettings = Field(default_factory=AutoMergeSettings)
    logging: LogConfig = Field(default_factory=LogConfig)
    config_file: Path | None = Field(
        default=None,
        description="Resolved path of the file this config was loaded from",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> AgentspaceConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        config = cls.model_validate(data)
        config.config_file = path.resolve()
        return config

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> AgentspaceConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)


def load_config(path: Path | None) -> AgentspaceConfig:
    """Load configuration from ``path``, falling back to defaults when it is absent."""
    if path is None or not path.exists():
        return AgentspaceConfig()
    return AgentspaceConfig.from_yaml(path)


def orphan_cleanup_disabled(settings: WorkspaceSettings) -> bool:
    """Whether the orphan sweep is switched off.

    The environment is read on every call so an operator can flip the flag
    without restarting the process.
    """
    return settings.disable_orphan_cleanup or ORPHAN_CLEANUP_ENV_VAR in os.environ


__all__ = [
    "AgentspaceConfig",
    "AutoMergeSettings",
    "LogConfig",
    "ORPHAN_CLEANUP_ENV_VAR",
    "WorkspaceSettings",
    "load_config",
    "orphan_cleanup_disabled",
]
