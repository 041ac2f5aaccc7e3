"""Shared state and utilities for agentspace CLI commands.

Global options are collected by callbacks into module-level state, then
applied once when a command starts running.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console
from rich.markup import escape

from agentspace.core.config import AgentspaceConfig, load_config
from agentspace.core.logging import configure_logging
from agentspace.workspace.models import Repository, RepoWorkspaceInput

DEFAULT_CONFIG_FILE = Path("agentspace.yaml")


@dataclass
class _GlobalOptions:
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    log_format: Literal["json", "console"] | None = None
    config_file: Path | None = None
    configured: bool = False


_options = _GlobalOptions()


def set_log_level(level: str) -> None:
    _options.log_level = level.upper()  # type: ignore[assignment]


def set_log_format(fmt: str) -> None:
    _options.log_format = fmt.lower()  # type: ignore[assignment]


def set_config_file(path: Path) -> None:
    _options.config_file = path


def reset_cli_state() -> None:
    """Forget global options (primarily for testing)."""
    global _options
    _options = _GlobalOptions()


def load_cli_config(console: Console) -> AgentspaceConfig:
    """Load the config file and configure logging from it and the global options.

    Command-line options win over the file.

    Raises:
        typer.Exit: If the config file cannot be loaded.
    """
    try:
        config = load_config(_options.config_file or DEFAULT_CONFIG_FILE)
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None

    if not _options.configured:
        log = config.logging
        configure_logging(
            level=_options.log_level or log.level,
            format=_options.log_format or log.format,
            file_path=log.file_path,
            max_file_size_mb=log.max_file_size_mb,
            backup_count=log.backup_count,
            include_timestamps=log.include_timestamps,
            include_context=log.include_context,
        )
        _options.configured = True
    return config


def repository_from_path(path: Path, target_branch: str | None = None) -> Repository:
    """Describe a local repository the way the platform would register it."""
    resolved = path.expanduser().resolve()
    return Repository(
        id=resolved.name,
        name=resolved.name,
        path=resolved,
        default_target_branch=target_branch or "main",
    )


def parse_repo_spec(spec: str) -> RepoWorkspaceInput:
    """Parse ``PATH[@TARGET]`` into a workspace input."""
    path_part, sep, target = spec.rpartition("@")
    if not sep or not path_part or not target:
        repo = repository_from_path(Path(spec))
        return RepoWorkspaceInput(repo=repo, target_branch=repo.default_target_branch)
    repo = repository_from_path(Path(path_part), target)
    return RepoWorkspaceInput(repo=repo, target_branch=target)
