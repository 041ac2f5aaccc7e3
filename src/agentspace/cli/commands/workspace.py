"""Workspace commands: detect, create, ensure, cleanup, sweep."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import NoReturn

import typer
from rich.markup import escape

from agentspace.core.config import AgentspaceConfig
from agentspace.vcs.base import BackendKind
from agentspace.vcs.errors import VcsError
from agentspace.workspace.exceptions import WorkspaceError
from agentspace.workspace.manager import WorkspaceManager
from agentspace.workspace.registry import StaticWorkspaceRegistry

from ..helpers import load_cli_config, parse_repo_spec, repository_from_path
from ..output import console, detection_table, workspace_table


def _manager(config: AgentspaceConfig) -> WorkspaceManager:
    return WorkspaceManager(config.workspace)


def _fail(message: str, error: BaseException) -> NoReturn:
    console.print(f"[red]{message}:[/red] {escape(str(error))}")
    raise typer.Exit(1) from None


def detect(
    paths: list[Path] = typer.Argument(..., help="Repository paths to classify"),
) -> None:
    """Show which isolation strategy each repository would get."""
    config = load_cli_config(console)
    manager = _manager(config)

    async def _detect() -> list[tuple[str, BackendKind | None, str]]:
        rows: list[tuple[str, BackendKind | None, str]] = []
        for path in paths:
            try:
                rows.append((str(path), await manager.detect_backend_kind(path.resolve()), ""))
            except VcsError as e:
                rows.append((str(path), None, str(e)))
        return rows

    rows = asyncio.run(_detect())
    console.print(detection_table(rows))
    if any(kind is None for _, kind, _ in rows):
        raise typer.Exit(1)


def create(
    workspace_dir: Path = typer.Argument(..., help="Workspace container directory"),
    repo: list[str] = typer.Option(
        ...,
        "--repo",
        "-r",
        help="Repository as PATH or PATH@TARGET_BRANCH (repeatable)",
    ),
    branch: str = typer.Option(..., "--branch", "-b", help="Branch for the agent's work"),
) -> None:
    """Isolate every repository under WORKSPACE_DIR, all or nothing."""
    config = load_cli_config(console)
    inputs = [parse_repo_spec(spec) for spec in repo]
    try:
        workspace = asyncio.run(
            _manager(config).create_workspace(workspace_dir.resolve(), inputs, branch)
        )
    except WorkspaceError as e:
        _fail("Workspace creation failed", e)
    console.print(workspace_table(workspace))
    console.print(f"[green]✓[/green] Workspace ready ({len(workspace.handles)} repositories)")


def ensure(
    workspace_dir: Path = typer.Argument(..., help="Workspace container directory"),
    repo: list[Path] = typer.Option(..., "--repo", "-r", help="Repository path (repeatable)"),
    branch: str = typer.Option(..., "--branch", "-b", help="Branch the workspace was created for"),
) -> None:
    """Recreate whatever a restart lost; does nothing when the workspace is intact."""
    config = load_cli_config(console)
    repos = [repository_from_path(p) for p in repo]
    try:
        asyncio.run(_manager(config).ensure_workspace_exists(workspace_dir.resolve(), repos, branch))
    except WorkspaceError as e:
        _fail("Workspace reconciliation failed", e)
    console.print(f"[green]✓[/green] Workspace present at {workspace_dir}")


def cleanup(
    workspace_dir: Path = typer.Argument(..., help="Workspace container directory"),
    repo: list[Path] = typer.Option(..., "--repo", "-r", help="Repository path (repeatable)"),
) -> None:
    """Release every repository's isolation and remove the container."""
    config = load_cli_config(console)
    repos = [repository_from_path(p) for p in repo]
    try:
        asyncio.run(_manager(config).cleanup_workspace(workspace_dir.resolve(), repos))
    except WorkspaceError as e:
        _fail("Workspace cleanup incomplete", e)
    console.print(f"[green]✓[/green] Workspace removed: {workspace_dir}")


def sweep(
    registry: Path = typer.Option(
        ...,
        "--registry",
        help="YAML file listing live workspace containers",
        exists=True,
        readable=True,
    ),
) -> None:
    """Remove workspace containers that no live session references."""
    config = load_cli_config(console)
    try:
        live = StaticWorkspaceRegistry.from_yaml(registry)
    except Exception as e:
        _fail("Cannot load registry", e)
    asyncio.run(_manager(config).cleanup_orphan_workspaces(live))
    console.print(
        f"[green]✓[/green] Orphan sweep finished under {config.workspace.base_dir}"
    )
