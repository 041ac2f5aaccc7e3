"""Rich output for the agentspace CLI."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table

from agentspace.vcs.base import BackendKind
from agentspace.workspace.models import Workspace

console = Console()

KIND_COLORS: dict[BackendKind, str] = {
    BackendKind.DIRECTORY_ISOLATION: "cyan",
    BackendKind.CHANGE_ISOLATION: "magenta",
}


def detection_table(rows: Sequence[tuple[str, BackendKind | None, str]]) -> Table:
    """Table of (path, kind, note) rows from backend detection."""
    table = Table(title="Repositories")
    table.add_column("Path", style="bold")
    table.add_column("Backend")
    table.add_column("Note", style="dim")
    for path, kind, note in rows:
        if kind is None:
            table.add_row(path, "[red]unknown[/red]", note)
        else:
            table.add_row(path, f"[{KIND_COLORS[kind]}]{kind.value}[/]", note)
    return table


def workspace_table(workspace: Workspace) -> Table:
    table = Table(title=str(workspace.workspace_dir))
    table.add_column("Repo", style="bold")
    table.add_column("Backend")
    table.add_column("Working path")
    table.add_column("Target")
    table.add_column("Change", style="dim")
    for handle in workspace.handles:
        color = KIND_COLORS[handle.backend_kind]
        table.add_row(
            handle.repo_name,
            f"[{color}]{handle.backend_kind.value}[/]",
            str(handle.worktree_path),
            handle.target_branch,
            handle.change_id.short() if handle.change_id else "",
        )
    return table
