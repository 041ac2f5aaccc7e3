"""Data model for multi-repository workspaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from agentspace.vcs.base import BackendKind
from agentspace.vcs.types import ChangeId


@dataclass(frozen=True)
class Repository:
    """A source repository registered with the platform (read-only here)."""

    id: str
    name: str
    path: Path
    default_target_branch: str = "main"


@dataclass(frozen=True)
class RepoWorkspaceInput:
    """One repository to isolate, plus the branch its work targets."""

    repo: Repository
    target_branch: str


@dataclass(frozen=True)
class IsolationHandle:
    """How one repository was isolated for one workspace.

    For directory isolation ``worktree_path`` is a distinct linked worktree;
    for change isolation it equals ``source_repo_path`` and ``change_id`` is
    set.
    """

    repo_id: str
    repo_name: str
    source_repo_path: Path
    worktree_path: Path
    backend_kind: BackendKind
    target_branch: str
    change_id: ChangeId | None = None
    branch_name: str | None = None
    branch_created: bool = False


@dataclass(frozen=True)
class Workspace:
    """A fully created multi-repository workspace.

    Either every requested repository has a handle, in input order, or the
    workspace does not exist; partial workspaces are rolled back.
    """

    workspace_dir: Path
    handles: tuple[IsolationHandle, ...] = field(default_factory=tuple)

    def handle_for(self, repo_id: str) -> IsolationHandle | None:
        for handle in self.handles:
            if handle.repo_id == repo_id:
                return handle
        return None


__all__ = ["IsolationHandle", "RepoWorkspaceInput", "Repository", "Workspace"]
