"""Multi-repository workspace orchestration."""

from agentspace.workspace.exceptions import (
    MigrationError,
    NoRepositoriesError,
    PartialCreationError,
    WorkspaceCleanupError,
    WorkspaceError,
)
from agentspace.workspace.manager import WorkspaceManager
from agentspace.workspace.models import IsolationHandle, Repository, RepoWorkspaceInput, Workspace
from agentspace.workspace.registry import StaticWorkspaceRegistry, WorkspaceRegistry

__all__ = [
    "IsolationHandle",
    "MigrationError",
    "NoRepositoriesError",
    "PartialCreationError",
    "RepoWorkspaceInput",
    "Repository",
    "StaticWorkspaceRegistry",
    "Workspace",
    "WorkspaceCleanupError",
    "WorkspaceError",
    "WorkspaceManager",
    "WorkspaceRegistry",
]
