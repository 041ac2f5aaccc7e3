"""Isolation strategies: linked git worktrees and in-place jj sessions."""

from agentspace.isolation.sessions import ChangeSessionManager, SessionInfo
from agentspace.isolation.worktree import (
    GitWorktreeManager,
    NotGitRepositoryError,
    WorktreeCreationError,
    WorktreeError,
    WorktreeInfo,
    WorktreeMoveError,
    WorktreeRemovalError,
)

__all__ = [
    "ChangeSessionManager",
    "GitWorktreeManager",
    "NotGitRepositoryError",
    "SessionInfo",
    "WorktreeCreationError",
    "WorktreeError",
    "WorktreeInfo",
    "WorktreeMoveError",
    "WorktreeRemovalError",
]
