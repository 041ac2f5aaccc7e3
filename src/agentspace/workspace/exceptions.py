"""Exception hierarchy for the workspace orchestrator.

All orchestrator exceptions inherit from WorkspaceError. Backend failures
keep their typed VcsError as ``__cause__`` (and as ``cause`` where the
orchestrator adds repository context).
"""

from __future__ import annotations


class WorkspaceError(Exception):
    """Base exception for workspace orchestration errors."""


class NoRepositoriesError(WorkspaceError):
    """Raised when a workspace is requested for an empty repository list."""

    def __init__(self) -> None:
        super().__init__("No repositories provided")


class PartialCreationError(WorkspaceError):
    """Raised after a failed creation has been rolled back.

    Attributes:
        repo_name: The repository whose isolation failed.
        cause: The underlying error.
    """

    def __init__(self, repo_name: str, cause: BaseException) -> None:
        self.repo_name = repo_name
        self.cause = cause
        super().__init__(f"Failed to create workspace for repo '{repo_name}': {cause}")


class WorkspaceCleanupError(WorkspaceError):
    """Raised after a cleanup pass in which some repositories could not be released.

    Attributes:
        failures: repo name -> error, for every repository that failed.
    """

    def __init__(self, failures: dict[str, BaseException]) -> None:
        self.failures = failures
        detail = "; ".join(f"{name}: {err}" for name, err in failures.items())
        super().__init__(f"Cleanup failed for {len(failures)} repo(s): {detail}")


class MigrationError(WorkspaceError):
    """Raised when a legacy workspace layout cannot be upgraded."""


__all__ = [
    "MigrationError",
    "NoRepositoriesError",
    "PartialCreationError",
    "WorkspaceCleanupError",
    "WorkspaceError",
]
