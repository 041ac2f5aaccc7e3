"""Exception hierarchy for version-control backends.

All backend failures inherit from VcsError, so callers can catch broadly or
narrowly (e.g. PushRejectedError to suggest a force-push, or
AuthenticationFailedError to suggest re-authentication).

Backends only report failures as human-readable text. ``classify_backend_error``
is the single place that turns such text into a typed error. It is a pure
function so it can be tested against a fixed corpus of messages.
"""

from __future__ import annotations

import re
from pathlib import Path


class VcsError(Exception):
    """Base exception for all version-control errors."""


class BackendUnavailableError(VcsError):
    """Raised when the VCS library or executable is missing or unusable."""


class RepositoryNotFoundError(VcsError):
    """Raised when a path is not a recognized repository."""

    def __init__(self, path: Path | str, detail: str | None = None) -> None:
        self.path = Path(path)
        message = f"Repository not found at {path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidChangeIdError(VcsError):
    """Raised when a change identifier does not resolve."""


class BranchNotFoundError(VcsError):
    """Raised when a branch or bookmark does not exist."""


class ConflictsError(VcsError):
    """Raised when an operation stops on conflicted paths."""

    def __init__(self, paths: list[str], message: str | None = None) -> None:
        self.paths = paths
        super().__init__(message or f"Conflicts in {len(paths)} file(s): {', '.join(paths)}")


class ConflictResolutionRequiredError(ConflictsError):
    """Raised when a rebase or merge needs human or agent follow-up.

    Distinct from a generic failure because retrying will not help.
    """


class DirtyWorkingCopyError(VcsError):
    """Raised when uncommitted changes block an operation."""


class OperationInProgressError(VcsError):
    """Raised when a merge/rebase/cherry-pick/revert is already underway."""


class AuthenticationFailedError(VcsError):
    """Raised when the remote rejects our credentials."""


class PushRejectedError(VcsError):
    """Raised when the remote refuses a push (non-fast-forward, hooks, protection)."""


class BackendError(VcsError):
    """Raised for backend failures that fit no narrower category."""


class InvalidOperationError(VcsError):
    """Raised when an operation does not apply to the repository's current state."""


# Checked in order; the first category with a match wins.
_AUTH_PATTERNS = [
    r"authentication failed",
    r"could not read username",
    r"invalid username or password",
    r"permission denied",
    r"could not read from remote repository",
]

_PUSH_REJECTED_PATTERNS = [
    r"\[rejected\]",
    r"\brejected\b",
    r"non-fast-forward",
    r"failed to push",
]

_CONFLICT_PATTERNS = [
    r"conflict",
    r"needs to be resolved",
]

_NOT_A_REPO_PATTERNS = [
    r"not a jj repo",
    r"there is no jj repo",
    r"not a git repository",
]

_MISSING_REVISION_PATTERNS = [
    r"revision .* doesn't exist",
    r"doesn't exist",
    r"unknown revision",
    r"bad revision",
    r"invalid reference",
]

_DIRTY_PATTERNS = [
    r"uncommitted changes",
    r"would be overwritten",
    r"unstaged changes",
]

_IN_PROGRESS_PATTERNS = [
    r"already in progress",
    r"a rebase-merge directory",
    r"you have not concluded your merge",
]


def _compile_patterns(strings: list[str]) -> re.Pattern[str]:
    """Compile a pattern list into a single case-insensitive alternation."""
    return re.compile("|".join(f"(?:{p})" for p in strings), re.IGNORECASE)


_CLASSIFICATION: list[tuple[re.Pattern[str], type[VcsError]]] = [
    (_compile_patterns(_AUTH_PATTERNS), AuthenticationFailedError),
    (_compile_patterns(_PUSH_REJECTED_PATTERNS), PushRejectedError),
    (_compile_patterns(_CONFLICT_PATTERNS), ConflictResolutionRequiredError),
    (_compile_patterns(_NOT_A_REPO_PATTERNS), RepositoryNotFoundError),
    (_compile_patterns(_MISSING_REVISION_PATTERNS), InvalidChangeIdError),
    (_compile_patterns(_DIRTY_PATTERNS), DirtyWorkingCopyError),
    (_compile_patterns(_IN_PROGRESS_PATTERNS), OperationInProgressError),
]


def classify_backend_error(message: str, *, path: Path | str = ".") -> VcsError:
    """Map backend error text to a typed error.

    Args:
        message: stderr or exception text reported by the backend.
        path: Repository path, used only for RepositoryNotFoundError.

    Returns:
        The most specific VcsError subclass whose patterns match, or
        BackendError when none do.
    """
    text = message.strip()
    for pattern, error_type in _CLASSIFICATION:
        if pattern.search(text):
            if error_type is RepositoryNotFoundError:
                return RepositoryNotFoundError(path, text)
            if error_type is ConflictResolutionRequiredError:
                return ConflictResolutionRequiredError([], text)
            return error_type(text)
    return BackendError(text or "backend command failed")


__all__ = [
    "AuthenticationFailedError",
    "BackendError",
    "BackendUnavailableError",
    "BranchNotFoundError",
    "ConflictResolutionRequiredError",
    "ConflictsError",
    "DirtyWorkingCopyError",
    "InvalidChangeIdError",
    "InvalidOperationError",
    "OperationInProgressError",
    "PushRejectedError",
    "RepositoryNotFoundError",
    "VcsError",
    "classify_backend_error",
]
