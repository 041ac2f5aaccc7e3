"""Version-control capability abstraction and its two backends.

The orchestrator depends only on the interfaces in ``agentspace.vcs.base``
and the factory in ``agentspace.vcs.factory``; concrete backends are
``GitRepository`` (directory isolation, GitPython) and ``JujutsuRepository``
(change isolation, ``jj`` executable).
"""

from agentspace.vcs.base import BackendKind, VcsBackend
from agentspace.vcs.errors import (
    AuthenticationFailedError,
    BackendError,
    BackendUnavailableError,
    BranchNotFoundError,
    ConflictResolutionRequiredError,
    ConflictsError,
    DirtyWorkingCopyError,
    InvalidChangeIdError,
    InvalidOperationError,
    OperationInProgressError,
    PushRejectedError,
    RepositoryNotFoundError,
    VcsError,
    classify_backend_error,
)
from agentspace.vcs.factory import auto_detect, create_backend, detect_backend_kind
from agentspace.vcs.git import GitRepository
from agentspace.vcs.jj import JujutsuRepository
from agentspace.vcs.jj_cli import JujutsuCli

__all__ = [
    "AuthenticationFailedError",
    "BackendError",
    "BackendKind",
    "BackendUnavailableError",
    "BranchNotFoundError",
    "ConflictResolutionRequiredError",
    "ConflictsError",
    "DirtyWorkingCopyError",
    "GitRepository",
    "InvalidChangeIdError",
    "InvalidOperationError",
    "JujutsuCli",
    "JujutsuRepository",
    "OperationInProgressError",
    "PushRejectedError",
    "RepositoryNotFoundError",
    "VcsBackend",
    "VcsError",
    "auto_detect",
    "classify_backend_error",
    "create_backend",
    "detect_backend_kind",
]
