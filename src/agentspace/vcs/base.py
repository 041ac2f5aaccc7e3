"""Capability interfaces every version-control backend implements.

The orchestrator only ever talks to these abstract groups, never to a
concrete backend. The single thing it may branch on is ``BackendKind``,
which decides the isolation strategy, not how individual operations work.

Every operation is a coroutine. Expected failures (missing ref, dirty tree,
rejected push, network trouble) raise a subclass of
``agentspace.vcs.errors.VcsError``; nothing returns a sentinel for them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

from agentspace.vcs.types import (
    BranchInfo,
    BranchOrChange,
    ChangeFilter,
    ChangeId,
    ChangeInfo,
    ConflictInfo,
    ConflictOperation,
    CreateChangeOptions,
    FetchOptions,
    FileDiff,
    FileStatus,
    HeadInfo,
    PushOptions,
)


class BackendKind(str, Enum):
    """Isolation strategy a repository supports.

    Values match what the platform persists alongside workspace records.
    """

    DIRECTORY_ISOLATION = "git"
    CHANGE_ISOLATION = "jj"


class VcsRepository(ABC):
    """Repository lifecycle and head inspection."""

    @property
    @abstractmethod
    def kind(self) -> BackendKind: ...

    @property
    @abstractmethod
    def work_dir(self) -> Path: ...

    @abstractmethod
    async def is_clean(self) -> bool:
        """True when no operation is in progress and nothing is conflicted."""

    @abstractmethod
    async def head(self) -> HeadInfo: ...

    @abstractmethod
    async def is_valid(self) -> bool:
        """True when the on-disk repository metadata is still intact."""


class VcsChanges(ABC):
    @abstractmethod
    async def create_change(
        self, message: str, options: CreateChangeOptions | None = None
    ) -> ChangeId: ...

    @abstractmethod
    async def amend_change(self, message: str | None = None) -> ChangeId: ...

    @abstractmethod
    async def get_change(self, change_id: ChangeId) -> ChangeInfo: ...

    @abstractmethod
    async def list_changes(self, change_filter: ChangeFilter | None = None) -> list[ChangeInfo]: ...

    @abstractmethod
    async def abandon_change(self, change_id: ChangeId) -> None: ...

    @abstractmethod
    async def change_exists(self, change_id: ChangeId) -> bool: ...


class VcsBranches(ABC):
    @abstractmethod
    async def create_branch(self, name: str, base: ChangeId | None = None) -> None: ...

    @abstractmethod
    async def delete_branch(self, name: str) -> None: ...

    @abstractmethod
    async def rename_branch(self, old_name: str, new_name: str) -> None: ...

    @abstractmethod
    async def list_branches(self) -> list[BranchInfo]: ...

    @abstractmethod
    async def current_branch(self) -> str | None: ...

    @abstractmethod
    async def switch_to(self, target: BranchOrChange) -> None: ...

    @abstractmethod
    async def branch_exists(self, name: str) -> bool: ...

    @abstractmethod
    async def is_branch_name_valid(self, name: str) -> bool: ...


class VcsRemotes(ABC):
    @abstractmethod
    async def fetch(self, options: FetchOptions | None = None) -> None: ...

    @abstractmethod
    async def push(self, options: PushOptions | None = None) -> None: ...

    @abstractmethod
    async def remote_branch_exists(self, remote: str, branch: str) -> bool: ...

    @abstractmethod
    async def get_remote_url(self, remote: str) -> str: ...

    @abstractmethod
    async def set_remote_url(self, remote: str, url: str) -> None: ...

    @abstractmethod
    async def list_remotes(self) -> list[str]: ...


class VcsDiff(ABC):
    @abstractmethod
    async def diff_changes(self, from_id: ChangeId, to_id: ChangeId) -> list[FileDiff]: ...

    @abstractmethod
    async def diff_uncommitted(self) -> list[FileDiff]: ...

    @abstractmethod
    async def status(self) -> list[FileStatus]: ...

    @abstractmethod
    async def has_uncommitted_changes(self) -> bool: ...


class VcsConflicts(ABC):
    @abstractmethod
    async def has_conflicts(self) -> bool: ...

    @abstractmethod
    async def list_conflicts(self) -> list[ConflictInfo]: ...

    @abstractmethod
    async def resolve_conflict(self, path: str) -> None: ...

    @abstractmethod
    async def abort_operation(self) -> None: ...

    @abstractmethod
    async def ongoing_operation(self) -> ConflictOperation | None: ...


class VcsRebase(ABC):
    @abstractmethod
    async def rebase_onto(
        self,
        target: str,
        *,
        remote: str | None = None,
        favor_incoming: bool = True,
        source: str | None = None,
    ) -> None:
        """Rebase ``source`` (default: the current work) onto ``target``.

        ``target`` is a branch on ``remote`` if one is given. For change
        isolation ``source`` names the session's change, which need not be
        the working copy.

        Raises:
            ConflictResolutionRequiredError: when the rebase cannot complete cleanly.
        """


class VcsBackend(
    VcsRepository,
    VcsChanges,
    VcsBranches,
    VcsRemotes,
    VcsDiff,
    VcsConflicts,
    VcsRebase,
):
    """Full capability set; concrete backends derive from this."""


__all__ = [
    "BackendKind",
    "VcsBackend",
    "VcsBranches",
    "VcsChanges",
    "VcsConflicts",
    "VcsDiff",
    "VcsRebase",
    "VcsRemotes",
    "VcsRepository",
]
