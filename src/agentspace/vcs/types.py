"""Backend-agnostic value types shared by every VCS capability."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ChangeId(str):
    """Opaque stable change identifier (commit SHA for git, change id for jj)."""

    __slots__ = ()

    def short(self, length: int = 12) -> str:
        return self[:length]


@dataclass(frozen=True)
class HeadInfo:
    """Where a working copy currently points.

    ``branch`` is None when HEAD is detached or no bookmark points at it.
    """

    branch: str | None
    change_id: ChangeId
    description: str


@dataclass(frozen=True)
class ChangeInfo:
    id: ChangeId
    parent_ids: tuple[ChangeId, ...]
    author: str
    timestamp: datetime
    description: str
    is_empty: bool


@dataclass(frozen=True)
class ChangeFilter:
    """Restricts list_changes; every unset field matches everything."""

    branch: str | None = None
    author: str | None = None
    since: datetime | None = None
    limit: int | None = None


@dataclass(frozen=True)
class BranchOrChange:
    """Target for switch_to: exactly one of ``branch_name`` / ``change_id`` is set."""

    branch_name: str | None = None
    change_id: ChangeId | None = None

    def __post_init__(self) -> None:
        if (self.branch_name is None) == (self.change_id is None):
            raise ValueError("Exactly one of branch_name or change_id must be set")

    @classmethod
    def branch(cls, name: str) -> BranchOrChange:
        return cls(branch_name=name)

    @classmethod
    def change(cls, change_id: str) -> BranchOrChange:
        return cls(change_id=ChangeId(change_id))


@dataclass(frozen=True)
class BranchInfo:
    name: str
    change_id: ChangeId
    is_current: bool
    is_remote: bool
    last_updated: datetime | None = None


class FileChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"


@dataclass(frozen=True)
class FileDiff:
    path: str
    change_type: FileChangeType
    old_path: str | None = None
    additions: int = 0
    deletions: int = 0
    content: str | None = None


class FileStatusKind(str, Enum):
    UNTRACKED = "untracked"
    MODIFIED = "modified"
    ADDED = "added"
    DELETED = "deleted"
    CONFLICTED = "conflicted"


@dataclass(frozen=True)
class FileStatus:
    path: str
    kind: FileStatusKind


@dataclass(frozen=True)
class ConflictSides:
    base: ChangeId | None
    ours: ChangeId
    theirs: ChangeId


@dataclass(frozen=True)
class ConflictInfo:
    """A conflicted path.

    ``sides`` is None for backends that record conflict terms inside the
    change itself rather than in an operation state.
    """

    path: str
    sides: ConflictSides | None = None


class ConflictOperation(str, Enum):
    MERGE = "merge"
    REBASE = "rebase"
    CHERRY_PICK = "cherry-pick"
    REVERT = "revert"


@dataclass(frozen=True)
class CreateChangeOptions:
    stage_all: bool = False
    parents: tuple[ChangeId, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PushOptions:
    """What to publish and where.

    ``branch`` is the local source (None means the current head) and
    ``target_branch`` the remote branch to update (None means same name).
    """

    remote: str = "origin"
    branch: str | None = None
    target_branch: str | None = None
    force: bool = False


@dataclass(frozen=True)
class FetchOptions:
    remote: str = "origin"
    prune: bool = False


__all__ = [
    "BranchInfo",
    "BranchOrChange",
    "ChangeFilter",
    "ChangeId",
    "ChangeInfo",
    "ConflictInfo",
    "ConflictOperation",
    "ConflictSides",
    "CreateChangeOptions",
    "FetchOptions",
    "FileChangeType",
    "FileDiff",
    "FileStatus",
    "FileStatusKind",
    "HeadInfo",
    "PushOptions",
]
