"""Change-isolation capability set over the ``jj`` executable.

Jujutsu has no index and no "operation in progress" state: the working copy
is itself a change (``@``) that is snapshotted on every command, and
conflicts are recorded inside changes instead of blocking commands. The
capability mapping below follows from that:

- bookmarks play the role of branches;
- ``ongoing_operation`` is always None and ``abort_operation`` refuses;
- a conflict is "resolved" once the working-copy change no longer lists it.
"""

from __future__ import annotations

import re
from pathlib import Path

from agentspace.core.logging import get_logger
from agentspace.vcs.base import BackendKind, VcsBackend
from agentspace.vcs.errors import (
    BackendError,
    BranchNotFoundError,
    ConflictResolutionRequiredError,
    ConflictsError,
    InvalidChangeIdError,
    InvalidOperationError,
    RepositoryNotFoundError,
)
from agentspace.vcs.jj_cli import JjChange, JjDiffSummary, JujutsuCli
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
    FileChangeType,
    FileDiff,
    FileStatus,
    FileStatusKind,
    HeadInfo,
    PushOptions,
)

_logger = get_logger("vcs.jj")

_SUMMARY_TYPES: dict[str, FileChangeType] = {
    "A": FileChangeType.ADDED,
    "M": FileChangeType.MODIFIED,
    "D": FileChangeType.DELETED,
    "R": FileChangeType.RENAMED,
    "C": FileChangeType.COPIED,
}

# Bookmark names follow git ref rules since colocated repos export them
_INVALID_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def is_valid_ref_name(name: str) -> bool:
    """Check a bookmark name against git's ref-name rules."""
    if not name or name.startswith(("-", "/")) or name.endswith(("/", ".", ".lock")):
        return False
    if ".." in name or "@{" in name or "//" in name or name == "@":
        return False
    if any(part.startswith(".") for part in name.split("/")):
        return False
    return _INVALID_REF_CHARS.search(name) is None


def _to_change_info(change: JjChange) -> ChangeInfo:
    return ChangeInfo(
        id=ChangeId(change.change_id),
        parent_ids=tuple(ChangeId(p) for p in change.parent_ids),
        author=change.author,
        timestamp=change.timestamp,
        description=change.description,
        is_empty=change.is_empty,
    )


def _to_file_diff(entry: JjDiffSummary) -> FileDiff:
    return FileDiff(
        path=entry.path,
        change_type=_SUMMARY_TYPES.get(entry.change_type, FileChangeType.MODIFIED),
        old_path=entry.old_path,
    )


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class JujutsuRepository(VcsBackend):
    """Capability set over one jj workspace."""

    def __init__(self, path: Path, cli: JujutsuCli | None = None) -> None:
        self._path = path
        self._cli = cli or JujutsuCli()

    @classmethod
    async def open(cls, path: Path, cli: JujutsuCli | None = None) -> JujutsuRepository:
        if not (path / ".jj").is_dir():
            raise RepositoryNotFoundError(path, "no .jj directory")
        repo = cls(path, cli)
        # Fails with BackendUnavailableError when jj is missing
        await repo._cli.current_change_id(path)
        return repo

    @classmethod
    async def init(cls, path: Path, cli: JujutsuCli | None = None) -> JujutsuRepository:
        cli = cli or JujutsuCli()
        await cli.init(path, colocate=True)
        return cls(path, cli)

    @classmethod
    async def clone(cls, url: str, path: Path, cli: JujutsuCli | None = None) -> JujutsuRepository:
        cli = cli or JujutsuCli()
        await cli.git_clone(url, path)
        return cls(path, cli)

    @property
    def kind(self) -> BackendKind:
        return BackendKind.CHANGE_ISOLATION

    @property
    def work_dir(self) -> Path:
        return self._path

    # -- repository ----------------------------------------------------------

    async def is_clean(self) -> bool:
        return not await self.has_conflicts()

    async def head(self) -> HeadInfo:
        changes = await self._cli.log(self._path, "@", limit=1)
        if not changes:
            raise BackendError("jj did not report a working-copy change")
        bookmarks = await self._cli.local_bookmarks_at(self._path)
        return HeadInfo(
            branch=bookmarks[0] if bookmarks else None,
            change_id=ChangeId(changes[0].change_id),
            description=changes[0].description,
        )

    async def is_valid(self) -> bool:
        return (self._path / ".jj").is_dir()

    # -- changes -------------------------------------------------------------

    async def create_change(
        self, message: str, options: CreateChangeOptions | None = None
    ) -> ChangeId:
        options = options or CreateChangeOptions()
        if options.parents:
            change_id = await self._cli.new_change(
                self._path, message, tuple(str(p) for p in options.parents)
            )
            return ChangeId(change_id)
        # Describe the working-copy change and start a fresh one on top of it
        described = await self._cli.current_change_id(self._path)
        await self._cli.commit(self._path, message)
        return ChangeId(described)

    async def amend_change(self, message: str | None = None) -> ChangeId:
        if message is not None:
            await self._cli.describe(self._path, message)
        return ChangeId(await self._cli.current_change_id(self._path))

    async def get_change(self, change_id: ChangeId) -> ChangeInfo:
        changes = await self._cli.log(self._path, f"present({change_id})", limit=1)
        if not changes:
            raise InvalidChangeIdError(f"Invalid change id: {change_id}")
        return _to_change_info(changes[0])

    async def list_changes(self, change_filter: ChangeFilter | None = None) -> list[ChangeInfo]:
        change_filter = change_filter or ChangeFilter()
        revset = f"::{change_filter.branch}" if change_filter.branch else "::@"
        if change_filter.author:
            revset = f"({revset}) & author(substring:{_quote(change_filter.author)})"
        changes = [_to_change_info(c) for c in await self._cli.log(self._path, revset)]
        if change_filter.since:
            changes = [c for c in changes if c.timestamp >= change_filter.since]
        if change_filter.limit is not None:
            changes = changes[: change_filter.limit]
        return changes

    async def abandon_change(self, change_id: ChangeId) -> None:
        await self._cli.abandon(self._path, change_id)

    async def change_exists(self, change_id: ChangeId) -> bool:
        try:
            changes = await self._cli.log(self._path, f"present({change_id})", limit=1)
        except InvalidChangeIdError:
            return False
        return bool(changes)

    # -- bookmarks -----------------------------------------------------------

    async def create_branch(self, name: str, base: ChangeId | None = None) -> None:
        await self._cli.bookmark_create(self._path, name, base or "@")

    async def delete_branch(self, name: str) -> None:
        if not await self.branch_exists(name):
            raise BranchNotFoundError(f"Bookmark not found: {name}")
        await self._cli.bookmark_delete(self._path, name)

    async def rename_branch(self, old_name: str, new_name: str) -> None:
        if not await self.branch_exists(old_name):
            raise BranchNotFoundError(f"Bookmark not found: {old_name}")
        await self._cli.bookmark_rename(self._path, old_name, new_name)

    async def list_branches(self) -> list[BranchInfo]:
        current = set(await self._cli.local_bookmarks_at(self._path))
        branches: list[BranchInfo] = []
        for bookmark in await self._cli.bookmark_list(self._path):
            if bookmark.change_id is None:
                continue
            is_remote = bookmark.remote is not None
            name = f"{bookmark.name}@{bookmark.remote}" if is_remote else bookmark.name
            branches.append(
                BranchInfo(
                    name=name,
                    change_id=ChangeId(bookmark.change_id),
                    is_current=not is_remote and bookmark.name in current,
                    is_remote=is_remote,
                )
            )
        return branches

    async def current_branch(self) -> str | None:
        bookmarks = await self._cli.local_bookmarks_at(self._path)
        return bookmarks[0] if bookmarks else None

    async def switch_to(self, target: BranchOrChange) -> None:
        if target.branch_name is not None:
            if not await self.branch_exists(target.branch_name):
                raise BranchNotFoundError(f"Bookmark not found: {target.branch_name}")
            await self._cli.edit(self._path, target.branch_name)
        else:
            await self._cli.edit(self._path, str(target.change_id))

    async def branch_exists(self, name: str) -> bool:
        return any(
            b.name == name and b.remote is None
            for b in await self._cli.bookmark_list(self._path)
        )

    async def is_branch_name_valid(self, name: str) -> bool:
        return is_valid_ref_name(name)

    # -- remotes -------------------------------------------------------------

    async def fetch(self, options: FetchOptions | None = None) -> None:
        options = options or FetchOptions()
        await self._cli.git_fetch(self._path, options.remote)

    async def push(self, options: PushOptions | None = None) -> None:
        options = options or PushOptions()
        target = options.target_branch or options.branch or await self.current_branch()
        if target is None:
            raise InvalidOperationError("No bookmark on the working copy; pass a target branch")
        source = options.branch or "@"
        if source != target or options.target_branch is not None:
            await self._cli.bookmark_set(
                self._path, target, source, allow_backwards=options.force
            )
        await self._cli.git_push(self._path, bookmark=target, remote=options.remote)
        _logger.info("jj_push_completed", path=str(self._path), bookmark=target)

    async def remote_branch_exists(self, remote: str, branch: str) -> bool:
        return any(
            b.name == branch and b.remote == remote
            for b in await self._cli.bookmark_list(self._path)
        )

    async def get_remote_url(self, remote: str) -> str:
        remotes = await self._cli.git_remote_list(self._path)
        if remote not in remotes:
            raise BackendError(f"Remote not found: {remote}")
        return remotes[remote]

    async def set_remote_url(self, remote: str, url: str) -> None:
        await self._cli.git_remote_set_url(self._path, remote, url)

    async def list_remotes(self) -> list[str]:
        return list(await self._cli.git_remote_list(self._path))

    # -- diff / status -------------------------------------------------------

    async def diff_changes(self, from_id: ChangeId, to_id: ChangeId) -> list[FileDiff]:
        entries = await self._cli.diff_summary(self._path, from_id, to_id)
        return [_to_file_diff(e) for e in entries]

    async def diff_uncommitted(self) -> list[FileDiff]:
        return [_to_file_diff(e) for e in await self._cli.diff_summary(self._path)]

    async def status(self) -> list[FileStatus]:
        status = await self._cli.status(self._path)
        entries: dict[str, FileStatusKind] = {
            path: FileStatusKind.CONFLICTED for path in status.conflicted_files
        }
        for path in status.modified_files:
            entries.setdefault(path, FileStatusKind.MODIFIED)
        for path in status.added_files:
            entries.setdefault(path, FileStatusKind.ADDED)
        for path in status.deleted_files:
            entries.setdefault(path, FileStatusKind.DELETED)
        for old, new in status.renamed_files:
            entries.setdefault(old, FileStatusKind.DELETED)
            entries.setdefault(new, FileStatusKind.ADDED)
        return [FileStatus(path=p, kind=k) for p, k in sorted(entries.items())]

    async def has_uncommitted_changes(self) -> bool:
        return (await self._cli.status(self._path)).has_changes

    # -- conflicts -----------------------------------------------------------

    async def has_conflicts(self) -> bool:
        return bool(await self._cli.conflicted_files(self._path))

    async def list_conflicts(self) -> list[ConflictInfo]:
        # Conflict terms live inside the change, so there are no operation sides
        return [ConflictInfo(path=p) for p in await self._cli.conflicted_files(self._path)]

    async def resolve_conflict(self, path: str) -> None:
        # jj snapshots the edited file on the next command; verify it took
        remaining = await self._cli.conflicted_files(self._path)
        if path in remaining:
            raise ConflictsError([path], f"Conflict markers remain in {path}")

    async def abort_operation(self) -> None:
        raise InvalidOperationError("No operation in progress")

    async def ongoing_operation(self) -> ConflictOperation | None:
        return None

    # -- rebase --------------------------------------------------------------

    async def rebase_onto(
        self,
        target: str,
        *,
        remote: str | None = None,
        favor_incoming: bool = True,
        source: str | None = None,
    ) -> None:
        # jj has no per-hunk strategy option; conflicts are recorded, then reported
        destination = f"{target}@{remote}" if remote else target
        revision = source or "@"
        await self._cli.rebase(self._path, destination, branch=revision)
        # Change ids survive the rewrite, so the same revision names the result
        conflicted = await self._cli.conflicted_files(self._path, revision)
        if conflicted:
            _logger.warning(
                "jj_rebase_conflicted",
                path=str(self._path),
                destination=destination,
                files=conflicted,
            )
            raise ConflictResolutionRequiredError(
                conflicted,
                f"Rebase onto {destination} left conflicts: {', '.join(conflicted)}",
            )
        _logger.info("jj_rebase_completed", path=str(self._path), destination=destination)

    def __repr__(self) -> str:
        return f"JujutsuRepository({str(self._path)!r})"


__all__ = ["JujutsuRepository", "is_valid_ref_name"]
