"""Directory-isolation capability set built on GitPython.

``GitRepository`` answers every capability question about one working
directory: a primary checkout or a linked worktree. Head, status, diff and
conflict queries reflect that directory's own HEAD and index, independent of
whatever the source repository has checked out.

GitPython is synchronous, so every call is pushed to a worker thread with
``asyncio.to_thread``. A single instance is not meant to be driven by
several coroutines at once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import git
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from agentspace.core.logging import get_logger
from agentspace.vcs.base import BackendKind, VcsBackend
from agentspace.vcs.errors import (
    BackendError,
    BranchNotFoundError,
    ConflictResolutionRequiredError,
    InvalidChangeIdError,
    InvalidOperationError,
    PushRejectedError,
    RepositoryNotFoundError,
    VcsError,
    classify_backend_error,
)
from agentspace.vcs.types import (
    BranchInfo,
    BranchOrChange,
    ChangeFilter,
    ChangeId,
    ChangeInfo,
    ConflictInfo,
    ConflictOperation,
    ConflictSides,
    CreateChangeOptions,
    FetchOptions,
    FileChangeType,
    FileDiff,
    FileStatus,
    FileStatusKind,
    HeadInfo,
    PushOptions,
)

_logger = get_logger("vcs.git")

T = TypeVar("T")

# Marker entries in a (per-worktree) git dir, checked in order
_OPERATION_MARKERS: list[tuple[str, ConflictOperation]] = [
    ("rebase-merge", ConflictOperation.REBASE),
    ("rebase-apply", ConflictOperation.REBASE),
    ("MERGE_HEAD", ConflictOperation.MERGE),
    ("CHERRY_PICK_HEAD", ConflictOperation.CHERRY_PICK),
    ("REVERT_HEAD", ConflictOperation.REVERT),
]

# Ref naming the incoming side of each operation
_INCOMING_HEAD: dict[ConflictOperation, str] = {
    ConflictOperation.MERGE: "MERGE_HEAD",
    ConflictOperation.REBASE: "REBASE_HEAD",
    ConflictOperation.CHERRY_PICK: "CHERRY_PICK_HEAD",
    ConflictOperation.REVERT: "REVERT_HEAD",
}

_PUSH_FAILURE_FLAGS = (
    git.PushInfo.ERROR
    | git.PushInfo.REJECTED
    | git.PushInfo.REMOTE_REJECTED
    | git.PushInfo.REMOTE_FAILURE
)


def _message_text(message: str | bytes) -> str:
    if isinstance(message, bytes):
        return message.decode("utf-8", errors="replace")
    return message


def _count_patch_lines(patch: bytes | str | None) -> tuple[int, int]:
    """Count added/removed lines in a unified diff body (hunks only)."""
    if not patch:
        return 0, 0
    text = patch.decode("utf-8", errors="replace") if isinstance(patch, bytes) else patch
    additions = deletions = 0
    in_hunk = False
    for line in text.splitlines():
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk:
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return additions, deletions


def _convert_diff(diff: git.Diff) -> FileDiff:
    if diff.new_file:
        change_type = FileChangeType.ADDED
    elif diff.deleted_file:
        change_type = FileChangeType.DELETED
    elif diff.renamed_file:
        change_type = FileChangeType.RENAMED
    elif getattr(diff, "copied_file", False):
        change_type = FileChangeType.COPIED
    else:
        change_type = FileChangeType.MODIFIED

    path = diff.b_path or diff.a_path or ""
    old_path = None
    if change_type in (FileChangeType.RENAMED, FileChangeType.COPIED):
        old_path = diff.rename_from or diff.a_path
        path = diff.rename_to or path

    additions, deletions = _count_patch_lines(diff.diff)
    content = None
    if diff.diff:
        raw = diff.diff
        content = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return FileDiff(
        path=path,
        change_type=change_type,
        old_path=old_path,
        additions=additions,
        deletions=deletions,
        content=content,
    )


class GitRepository(VcsBackend):
    """Capability set over one git working directory."""

    def __init__(self, repo: git.Repo) -> None:
        if repo.bare or repo.working_tree_dir is None:
            raise InvalidOperationError("Bare repositories have no working directory")
        self._repo = repo
        self._work_dir = Path(repo.working_tree_dir)

    # -- lifecycle -----------------------------------------------------------

    @classmethod
    async def open(cls, path: Path) -> GitRepository:
        """Open an existing repository or linked worktree at ``path``."""

        def _open() -> git.Repo:
            try:
                return git.Repo(path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise RepositoryNotFoundError(path) from e

        return cls(await asyncio.to_thread(_open))

    @classmethod
    async def init(cls, path: Path) -> GitRepository:
        """Create a repository on branch ``main`` with an empty initial commit."""

        def _init() -> git.Repo:
            repo = git.Repo.init(path, mkdir=True, initial_branch="main")
            repo.index.commit("Initial commit")
            return repo

        return cls(await asyncio.to_thread(_init))

    @classmethod
    async def clone(cls, url: str, path: Path) -> GitRepository:
        def _clone() -> git.Repo:
            try:
                return git.Repo.clone_from(url, path)
            except GitCommandError as e:
                raise classify_backend_error(str(e.stderr or e), path=path) from e

        return cls(await asyncio.to_thread(_clone))

    @property
    def kind(self) -> BackendKind:
        return BackendKind.DIRECTORY_ISOLATION

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking GitPython call off the event loop, typing its failures."""

        def _call() -> T:
            try:
                return func(*args)
            except GitCommandError as e:
                raise classify_backend_error(str(e.stderr or e), path=self._work_dir) from e

        return await asyncio.to_thread(_call)

    def _resolve(self, change_id: str) -> git.Commit:
        try:
            return self._repo.commit(change_id)
        except (BadName, BadObject, ValueError) as e:
            raise InvalidChangeIdError(f"Invalid change id: {change_id}") from e

    def _ongoing_operation(self) -> ConflictOperation | None:
        git_dir = Path(self._repo.git_dir)
        for marker, operation in _OPERATION_MARKERS:
            if (git_dir / marker).exists():
                return operation
        return None

    def _unmerged_paths(self) -> list[str]:
        return sorted(str(path) for path in self._repo.index.unmerged_blobs())

    async def is_clean(self) -> bool:
        def _is_clean() -> bool:
            return self._ongoing_operation() is None and not self._unmerged_paths()

        return await self._run(_is_clean)

    async def head(self) -> HeadInfo:
        def _head() -> HeadInfo:
            if not self._repo.head.is_valid():
                raise InvalidOperationError("Repository has no commits yet")
            commit = self._repo.head.commit
            branch = None if self._repo.head.is_detached else self._repo.active_branch.name
            return HeadInfo(
                branch=branch,
                change_id=ChangeId(commit.hexsha),
                description=_message_text(commit.summary),
            )

        return await self._run(_head)

    async def is_valid(self) -> bool:
        return Path(self._repo.git_dir).is_dir() and self._work_dir.is_dir()

    # -- changes -------------------------------------------------------------

    async def create_change(
        self, message: str, options: CreateChangeOptions | None = None
    ) -> ChangeId:
        options = options or CreateChangeOptions()

        def _create() -> ChangeId:
            if options.stage_all:
                self._repo.git.add(A=True)
            if options.parents:
                parents = [self._resolve(p) for p in options.parents]
                commit = self._repo.index.commit(message, parent_commits=parents)
            else:
                commit = self._repo.index.commit(message)
            return ChangeId(commit.hexsha)

        return await self._run(_create)

    async def amend_change(self, message: str | None = None) -> ChangeId:
        def _amend() -> ChangeId:
            if message is None:
                self._repo.git.commit("--amend", "--no-edit")
            else:
                self._repo.git.commit("--amend", "-m", message)
            return ChangeId(self._repo.head.commit.hexsha)

        return await self._run(_amend)

    def _change_info(self, commit: git.Commit) -> ChangeInfo:
        parents = commit.parents
        if parents:
            is_empty = commit.tree.hexsha == parents[0].tree.hexsha
        else:
            is_empty = len(commit.tree) == 0
        return ChangeInfo(
            id=ChangeId(commit.hexsha),
            parent_ids=tuple(ChangeId(p.hexsha) for p in parents),
            author=commit.author.name or "",
            timestamp=commit.authored_datetime,
            description=_message_text(commit.message).strip(),
            is_empty=is_empty,
        )

    async def get_change(self, change_id: ChangeId) -> ChangeInfo:
        return await self._run(lambda: self._change_info(self._resolve(change_id)))

    async def list_changes(self, change_filter: ChangeFilter | None = None) -> list[ChangeInfo]:
        change_filter = change_filter or ChangeFilter()

        def _list() -> list[ChangeInfo]:
            rev = change_filter.branch or "HEAD"
            if change_filter.branch and not self._find_head(change_filter.branch):
                raise BranchNotFoundError(f"Branch not found: {change_filter.branch}")
            changes: list[ChangeInfo] = []
            for commit in self._repo.iter_commits(rev):
                if change_filter.author:
                    identity = f"{commit.author.name} <{commit.author.email}>"
                    if change_filter.author not in identity:
                        continue
                if change_filter.since and commit.committed_datetime < change_filter.since:
                    continue
                changes.append(self._change_info(commit))
                if change_filter.limit is not None and len(changes) >= change_filter.limit:
                    break
            return changes

        return await self._run(_list)

    async def abandon_change(self, change_id: ChangeId) -> None:
        def _abandon() -> None:
            commit = self._resolve(change_id)
            if not commit.parents:
                raise InvalidOperationError("Cannot abandon a root commit")
            # Mixed reset keeps the abandoned content in the working tree
            self._repo.head.reset(commit.parents[0], index=True, working_tree=False)

        await self._run(_abandon)

    async def change_exists(self, change_id: ChangeId) -> bool:
        def _exists() -> bool:
            try:
                self._resolve(change_id)
            except InvalidChangeIdError:
                return False
            return True

        return await self._run(_exists)

    # -- branches ------------------------------------------------------------

    def _find_head(self, name: str) -> git.Head | None:
        for head in self._repo.heads:
            if head.name == name:
                return head
        return None

    def _require_head(self, name: str) -> git.Head:
        head = self._find_head(name)
        if head is None:
            raise BranchNotFoundError(f"Branch not found: {name}")
        return head

    async def create_branch(self, name: str, base: ChangeId | None = None) -> None:
        def _create() -> None:
            if self._find_head(name) is not None:
                raise InvalidOperationError(f"Branch already exists: {name}")
            commit = self._resolve(base) if base else self._repo.head.commit
            self._repo.create_head(name, commit)

        await self._run(_create)

    async def delete_branch(self, name: str) -> None:
        await self._run(lambda: self._repo.delete_head(self._require_head(name), force=True))

    async def rename_branch(self, old_name: str, new_name: str) -> None:
        def _rename() -> None:
            if self._find_head(new_name) is not None:
                raise InvalidOperationError(f"Branch already exists: {new_name}")
            self._require_head(old_name).rename(new_name)

        await self._run(_rename)

    async def list_branches(self) -> list[BranchInfo]:
        def _list() -> list[BranchInfo]:
            current = None if self._repo.head.is_detached else self._repo.head.ref.name
            branches = [
                BranchInfo(
                    name=head.name,
                    change_id=ChangeId(head.commit.hexsha),
                    is_current=head.name == current,
                    is_remote=False,
                    last_updated=head.commit.committed_datetime,
                )
                for head in self._repo.heads
            ]
            for remote in self._repo.remotes:
                for ref in remote.refs:
                    if ref.remote_head == "HEAD":
                        continue
                    branches.append(
                        BranchInfo(
                            name=ref.name,
                            change_id=ChangeId(ref.commit.hexsha),
                            is_current=False,
                            is_remote=True,
                            last_updated=ref.commit.committed_datetime,
                        )
                    )
            return branches

        return await self._run(_list)

    async def current_branch(self) -> str | None:
        def _current() -> str | None:
            if self._repo.head.is_detached:
                return None
            return self._repo.head.ref.name

        return await self._run(_current)

    async def switch_to(self, target: BranchOrChange) -> None:
        def _switch() -> None:
            if target.branch_name is not None:
                self._require_head(target.branch_name)
                self._repo.git.checkout(target.branch_name)
            else:
                commit = self._resolve(str(target.change_id))
                self._repo.git.checkout("--detach", commit.hexsha)

        await self._run(_switch)

    async def branch_exists(self, name: str) -> bool:
        return await self._run(lambda: self._find_head(name) is not None)

    async def is_branch_name_valid(self, name: str) -> bool:
        if not name.strip():
            return False

        def _check() -> bool:
            try:
                self._repo.git.check_ref_format("--branch", name)
            except GitCommandError:
                return False
            return True

        return await asyncio.to_thread(_check)

    # -- remotes -------------------------------------------------------------

    def _remote(self, name: str) -> git.Remote:
        try:
            return self._repo.remote(name)
        except ValueError as e:
            raise BackendError(f"Remote not found: {name}") from e

    async def fetch(self, options: FetchOptions | None = None) -> None:
        options = options or FetchOptions()
        await self._run(lambda: self._remote(options.remote).fetch(prune=options.prune))
        _logger.debug("git_fetch_completed", path=str(self._work_dir), remote=options.remote)

    async def push(self, options: PushOptions | None = None) -> None:
        options = options or PushOptions()

        def _push() -> None:
            remote = self._remote(options.remote)
            current = None if self._repo.head.is_detached else self._repo.head.ref.name
            source_branch = options.branch or current
            target = options.target_branch or source_branch
            if target is None:
                raise InvalidOperationError("Detached HEAD needs an explicit target branch")
            source = f"refs/heads/{source_branch}" if source_branch else "HEAD"
            refspec = f"{source}:refs/heads/{target}"

            results = remote.push(refspec, force=options.force)
            for info in results:
                if info.flags & _PUSH_FAILURE_FLAGS:
                    raise PushRejectedError(
                        f"Push of {refspec} to {options.remote} rejected: {info.summary.strip()}"
                    )

        await self._run(_push)
        _logger.info("git_push_completed", path=str(self._work_dir), remote=options.remote)

    async def remote_branch_exists(self, remote: str, branch: str) -> bool:
        def _exists() -> bool:
            try:
                refs = self._repo.remote(remote).refs
            except ValueError:
                return False
            return any(ref.remote_head == branch for ref in refs)

        return await self._run(_exists)

    async def get_remote_url(self, remote: str) -> str:
        return await self._run(lambda: self._remote(remote).url)

    async def set_remote_url(self, remote: str, url: str) -> None:
        await self._run(lambda: self._remote(remote).set_url(url))

    async def list_remotes(self) -> list[str]:
        return await self._run(lambda: [remote.name for remote in self._repo.remotes])

    # -- diff / status -------------------------------------------------------

    async def diff_changes(self, from_id: ChangeId, to_id: ChangeId) -> list[FileDiff]:
        def _diff() -> list[FileDiff]:
            old = self._resolve(from_id)
            new = self._resolve(to_id)
            return [_convert_diff(d) for d in old.diff(new, create_patch=True, M=True)]

        return await self._run(_diff)

    async def diff_uncommitted(self) -> list[FileDiff]:
        def _diff() -> list[FileDiff]:
            if not self._repo.head.is_valid():
                return []
            head = self._repo.head.commit
            return [_convert_diff(d) for d in head.diff(None, create_patch=True)]

        return await self._run(_diff)

    async def status(self) -> list[FileStatus]:
        def _status() -> list[FileStatus]:
            conflicted = set(self._unmerged_paths())
            seen: dict[str, FileStatusKind] = {path: FileStatusKind.CONFLICTED for path in conflicted}

            if self._repo.head.is_valid():
                for d in self._repo.index.diff("HEAD", R=True):
                    path = d.b_path or d.a_path
                    if d.new_file:
                        seen.setdefault(path, FileStatusKind.ADDED)
                    elif d.deleted_file:
                        seen.setdefault(path, FileStatusKind.DELETED)
                    else:
                        seen.setdefault(path, FileStatusKind.MODIFIED)
            else:
                for path, _stage in self._repo.index.entries:
                    seen.setdefault(str(path), FileStatusKind.ADDED)

            for d in self._repo.index.diff(None):
                path = d.a_path or d.b_path
                kind = FileStatusKind.DELETED if d.deleted_file else FileStatusKind.MODIFIED
                seen.setdefault(path, kind)

            for path in self._repo.untracked_files:
                seen.setdefault(path, FileStatusKind.UNTRACKED)

            return [FileStatus(path=path, kind=kind) for path, kind in sorted(seen.items())]

        return await self._run(_status)

    async def has_uncommitted_changes(self) -> bool:
        return await self._run(lambda: self._repo.is_dirty(untracked_files=True))

    # -- conflicts -----------------------------------------------------------

    async def has_conflicts(self) -> bool:
        return await self._run(lambda: bool(self._unmerged_paths()))

    async def list_conflicts(self) -> list[ConflictInfo]:
        def _list() -> list[ConflictInfo]:
            paths = self._unmerged_paths()
            if not paths:
                return []
            sides = self._conflict_sides()
            return [ConflictInfo(path=path, sides=sides) for path in paths]

        return await self._run(_list)

    def _conflict_sides(self) -> ConflictSides | None:
        operation = self._ongoing_operation()
        if operation is None or not self._repo.head.is_valid():
            return None
        incoming = Path(self._repo.git_dir) / _INCOMING_HEAD[operation]
        if not incoming.exists():
            return None
        ours = self._repo.head.commit
        theirs = self._resolve(incoming.read_text().strip())
        bases = self._repo.merge_base(ours, theirs)
        return ConflictSides(
            base=ChangeId(bases[0].hexsha) if bases else None,
            ours=ChangeId(ours.hexsha),
            theirs=ChangeId(theirs.hexsha),
        )

    async def resolve_conflict(self, path: str) -> None:
        def _resolve() -> None:
            if path not in self._unmerged_paths():
                raise InvalidOperationError(f"Path is not conflicted: {path}")
            self._repo.git.add("--", path)

        await self._run(_resolve)

    async def abort_operation(self) -> None:
        def _abort() -> None:
            operation = self._ongoing_operation()
            if operation is None:
                raise InvalidOperationError("No operation in progress")
            command = {
                ConflictOperation.MERGE: self._repo.git.merge,
                ConflictOperation.REBASE: self._repo.git.rebase,
                ConflictOperation.CHERRY_PICK: self._repo.git.cherry_pick,
                ConflictOperation.REVERT: self._repo.git.revert,
            }[operation]
            command("--abort")

        await self._run(_abort)

    async def ongoing_operation(self) -> ConflictOperation | None:
        return await self._run(self._ongoing_operation)

    # -- rebase --------------------------------------------------------------

    async def rebase_onto(
        self,
        target: str,
        *,
        remote: str | None = None,
        favor_incoming: bool = True,
        source: str | None = None,
    ) -> None:
        upstream = f"{remote}/{target}" if remote else target

        def _rebase() -> None:
            args: list[str] = []
            if favor_incoming:
                # While rebasing, "theirs" is the work being replayed
                args.extend(["-X", "theirs"])
            try:
                self._repo.git.rebase(*args, upstream, *([source] if source else []))
            except GitCommandError as e:
                if self._ongoing_operation() is ConflictOperation.REBASE:
                    conflicted = self._unmerged_paths()
                    self._repo.git.rebase("--abort")
                    raise ConflictResolutionRequiredError(
                        conflicted,
                        f"Rebase onto {upstream} stopped on conflicts: {', '.join(conflicted) or 'unknown paths'}",
                    ) from e
                raise

        try:
            await self._run(_rebase)
        except VcsError:
            _logger.warning("git_rebase_failed", path=str(self._work_dir), upstream=upstream)
            raise
        _logger.info("git_rebase_completed", path=str(self._work_dir), upstream=upstream)

    def __repr__(self) -> str:
        return f"GitRepository({str(self._work_dir)!r})"


__all__ = ["GitRepository"]
