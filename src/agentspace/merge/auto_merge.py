"""Auto-merge of finished agent work into its target branches.

When an agent session finishes in a project that opted in, every repository
of its workspace is fetched, rebased onto its target branch in favor of the
agent's changes, and pushed back to that branch.

Concurrency: a per-project ``asyncio.Lock`` is held for the whole
fetch/rebase/push sequence, so at most one auto-merge runs per project.
Other projects are unaffected. Locks are created lazily and live as long as
the coordinator; the key space is bounded by the number of live projects.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from agentspace.core.config import AutoMergeSettings
from agentspace.core.logging import SessionContext, get_logger, with_session
from agentspace.vcs.base import BackendKind, VcsBackend
from agentspace.vcs.errors import VcsError
from agentspace.vcs.factory import create_backend
from agentspace.vcs.types import FetchOptions, PushOptions
from agentspace.workspace.models import IsolationHandle, Workspace

_logger = get_logger("merge.auto_merge")

BackendOpener = Callable[[BackendKind, Path], Awaitable[VcsBackend]]


class MergeStatus(str, Enum):
    MERGED = "merged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class AutoMergeContext:
    """The finished session whose work should be merged."""

    project_id: str
    task_id: str
    session_id: str
    workspace: Workspace
    enabled: bool = True


@dataclass(frozen=True)
class AutoMergeOutcome:
    status: MergeStatus
    message: str
    repo_name: str | None = None
    error: VcsError | None = None

    @property
    def ok(self) -> bool:
        return self.status is not MergeStatus.FAILED


OnMerged = Callable[[AutoMergeContext], Awaitable[None]]


class AutoMergeCoordinator:
    """Serializes auto-merges per project."""

    def __init__(
        self,
        settings: AutoMergeSettings | None = None,
        *,
        backend_opener: BackendOpener = create_backend,
        on_merged: OnMerged | None = None,
    ) -> None:
        self._settings = settings or AutoMergeSettings()
        self._open_backend = backend_opener
        self._on_merged = on_merged
        self._merge_locks: dict[str, asyncio.Lock] = {}

    def _project_lock(self, project_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._merge_locks.get(project_id)
        if lock is None:
            lock = self._merge_locks[project_id] = asyncio.Lock()
        return lock

    def is_merging(self, project_id: str) -> bool:
        lock = self._merge_locks.get(project_id)
        return lock is not None and lock.locked()

    async def try_auto_merge(self, context: AutoMergeContext) -> AutoMergeOutcome:
        """Fetch, rebase and push every repository of the finished workspace.

        Returns:
            SKIPPED when auto-merge is off for the project, FAILED with the
            repository name and typed error on the first failing repository,
            MERGED otherwise.
        """
        if not context.enabled:
            _logger.debug("auto_merge_disabled", project_id=context.project_id)
            return AutoMergeOutcome(MergeStatus.SKIPPED, "Auto-merge disabled for project")
        if not context.workspace.handles:
            return AutoMergeOutcome(MergeStatus.SKIPPED, "Workspace has no repositories")

        session = SessionContext(
            session_id=context.session_id,
            workspace_dir=str(context.workspace.workspace_dir),
            project_id=context.project_id,
        )
        with with_session(session):
            lock = self._project_lock(context.project_id)
            if lock.locked():
                _logger.info("auto_merge_waiting_for_project_lock", task_id=context.task_id)

            async with lock:
                _logger.info(
                    "auto_merge_started",
                    task_id=context.task_id,
                    repo_count=len(context.workspace.handles),
                )
                for handle in context.workspace.handles:
                    try:
                        await self._merge_repo(handle)
                    except VcsError as e:
                        _logger.warning(
                            "auto_merge_failed",
                            task_id=context.task_id,
                            repo=handle.repo_name,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        return AutoMergeOutcome(
                            MergeStatus.FAILED,
                            f"Auto-merge failed for repo '{handle.repo_name}': {e}",
                            repo_name=handle.repo_name,
                            error=e,
                        )

            _logger.info("auto_merge_completed", task_id=context.task_id)
            if self._on_merged is not None:
                await self._on_merged(context)
        return AutoMergeOutcome(MergeStatus.MERGED, "Merged into target branches")

    async def _merge_repo(self, handle: IsolationHandle) -> None:
        remote = self._settings.remote
        # Sessions share a jj working copy, so name the session's change
        # explicitly instead of whatever is checked out
        source = handle.change_id if handle.backend_kind is BackendKind.CHANGE_ISOLATION else None
        backend = await self._open_backend(handle.backend_kind, handle.worktree_path)
        await backend.fetch(FetchOptions(remote=remote))
        await backend.rebase_onto(
            handle.target_branch,
            remote=remote,
            favor_incoming=self._settings.favor_incoming,
            source=source,
        )
        await backend.push(
            PushOptions(remote=remote, branch=source, target_branch=handle.target_branch)
        )
        _logger.info(
            "auto_merge_repo_pushed",
            repo=handle.repo_name,
            target_branch=handle.target_branch,
        )


__all__ = [
    "AutoMergeContext",
    "AutoMergeCoordinator",
    "AutoMergeOutcome",
    "MergeStatus",
]
