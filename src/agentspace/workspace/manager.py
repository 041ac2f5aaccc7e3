"""Multi-repository workspace orchestrator.

``WorkspaceManager`` isolates N repositories for one agent session as a
single unit. Each repository is classified by its on-disk marker and
dispatched to the matching strategy:

- directory isolation: a linked git worktree at ``workspace_dir/{repo.name}``;
- change isolation: a jj change created in place in the repository.

Repositories are processed sequentially in input order, so a failure on
repository k only has to undo the k-1 handles before it. The manager also
reconciles on-disk state after restarts, reaps workspace containers that
no live session references, and upgrades the legacy single-repository
layout.
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path

from agentspace.core.config import WorkspaceSettings, orphan_cleanup_disabled
from agentspace.core.logging import SessionContext, get_logger, with_session
from agentspace.isolation.sessions import ChangeSessionManager
from agentspace.isolation.worktree import GitWorktreeManager
from agentspace.vcs.base import BackendKind
from agentspace.vcs.errors import BackendUnavailableError, RepositoryNotFoundError, VcsError
from agentspace.vcs.factory import DIRECTORY_ISOLATION_MARKER, detect_backend_kind
from agentspace.workspace.exceptions import (
    NoRepositoriesError,
    PartialCreationError,
    WorkspaceCleanupError,
    WorkspaceError,
)
from agentspace.workspace.migration import migrate_legacy_worktree
from agentspace.workspace.models import (
    IsolationHandle,
    Repository,
    RepoWorkspaceInput,
    Workspace,
)
from agentspace.workspace.registry import WorkspaceRegistry

_logger = get_logger("workspace")

WorktreeFactory = Callable[[Path], GitWorktreeManager]


class WorkspaceManager:
    """Creates, reconciles and tears down multi-repository workspaces."""

    def __init__(
        self,
        settings: WorkspaceSettings | None = None,
        *,
        sessions: ChangeSessionManager | None = None,
        worktree_factory: WorktreeFactory = GitWorktreeManager,
    ) -> None:
        self._settings = settings or WorkspaceSettings()
        self._sessions = sessions or ChangeSessionManager()
        self._worktree_factory = worktree_factory

    def get_workspace_base_dir(self) -> Path:
        """Directory whose immediate subdirectories are workspace containers."""
        return self._settings.base_dir

    async def detect_backend_kind(self, repo_path: Path) -> BackendKind:
        """Pick the isolation strategy for ``repo_path``.

        A jj repository without a usable ``jj`` executable falls back to
        directory isolation when it is colocated with git.

        Raises:
            RepositoryNotFoundError: If no VCS marker is present.
            BackendUnavailableError: If jj is required but unavailable.
        """
        kind = detect_backend_kind(repo_path)
        if kind is BackendKind.CHANGE_ISOLATION and not await self._sessions.is_available():
            if (repo_path / DIRECTORY_ISOLATION_MARKER).exists():
                _logger.warning("jj_unavailable_using_git", repo=str(repo_path))
                return BackendKind.DIRECTORY_ISOLATION
            raise BackendUnavailableError(
                f"{repo_path} is a jj repository but the jj executable is unavailable"
            )
        return kind

    # --- creation -----------------------------------------------------------

    async def create_workspace(
        self,
        workspace_dir: Path,
        repos: Sequence[RepoWorkspaceInput],
        branch_name: str,
    ) -> Workspace:
        """Isolate every repository in ``repos`` under ``workspace_dir``.

        Returns:
            A Workspace with one handle per repository, in input order.

        Raises:
            NoRepositoriesError: If ``repos`` is empty.
            PartialCreationError: If any repository failed. Every handle
                created before the failure has been released and the
                container directory removed.
        """
        if not repos:
            raise NoRepositoriesError()

        session_id = uuid.uuid4().hex
        with with_session(SessionContext(session_id=session_id, workspace_dir=str(workspace_dir))):
            _logger.info(
                "creating_workspace",
                repo_count=len(repos),
                branch=branch_name,
            )
            await asyncio.to_thread(workspace_dir.mkdir, parents=True, exist_ok=True)

            handles: list[IsolationHandle] = []
            for item in repos:
                try:
                    handle = await self._isolate(workspace_dir, item, branch_name, session_id)
                except Exception as e:
                    _logger.error(
                        "workspace_repo_isolation_failed",
                        repo=item.repo.name,
                        error=str(e),
                        rolled_back=len(handles),
                    )
                    await self._rollback(handles)
                    await self._remove_empty_container(workspace_dir)
                    raise PartialCreationError(item.repo.name, e) from e
                handles.append(handle)

            _logger.info("workspace_created", repo_count=len(handles), branch=branch_name)
            return Workspace(workspace_dir=workspace_dir, handles=tuple(handles))

    async def _isolate(
        self,
        workspace_dir: Path,
        item: RepoWorkspaceInput,
        branch_name: str,
        session_id: str,
    ) -> IsolationHandle:
        repo = item.repo
        kind = await self.detect_backend_kind(repo.path)

        if kind is BackendKind.DIRECTORY_ISOLATION:
            info = await self._worktree_factory(repo.path).create_worktree(
                branch_name,
                workspace_dir / repo.name,
                base_branch=item.target_branch,
            )
            return IsolationHandle(
                repo_id=repo.id,
                repo_name=repo.name,
                source_repo_path=repo.path,
                worktree_path=info.path,
                backend_kind=kind,
                target_branch=item.target_branch,
                branch_name=branch_name,
                branch_created=info.branch_created,
            )

        change_id = await self._sessions.create_session(
            repo.path, session_id, label=f"workspace: {branch_name}"
        )
        return IsolationHandle(
            repo_id=repo.id,
            repo_name=repo.name,
            source_repo_path=repo.path,
            worktree_path=repo.path,
            backend_kind=kind,
            target_branch=item.target_branch,
            change_id=change_id,
        )

    async def _release(self, handle: IsolationHandle) -> None:
        """Undo one handle: drop its worktree (and created branch) or abandon its change."""
        if handle.backend_kind is BackendKind.DIRECTORY_ISOLATION:
            await self._worktree_factory(handle.source_repo_path).remove_worktree(
                handle.worktree_path,
                delete_branch=handle.branch_name if handle.branch_created else None,
            )
        elif handle.change_id is not None:
            await self._sessions.cleanup_session(handle.source_repo_path, handle.change_id)

    async def _rollback(self, handles: Sequence[IsolationHandle]) -> None:
        if not handles:
            return
        _logger.warning("workspace_rollback_started", handle_count=len(handles))
        for handle in reversed(handles):
            try:
                await self._release(handle)
            except (VcsError, OSError) as e:
                _logger.error(
                    "workspace_rollback_step_failed",
                    repo=handle.repo_name,
                    backend=handle.backend_kind.value,
                    error=str(e),
                )
        _logger.info("workspace_rollback_completed", handle_count=len(handles))

    async def _remove_empty_container(self, workspace_dir: Path) -> None:
        try:
            await asyncio.to_thread(workspace_dir.rmdir)
        except OSError as e:
            _logger.debug("workspace_dir_remove_failed", path=str(workspace_dir), error=str(e))

    async def _remove_container(self, workspace_dir: Path) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, workspace_dir)
        except OSError as e:
            _logger.debug("workspace_dir_remove_failed", path=str(workspace_dir), error=str(e))

    # --- reconciliation -----------------------------------------------------

    async def migrate_legacy_worktree(self, workspace_dir: Path, repo: Repository) -> bool:
        """Upgrade ``workspace_dir`` from the legacy single-worktree layout if needed."""
        return await migrate_legacy_worktree(
            workspace_dir, repo, self._worktree_factory(repo.path)
        )

    async def ensure_workspace_exists(
        self,
        workspace_dir: Path,
        repos: Sequence[Repository],
        branch_name: str,
    ) -> None:
        """Recreate whatever a cold restart lost; a no-op when everything is present.

        Raises:
            NoRepositoriesError: If ``repos`` is empty.
            WorkspaceError: If a repository cannot be reconciled.
        """
        if not repos:
            raise NoRepositoriesError()

        try:
            if len(repos) == 1 and await self.migrate_legacy_worktree(workspace_dir, repos[0]):
                return
            if not workspace_dir.exists():
                await asyncio.to_thread(workspace_dir.mkdir, parents=True, exist_ok=True)
        except (VcsError, OSError) as e:
            raise WorkspaceError(f"Failed to prepare workspace {workspace_dir}: {e}") from e

        for repo in repos:
            try:
                kind = await self.detect_backend_kind(repo.path)
                if kind is BackendKind.DIRECTORY_ISOLATION:
                    recreated = await self._worktree_factory(repo.path).ensure_worktree_exists(
                        branch_name, workspace_dir / repo.name
                    )
                    if recreated:
                        _logger.info(
                            "workspace_worktree_recreated",
                            workspace_dir=str(workspace_dir),
                            repo=repo.name,
                        )
            except (VcsError, OSError) as e:
                raise WorkspaceError(
                    f"Failed to ensure workspace for repo '{repo.name}': {e}"
                ) from e

    # --- cleanup ------------------------------------------------------------

    async def cleanup_workspace(self, workspace_dir: Path, repos: Sequence[Repository]) -> None:
        """Release every repository's isolation, then remove the container.

        jj changes are kept in the repository's history. Safe to call more
        than once.

        Raises:
            WorkspaceCleanupError: After all repositories were attempted, if
                any of them could not be released.
        """
        _logger.info("cleaning_up_workspace", workspace_dir=str(workspace_dir), repo_count=len(repos))
        failures: dict[str, BaseException] = {}

        for repo in repos:
            worktree_path = workspace_dir / repo.name
            try:
                kind = await self.detect_backend_kind(repo.path)
                if kind is BackendKind.DIRECTORY_ISOLATION:
                    await self._worktree_factory(repo.path).remove_worktree(worktree_path)
                else:
                    _logger.debug("change_session_retained", repo=repo.name)
            except RepositoryNotFoundError:
                # Source repository is gone; unregister via the worktree's own pointer
                _logger.warning("workspace_source_repo_missing", repo=repo.name, path=str(repo.path))
                try:
                    await GitWorktreeManager.cleanup_suspected_worktree(worktree_path)
                except (VcsError, OSError) as e:
                    failures[repo.name] = e
            except (VcsError, OSError) as e:
                _logger.warning("workspace_repo_cleanup_failed", repo=repo.name, error=str(e))
                failures[repo.name] = e

        await self._remove_container(workspace_dir)

        if failures:
            raise WorkspaceCleanupError(failures)
        _logger.info("workspace_cleaned_up", workspace_dir=str(workspace_dir))

    async def cleanup_orphan_workspaces(self, registry: WorkspaceRegistry) -> None:
        """Remove workspace containers that no live session references."""
        if orphan_cleanup_disabled(self._settings):
            _logger.info("orphan_workspace_cleanup_disabled")
            return

        base_dir = self.get_workspace_base_dir()
        if not base_dir.exists():
            _logger.debug("workspace_base_dir_missing", path=str(base_dir))
            return

        try:
            entries = await asyncio.to_thread(
                lambda: sorted(p for p in base_dir.iterdir() if p.is_dir())
            )
        except OSError as e:
            _logger.warning("workspace_base_dir_unreadable", path=str(base_dir), error=str(e))
            return

        removed = 0
        for path in entries:
            try:
                live = await registry.container_ref_exists(path)
            except Exception as e:
                _logger.warning("orphan_check_failed", path=str(path), error=str(e))
                continue
            if live:
                continue

            _logger.info("orphan_workspace_found", path=str(path))
            await self._cleanup_workspace_without_repos(path)
            removed += 1

        _logger.info("orphan_workspace_sweep_completed", scanned=len(entries), removed=removed)

    async def _cleanup_workspace_without_repos(self, workspace_dir: Path) -> None:
        """Best-effort removal of a container whose repositories are unknown."""
        # A legacy container or a stranded migration temp path is itself a worktree
        try:
            if await GitWorktreeManager.cleanup_suspected_worktree(workspace_dir):
                return
        except (VcsError, OSError) as e:
            _logger.warning("orphan_worktree_cleanup_failed", path=str(workspace_dir), error=str(e))

        try:
            children = await asyncio.to_thread(
                lambda: [c for c in workspace_dir.iterdir() if c.is_dir()]
            )
        except OSError as e:
            _logger.warning(
                "orphan_workspace_unreadable",
                path=str(workspace_dir),
                error=str(e),
            )
            await self._remove_container(workspace_dir)
            return

        for child in children:
            try:
                await GitWorktreeManager.cleanup_suspected_worktree(child)
            except (VcsError, OSError) as e:
                _logger.warning("orphan_worktree_cleanup_failed", path=str(child), error=str(e))

        await self._remove_container(workspace_dir)

    # --- change sessions across repositories --------------------------------

    def are_all_change_repos(self, repos: Sequence[Repository]) -> bool:
        return bool(repos) and all(self._sessions.is_change_repo(r.path) for r in repos)

    async def create_change_sessions(
        self,
        repos: Sequence[Repository],
        session_id: str,
    ) -> list[IsolationHandle]:
        """Start a jj session in every repository, all or nothing.

        Raises:
            NoRepositoriesError: If ``repos`` is empty.
            PartialCreationError: If any repository failed; sessions created
                before the failure have been abandoned.
        """
        if not repos:
            raise NoRepositoriesError()

        handles: list[IsolationHandle] = []
        with with_session(SessionContext(session_id=session_id)):
            for repo in repos:
                try:
                    change_id = await self._sessions.create_session(repo.path, session_id)
                except VcsError as e:
                    await self._rollback(handles)
                    raise PartialCreationError(repo.name, e) from e
                handles.append(
                    IsolationHandle(
                        repo_id=repo.id,
                        repo_name=repo.name,
                        source_repo_path=repo.path,
                        worktree_path=repo.path,
                        backend_kind=BackendKind.CHANGE_ISOLATION,
                        target_branch=repo.default_target_branch,
                        change_id=change_id,
                    )
                )
        return handles

    async def cleanup_change_sessions(self, handles: Sequence[IsolationHandle]) -> int:
        """Abandon the changes behind ``handles``; returns how many were cleaned."""
        return await self._sessions.batch_cleanup_sessions(
            (h.source_repo_path, h.change_id) for h in handles if h.change_id is not None
        )


__all__ = ["WorkspaceManager"]
