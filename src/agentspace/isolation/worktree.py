"""Git worktree lifecycle for directory isolation.

Each workspace repository gets its own linked worktree: a separate working
directory, index and HEAD on a dedicated branch, so concurrent agent sessions
never see each other's uncommitted state.

Creation is atomic from the caller's perspective. Either the worktree
directory and its branch both exist on return, or nothing new is left
behind. Removal is idempotent.

Example:
    manager = GitWorktreeManager(repo_path)
    info = await manager.create_worktree("agent/fix-login", ws_dir / "api", "main")
    ...
    await manager.remove_worktree(info.path, delete_branch=info.branch)
"""

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from agentspace.core.logging import get_logger
from agentspace.vcs.errors import BackendUnavailableError, VcsError

_logger = get_logger("isolation.worktree")

# `git worktree move` appeared in 2.17
MIN_GIT_VERSION: Final[tuple[int, int]] = (2, 17)

GITDIR_PREFIX: Final[str] = "gitdir:"


# --- Exceptions ---


class WorktreeError(VcsError):
    """Base exception for worktree operations."""


class WorktreeCreationError(WorktreeError):
    """Raised when a worktree cannot be created."""


class WorktreeRemovalError(WorktreeError):
    """Raised when a worktree cannot be removed."""


class WorktreeMoveError(WorktreeError):
    """Raised when a worktree cannot be relocated."""


class NotGitRepositoryError(WorktreeError):
    """Raised when an operation is attempted outside a git repository."""


# --- Data Classes ---


@dataclass
class WorktreeInfo:
    """Information about a linked worktree."""

    path: Path
    """Filesystem path to the worktree directory."""

    branch: str | None
    """Branch checked out in the worktree (None when detached)."""

    commit: str
    """Commit SHA at the worktree's HEAD."""

    branch_created: bool = False
    """Whether creating this worktree also created its branch."""


# --- GitWorktreeManager Implementation ---


class GitWorktreeManager:
    """Manages linked worktrees of one source repository.

    All git invocations are asynchronous subprocesses; filesystem removal is
    pushed to a worker thread.
    """

    def __init__(self, repo_path: Path) -> None:
        """Initialize the worktree manager.

        Args:
            repo_path: Path to the source repository root.
        """
        self._repo_path = repo_path.resolve()
        self._git_verified = False

    @property
    def repo_path(self) -> Path:
        return self._repo_path

    def is_git_repository(self) -> bool:
        """Check whether the managed path is a git repository."""
        return (self._repo_path / ".git").exists()

    async def _run_git(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
    ) -> tuple[int, str, str]:
        """Run a git command asynchronously.

        Uses asyncio.create_subprocess_exec for safe command execution
        without shell interpolation.

        Args:
            *args: Git command arguments (without 'git' prefix).
            cwd: Working directory (defaults to repo_path).
            check: If True, raise on non-zero exit code.

        Returns:
            Tuple of (exit_code, stdout, stderr).

        Raises:
            NotGitRepositoryError: If the working directory does not exist.
            BackendUnavailableError: If the git executable is missing.
            WorktreeError: If check=True and the command fails.
        """
        workdir = cwd or self._repo_path
        if not workdir.is_dir():
            raise NotGitRepositoryError(f"Directory does not exist: {workdir}")

        cmd = ["git", *args]
        _logger.debug("git_command", args=args, cwd=str(workdir))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=workdir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError("git executable not found") from e
        stdout_bytes, stderr_bytes = await proc.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        exit_code = proc.returncode or 0

        if check and exit_code != 0:
            _logger.warning(
                "git_command_failed",
                args=args,
                exit_code=exit_code,
                stderr=stderr[:500],
            )
            raise WorktreeError(f"Git command failed: {' '.join(args)}\n{stderr}")

        return exit_code, stdout, stderr

    async def _verify_git_version(self) -> None:
        """Verify the git version supports every worktree operation used here.

        Raises:
            BackendUnavailableError: If git is too old.
        """
        if self._git_verified:
            return

        _, stdout, _ = await self._run_git("--version")
        try:
            # "git version 2.39.2" -> (2, 39)
            version_parts = stdout.split()[2].split(".")
            major = int(version_parts[0])
            minor = int(version_parts[1].split("-")[0])
        except (ValueError, IndexError) as e:
            _logger.warning("git_version_parse_failed", output=stdout, error=str(e))
        else:
            if (major, minor) < MIN_GIT_VERSION:
                raise BackendUnavailableError(
                    f"Git version {major}.{minor} is too old. "
                    f"Worktrees require git {MIN_GIT_VERSION[0]}.{MIN_GIT_VERSION[1]}+"
                )
        self._git_verified = True

    async def _branch_exists(self, branch: str) -> bool:
        exit_code, _, _ = await self._run_git(
            "show-ref", "--verify", "--quiet", f"refs/heads/{branch}",
            check=False,
        )
        return exit_code == 0

    async def _remove_tree(self, path: Path) -> None:
        await asyncio.to_thread(shutil.rmtree, path)

    async def prune(self) -> None:
        """Drop metadata for worktrees whose directories have vanished."""
        if self.is_git_repository():
            await self._run_git("worktree", "prune", check=False)

    async def create_worktree(
        self,
        branch_name: str,
        worktree_path: Path,
        base_branch: str | None = None,
        create_branch: bool = True,
    ) -> WorktreeInfo:
        """Create a linked worktree at ``worktree_path`` on ``branch_name``.

        An existing branch is checked out as-is; otherwise the branch is
        created from ``base_branch`` (default: HEAD) when ``create_branch``.

        Raises:
            NotGitRepositoryError: If the source is not a git repository.
            WorktreeCreationError: If the path is taken or git refuses. Any
                directory or branch created along the way is removed first.
        """
        worktree_path = worktree_path.resolve()
        _logger.info(
            "creating_worktree",
            repo=str(self._repo_path),
            path=str(worktree_path),
            branch=branch_name,
            base_branch=base_branch,
        )

        if not self.is_git_repository():
            _logger.error("not_git_repo", path=str(self._repo_path))
            raise NotGitRepositoryError(f"Not a git repository: {self._repo_path}")

        await self._verify_git_version()

        if worktree_path.exists():
            _logger.error("worktree_path_exists", path=str(worktree_path))
            raise WorktreeCreationError(f"Worktree path already exists: {worktree_path}")

        branch_existed = await self._branch_exists(branch_name)
        if not branch_existed and not create_branch:
            raise WorktreeCreationError(f"Branch '{branch_name}' does not exist")

        worktree_path.parent.mkdir(parents=True, exist_ok=True)

        if branch_existed:
            cmd_args = ["worktree", "add", str(worktree_path), branch_name]
        else:
            cmd_args = ["worktree", "add", "-b", branch_name, str(worktree_path)]
            if base_branch:
                cmd_args.append(base_branch)

        try:
            await self._run_git(*cmd_args)
            _, commit, _ = await self._run_git("rev-parse", "HEAD", cwd=worktree_path)
        except WorktreeError as e:
            await self._discard_partial(
                worktree_path, None if branch_existed else branch_name
            )
            raise WorktreeCreationError(str(e)) from e

        _logger.info(
            "worktree_created",
            path=str(worktree_path),
            branch=branch_name,
            commit=commit,
            branch_created=not branch_existed,
        )
        return WorktreeInfo(
            path=worktree_path,
            branch=branch_name,
            commit=commit,
            branch_created=not branch_existed,
        )

    async def _discard_partial(self, worktree_path: Path, created_branch: str | None) -> None:
        """Undo whatever a failed creation left behind; never raises."""
        try:
            if worktree_path.exists():
                await self._remove_tree(worktree_path)
            await self.prune()
            if created_branch and await self._branch_exists(created_branch):
                await self._run_git("branch", "-D", created_branch, check=False)
        except (OSError, VcsError) as e:
            _logger.warning(
                "worktree_partial_cleanup_failed",
                path=str(worktree_path),
                error=str(e),
            )

    async def ensure_worktree_exists(self, branch_name: str, worktree_path: Path) -> bool:
        """Make sure a registered worktree for ``branch_name`` sits at ``worktree_path``.

        Returns:
            False when the worktree was already present (nothing touched),
            True when it had to be recreated.
        """
        worktree_path = worktree_path.resolve()
        if (worktree_path / ".git").exists() and await self.is_registered(worktree_path):
            _logger.debug("worktree_present", path=str(worktree_path))
            return False

        _logger.info("recreating_worktree", path=str(worktree_path), branch=branch_name)
        await self.prune()
        if worktree_path.exists():
            # Unregistered leftovers cannot be reattached
            await self._remove_tree(worktree_path)
            await self.prune()
        await self.create_worktree(branch_name, worktree_path, create_branch=True)
        return True

    async def remove_worktree(
        self,
        worktree_path: Path,
        delete_branch: str | None = None,
    ) -> None:
        """Remove a worktree and, optionally, a branch.

        Safe to call repeatedly: a missing directory only prunes stale
        metadata.

        Args:
            worktree_path: Path to the worktree to remove.
            delete_branch: Branch to delete afterwards, if it still exists.

        Raises:
            WorktreeRemovalError: If the directory cannot be removed at all.
        """
        worktree_path = worktree_path.resolve()
        _logger.info(
            "removing_worktree",
            path=str(worktree_path),
            delete_branch=delete_branch,
        )

        if not worktree_path.exists():
            _logger.debug("worktree_already_removed", path=str(worktree_path))
            await self.prune()
        else:
            try:
                await self._run_git("worktree", "remove", "--force", str(worktree_path))
            except WorktreeError:
                _logger.warning(
                    "git_worktree_remove_failed_trying_manual",
                    path=str(worktree_path),
                )
                try:
                    await self._remove_tree(worktree_path)
                except OSError as e:
                    _logger.error("worktree_removal_failed", path=str(worktree_path), error=str(e))
                    raise WorktreeRemovalError(f"Failed to remove worktree: {e}") from e
                await self.prune()

        if delete_branch and self.is_git_repository() and await self._branch_exists(delete_branch):
            exit_code, _, stderr = await self._run_git("branch", "-D", delete_branch, check=False)
            if exit_code == 0:
                _logger.info("branch_deleted", branch=delete_branch)
            else:
                _logger.warning("branch_deletion_failed", branch=delete_branch, error=stderr)

        _logger.info("worktree_removed", path=str(worktree_path))

    async def move_worktree(self, source: Path, destination: Path) -> None:
        """Relocate a linked worktree, keeping git's metadata in sync.

        Raises:
            WorktreeMoveError: If git refuses the move.
        """
        source = source.resolve()
        destination = destination.resolve()
        _logger.info("moving_worktree", source=str(source), destination=str(destination))
        await self._verify_git_version()
        try:
            await self._run_git("worktree", "move", str(source), str(destination))
        except WorktreeError as e:
            raise WorktreeMoveError(str(e)) from e

    async def list_worktrees(self) -> list[WorktreeInfo]:
        """List linked worktrees (the primary checkout excluded)."""
        _, stdout, _ = await self._run_git("worktree", "list", "--porcelain")

        worktrees: list[WorktreeInfo] = []
        current_path: Path | None = None
        current_branch: str | None = None
        current_commit = ""

        def _flush() -> None:
            if current_path is not None and current_path != self._repo_path:
                worktrees.append(
                    WorktreeInfo(path=current_path, branch=current_branch, commit=current_commit)
                )

        for line in stdout.split("\n"):
            line = line.strip()
            if line.startswith("worktree "):
                _flush()
                current_path = Path(line[9:]).resolve()
                current_branch = None
                current_commit = ""
            elif line.startswith("HEAD "):
                current_commit = line[5:]
            elif line.startswith("branch refs/heads/"):
                current_branch = line[18:]
        _flush()

        _logger.debug("worktrees_found", count=len(worktrees))
        return worktrees

    async def is_registered(self, worktree_path: Path) -> bool:
        """Whether git still tracks ``worktree_path`` as a linked worktree."""
        target = worktree_path.resolve()
        return any(w.path == target for w in await self.list_worktrees())

    @classmethod
    async def cleanup_suspected_worktree(cls, path: Path) -> bool:
        """Remove ``path`` if it looks like a linked worktree.

        Worktrees carry a ``.git`` file pointing at
        ``<main>/.git/worktrees/<id>``; the main repository is derived from
        it so git can unregister the worktree as well.

        Returns:
            True if ``path`` was a worktree and has been removed.
        """
        git_file = path / ".git"
        if not git_file.is_file():
            return False

        content = (await asyncio.to_thread(git_file.read_text)).strip()
        if not content.startswith(GITDIR_PREFIX):
            return False

        gitdir = Path(content[len(GITDIR_PREFIX):].strip())
        if not gitdir.is_absolute():
            gitdir = (path / gitdir).resolve()
        common_dir = gitdir.parent.parent

        if common_dir.name == ".git" and common_dir.is_dir():
            await cls(common_dir.parent).remove_worktree(path)
        else:
            _logger.debug("suspected_worktree_main_repo_missing", path=str(path))
            await asyncio.to_thread(shutil.rmtree, path)

        _logger.info("suspected_worktree_removed", path=str(path))
        return True


__all__ = [
    "GitWorktreeManager",
    "NotGitRepositoryError",
    "WorktreeCreationError",
    "WorktreeError",
    "WorktreeInfo",
    "WorktreeMoveError",
    "WorktreeRemovalError",
]
