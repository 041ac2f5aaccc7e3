"""Tests for agentspace.isolation.worktree module.

These tests verify GitWorktreeManager: atomic creation, idempotent removal,
reconciliation, relocation, and cleanup of stray worktrees.

Note: These tests require git and actually create/remove worktrees inside
temporary directories.
"""

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from agentspace.isolation.worktree import (
    GitWorktreeManager,
    NotGitRepositoryError,
    WorktreeCreationError,
    WorktreeError,
    WorktreeInfo,
    WorktreeMoveError,
    WorktreeRemovalError,
)
from agentspace.vcs.errors import VcsError

Git = Callable[..., str]


# --- Fixtures ---


@pytest.fixture
def manager(temp_git_repo: Path) -> GitWorktreeManager:
    """Create a GitWorktreeManager for the temp repo."""
    return GitWorktreeManager(temp_git_repo)


@pytest.fixture
def non_git_path(tmp_path: Path) -> Path:
    """Create a non-git directory."""
    path = tmp_path / "not_a_repo"
    path.mkdir()
    return path


@pytest.fixture
def ws_dir(tmp_path: Path) -> Path:
    return tmp_path / "worktrees" / "ws-1"


def _branches(git: Git, repo: Path) -> set[str]:
    return set(git("branch", "--format=%(refname:short)", cwd=repo).split())


# --- Exception Tests ---


class TestExceptions:
    """Tests for worktree exception classes."""

    @pytest.mark.parametrize(
        "error_type",
        [WorktreeCreationError, WorktreeRemovalError, WorktreeMoveError, NotGitRepositoryError],
    )
    def test_inherits_worktree_error(self, error_type: type[Exception]) -> None:
        assert issubclass(error_type, WorktreeError)

    def test_worktree_error_is_vcs_error(self) -> None:
        with pytest.raises(VcsError):
            raise WorktreeError("test error")


# --- GitWorktreeManager Tests ---


class TestGitWorktreeManagerInit:
    """Tests for GitWorktreeManager initialization."""

    def test_initialization(self, temp_git_repo: Path) -> None:
        manager = GitWorktreeManager(temp_git_repo)
        assert manager.repo_path == temp_git_repo.resolve()

    def test_is_git_repository_true(self, temp_git_repo: Path) -> None:
        assert GitWorktreeManager(temp_git_repo).is_git_repository()

    def test_is_git_repository_false(self, non_git_path: Path) -> None:
        assert not GitWorktreeManager(non_git_path).is_git_repository()


class TestCreateWorktree:
    """Tests for create_worktree."""

    @pytest.mark.asyncio
    async def test_create_basic(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        """Creating a worktree creates its directory and branch."""
        info = await manager.create_worktree("agent/fix-login", ws_dir / "api")

        assert isinstance(info, WorktreeInfo)
        assert info.path == (ws_dir / "api").resolve()
        assert info.branch == "agent/fix-login"
        assert info.branch_created is True
        assert (info.path / ".git").is_file()
        assert info.commit == git("rev-parse", "HEAD", cwd=temp_git_repo)
        assert "agent/fix-login" in _branches(git, temp_git_repo)

    @pytest.mark.asyncio
    async def test_head_is_independent_of_source(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=info.path) == "agent/x"
        assert git("rev-parse", "--abbrev-ref", "HEAD", cwd=temp_git_repo) == "main"

    @pytest.mark.asyncio
    async def test_create_with_base_branch(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        git("checkout", "-b", "develop", cwd=temp_git_repo)
        (temp_git_repo / "dev.txt").write_text("dev\n")
        git("add", "dev.txt", cwd=temp_git_repo)
        git("commit", "-m", "Dev work", cwd=temp_git_repo)
        git("checkout", "main", cwd=temp_git_repo)

        info = await manager.create_worktree("agent/on-dev", ws_dir / "api", base_branch="develop")
        assert (info.path / "dev.txt").exists()

    @pytest.mark.asyncio
    async def test_existing_branch_is_checked_out(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        git("branch", "agent/existing", cwd=temp_git_repo)
        info = await manager.create_worktree("agent/existing", ws_dir / "api")
        assert info.branch_created is False

    @pytest.mark.asyncio
    async def test_missing_branch_without_create(
        self, manager: GitWorktreeManager, ws_dir: Path
    ) -> None:
        with pytest.raises(WorktreeCreationError):
            await manager.create_worktree("agent/nope", ws_dir / "api", create_branch=False)
        assert not (ws_dir / "api").exists()

    @pytest.mark.asyncio
    async def test_create_not_git_repo(self, non_git_path: Path, ws_dir: Path) -> None:
        manager = GitWorktreeManager(non_git_path)
        with pytest.raises(NotGitRepositoryError):
            await manager.create_worktree("agent/x", ws_dir / "api")

    @pytest.mark.asyncio
    async def test_create_path_exists(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        target = ws_dir / "api"
        target.mkdir(parents=True)
        (target / "keep.txt").write_text("x")

        with pytest.raises(WorktreeCreationError, match="already exists"):
            await manager.create_worktree("agent/x", target)

        assert (target / "keep.txt").exists()
        assert "agent/x" not in _branches(git, temp_git_repo)

    @pytest.mark.asyncio
    async def test_failed_create_leaves_nothing(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        """A bad base branch fails without leaving a directory or branch behind."""
        with pytest.raises(WorktreeCreationError):
            await manager.create_worktree("agent/x", ws_dir / "api", base_branch="no-such-base")

        assert not (ws_dir / "api").exists()
        assert "agent/x" not in _branches(git, temp_git_repo)
        assert await manager.list_worktrees() == []


class TestRemoveWorktree:
    """Tests for remove_worktree."""

    @pytest.mark.asyncio
    async def test_remove_existing_with_branch(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        await manager.remove_worktree(info.path, delete_branch="agent/x")

        assert not info.path.exists()
        assert "agent/x" not in _branches(git, temp_git_repo)
        assert await manager.list_worktrees() == []

    @pytest.mark.asyncio
    async def test_remove_keeps_branch_by_default(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path, git: Git
    ) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        await manager.remove_worktree(info.path)
        assert "agent/x" in _branches(git, temp_git_repo)

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, manager: GitWorktreeManager, ws_dir: Path) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        await manager.remove_worktree(info.path, delete_branch="agent/x")
        await manager.remove_worktree(info.path, delete_branch="agent/x")
        assert not info.path.exists()

    @pytest.mark.asyncio
    async def test_remove_dirty_worktree(self, manager: GitWorktreeManager, ws_dir: Path) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        (info.path / "scratch.txt").write_text("uncommitted")
        await manager.remove_worktree(info.path)
        assert not info.path.exists()


class TestEnsureWorktreeExists:
    """Tests for ensure_worktree_exists."""

    @pytest.mark.asyncio
    async def test_present_is_untouched(self, manager: GitWorktreeManager, ws_dir: Path) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        (info.path / "work.txt").write_text("in progress")

        assert await manager.ensure_worktree_exists("agent/x", info.path) is False
        assert (info.path / "work.txt").read_text() == "in progress"

    @pytest.mark.asyncio
    async def test_missing_is_recreated_on_existing_branch(
        self, manager: GitWorktreeManager, ws_dir: Path
    ) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        shutil.rmtree(info.path)

        assert await manager.ensure_worktree_exists("agent/x", info.path) is True
        assert (info.path / ".git").is_file()
        assert await manager.is_registered(info.path)

    @pytest.mark.asyncio
    async def test_never_created(self, manager: GitWorktreeManager, ws_dir: Path) -> None:
        assert await manager.ensure_worktree_exists("agent/new", ws_dir / "api") is True
        assert await manager.is_registered(ws_dir / "api")


class TestMoveAndList:
    """Tests for move_worktree and list_worktrees."""

    @pytest.mark.asyncio
    async def test_list_excludes_main_checkout(
        self, manager: GitWorktreeManager, ws_dir: Path
    ) -> None:
        assert await manager.list_worktrees() == []
        info = await manager.create_worktree("agent/x", ws_dir / "api")

        [listed] = await manager.list_worktrees()
        assert listed.path == info.path
        assert listed.branch == "agent/x"
        assert listed.commit == info.commit

    @pytest.mark.asyncio
    async def test_move(self, manager: GitWorktreeManager, ws_dir: Path, tmp_path: Path) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        destination = tmp_path / "moved"

        await manager.move_worktree(info.path, destination)

        assert not info.path.exists()
        assert await manager.is_registered(destination)
        assert not await manager.is_registered(info.path)

    @pytest.mark.asyncio
    async def test_move_unknown_worktree(self, manager: GitWorktreeManager, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(WorktreeMoveError):
            await manager.move_worktree(plain, tmp_path / "elsewhere")


class TestCleanupSuspectedWorktree:
    """Tests for the classmethod used when the source repository is unknown."""

    @pytest.mark.asyncio
    async def test_real_worktree(self, manager: GitWorktreeManager, ws_dir: Path) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")

        assert await GitWorktreeManager.cleanup_suspected_worktree(info.path) is True
        assert not info.path.exists()
        assert await manager.list_worktrees() == []

    @pytest.mark.asyncio
    async def test_plain_directory_untouched(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        assert await GitWorktreeManager.cleanup_suspected_worktree(plain) is False
        assert plain.exists()

    @pytest.mark.asyncio
    async def test_main_repository_gone(
        self, manager: GitWorktreeManager, temp_git_repo: Path, ws_dir: Path
    ) -> None:
        info = await manager.create_worktree("agent/x", ws_dir / "api")
        shutil.rmtree(temp_git_repo)

        assert await GitWorktreeManager.cleanup_suspected_worktree(info.path) is True
        assert not info.path.exists()
