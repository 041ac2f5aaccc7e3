"""Pytest fixtures for agentspace tests."""

import logging
import subprocess
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Generator

import pytest
import structlog

from agentspace.vcs.errors import VcsError
from agentspace.vcs.types import ChangeId
from agentspace.workspace.models import Repository


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI option state before and after each test."""
    from agentspace.cli import helpers as cli_helpers

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture(autouse=True)
def clear_orphan_cleanup_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the operator kill switch from leaking in from the environment."""
    monkeypatch.delenv("DISABLE_WORKTREE_ORPHAN_CLEANUP", raising=False)


def _git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git() -> Callable[..., str]:
    """Run git in a directory and return its stdout: ``git("status", cwd=path)``."""
    return _git


@pytest.fixture
def git_repo_factory(tmp_path: Path) -> Callable[[str], Path]:
    """Create source repositories on branch ``main`` with one commit.

    Returns:
        A function taking a repository name and returning its path.
    """

    def _make(name: str) -> Path:
        repo_path = tmp_path / "src" / name
        repo_path.mkdir(parents=True)
        _git("init", cwd=repo_path)
        _git("symbolic-ref", "HEAD", "refs/heads/main", cwd=repo_path)
        _git("config", "user.email", "test@example.com", cwd=repo_path)
        _git("config", "user.name", "Test User", cwd=repo_path)
        _git("config", "commit.gpgsign", "false", cwd=repo_path)
        (repo_path / "README.md").write_text(f"# {name}\n")
        _git("add", "README.md", cwd=repo_path)
        _git("commit", "-m", "Initial commit", cwd=repo_path)
        return repo_path.resolve()

    return _make


@pytest.fixture
def temp_git_repo(git_repo_factory: Callable[[str], Path]) -> Path:
    """A single source repository named ``api``."""
    return git_repo_factory("api")


@pytest.fixture
def jj_repo_factory(tmp_path: Path) -> Callable[[str], Path]:
    """Create directories that look like jj repositories (a ``.jj`` directory)."""

    def _make(name: str) -> Path:
        repo_path = tmp_path / "src" / name
        (repo_path / ".jj").mkdir(parents=True)
        return repo_path.resolve()

    return _make


def repository(path: Path, target: str = "main") -> Repository:
    return Repository(id=f"repo-{path.name}", name=path.name, path=path, default_target_branch=target)


@pytest.fixture
def make_repository() -> Callable[..., Repository]:
    """Build a Repository record for a local path."""
    return repository


class FakeChangeSessions:
    """In-memory stand-in for ChangeSessionManager.

    Records every call; ``fail_on`` makes create_session fail for a path.
    """

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.fail_on: set[Path] = set()
        self.created: list[tuple[Path, str, str | None]] = []
        self.abandoned: list[tuple[Path, str]] = []
        self._counter = 0

    async def is_available(self) -> bool:
        return self.available

    def is_change_repo(self, repo_path: Path) -> bool:
        return (repo_path / ".jj").is_dir()

    async def create_session(
        self,
        repo_path: Path,
        session_id: str,
        base_change: str | None = None,
        label: str | None = None,
    ) -> ChangeId:
        if repo_path in self.fail_on:
            raise VcsError(f"jj new failed in {repo_path}")
        self._counter += 1
        change_id = ChangeId(f"change{self._counter:04d}")
        self.created.append((repo_path, change_id, label))
        return change_id

    async def cleanup_session(self, repo_path: Path, change_id: str) -> None:
        # Already-abandoned changes count as clean
        if (repo_path, change_id) not in self.abandoned:
            self.abandoned.append((repo_path, change_id))

    async def batch_cleanup_sessions(self, sessions: Iterable[tuple[Path, str]]) -> int:
        cleaned = 0
        for repo_path, change_id in sessions:
            try:
                await self.cleanup_session(repo_path, change_id)
            except VcsError:
                continue
            cleaned += 1
        return cleaned


@pytest.fixture
def fake_sessions() -> FakeChangeSessions:
    return FakeChangeSessions()
