"""Tests for the orphan workspace sweep and the static registry."""

from pathlib import Path

import pytest

from agentspace.core.config import ORPHAN_CLEANUP_ENV_VAR, WorkspaceSettings
from agentspace.isolation.worktree import GitWorktreeManager
from agentspace.workspace.manager import WorkspaceManager
from agentspace.workspace.models import Repository
from agentspace.workspace.registry import StaticWorkspaceRegistry, WorkspaceRegistry


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    path = tmp_path / "worktrees"
    path.mkdir()
    return path


@pytest.fixture
def manager(base_dir: Path, fake_sessions) -> WorkspaceManager:  # type: ignore[no-untyped-def]
    return WorkspaceManager(WorkspaceSettings(base_dir=base_dir), sessions=fake_sessions)


class ExplodingRegistry:
    """Registry whose lookups fail for one container."""

    def __init__(self, broken: Path) -> None:
        self.broken = broken.resolve()

    async def container_ref_exists(self, path: Path) -> bool:
        if path.resolve() == self.broken:
            raise ConnectionError("registry offline")
        return False

    async def get_project_repos(self, project_id: str) -> list[Repository]:
        return []


class TestOrphanSweep:
    """Tests for WorkspaceManager.cleanup_orphan_workspaces."""

    @pytest.mark.asyncio
    async def test_removes_only_unreferenced(
        self, manager: WorkspaceManager, base_dir: Path, temp_git_repo: Path
    ) -> None:
        worktrees = GitWorktreeManager(temp_git_repo)
        live_a = base_dir / "live-a"
        live_b = base_dir / "live-b"
        orphan = base_dir / "orphan"
        await worktrees.create_worktree("agent/a", live_a / "api")
        live_b.mkdir()
        await worktrees.create_worktree("agent/orphan", orphan / "api")
        (orphan / "scratch").mkdir()
        (base_dir / "stray-file.txt").write_text("not a workspace")

        registry = StaticWorkspaceRegistry(containers=[live_a, live_b])
        await manager.cleanup_orphan_workspaces(registry)

        assert live_a.is_dir()
        assert live_b.is_dir()
        assert not orphan.exists()
        assert (base_dir / "stray-file.txt").exists()
        assert [wt.path for wt in await worktrees.list_worktrees()] == [(live_a / "api").resolve()]

    @pytest.mark.asyncio
    async def test_legacy_container_worktree_unregistered(
        self,
        manager: WorkspaceManager,
        base_dir: Path,
        temp_git_repo: Path,
        git,  # type: ignore[no-untyped-def]
    ) -> None:
        """A container that is itself a worktree is removed through git."""
        worktrees = GitWorktreeManager(temp_git_repo)
        legacy = base_dir / "legacy"
        await worktrees.create_worktree("agent/legacy", legacy)

        await manager.cleanup_orphan_workspaces(StaticWorkspaceRegistry())

        assert not legacy.exists()
        assert await worktrees.list_worktrees() == []
        # Branch is no longer checked out anywhere
        git("branch", "-D", "agent/legacy", cwd=temp_git_repo)

    @pytest.mark.asyncio
    async def test_registry_error_skips_entry(
        self, manager: WorkspaceManager, base_dir: Path
    ) -> None:
        unknown = base_dir / "unknown"
        orphan = base_dir / "orphan"
        unknown.mkdir()
        orphan.mkdir()

        await manager.cleanup_orphan_workspaces(ExplodingRegistry(unknown))

        assert unknown.is_dir()
        assert not orphan.exists()

    @pytest.mark.asyncio
    async def test_missing_base_dir(self, fake_sessions, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
        manager = WorkspaceManager(
            WorkspaceSettings(base_dir=tmp_path / "nowhere"), sessions=fake_sessions
        )
        await manager.cleanup_orphan_workspaces(StaticWorkspaceRegistry())
        assert not (tmp_path / "nowhere").exists()

    @pytest.mark.asyncio
    async def test_disabled_by_env_touches_nothing(
        self, manager: WorkspaceManager, base_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        orphan = base_dir / "orphan"
        orphan.mkdir()
        monkeypatch.setenv(ORPHAN_CLEANUP_ENV_VAR, "1")

        def _no_fs(*args: object, **kwargs: object) -> None:
            raise AssertionError("filesystem accessed while sweep disabled")

        monkeypatch.setattr(Path, "iterdir", _no_fs)
        monkeypatch.setattr(Path, "exists", _no_fs)
        await manager.cleanup_orphan_workspaces(StaticWorkspaceRegistry())
        monkeypatch.undo()

        assert orphan.is_dir()

    @pytest.mark.asyncio
    async def test_disabled_by_setting(self, fake_sessions, base_dir: Path) -> None:  # type: ignore[no-untyped-def]
        orphan = base_dir / "orphan"
        orphan.mkdir()
        manager = WorkspaceManager(
            WorkspaceSettings(base_dir=base_dir, disable_orphan_cleanup=True),
            sessions=fake_sessions,
        )
        await manager.cleanup_orphan_workspaces(StaticWorkspaceRegistry())
        assert orphan.is_dir()


class TestStaticWorkspaceRegistry:
    """Tests for the in-memory registry."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(StaticWorkspaceRegistry(), WorkspaceRegistry)

    @pytest.mark.asyncio
    async def test_container_lookup_normalizes_paths(self, tmp_path: Path) -> None:
        registry = StaticWorkspaceRegistry(containers=[tmp_path / "a" / ".." / "ws"])
        assert await registry.container_ref_exists(tmp_path / "ws")
        registry.remove_container(tmp_path / "ws")
        assert not await registry.container_ref_exists(tmp_path / "ws")
        registry.add_container(tmp_path / "ws")
        assert await registry.container_ref_exists(tmp_path / "ws")

    @pytest.mark.asyncio
    async def test_from_yaml(self, tmp_path: Path) -> None:
        registry_file = tmp_path / "registry.yaml"
        registry_file.write_text(
            f"""
containers:
  - {tmp_path / "ws-1"}
projects:
  web:
    - id: repo-api
      name: api
      path: {tmp_path / "api"}
      default_target_branch: trunk
"""
        )
        registry = StaticWorkspaceRegistry.from_yaml(registry_file)

        assert await registry.container_ref_exists(tmp_path / "ws-1")
        [repo] = await registry.get_project_repos("web")
        assert repo == Repository(id="repo-api", name="api", path=tmp_path / "api", default_target_branch="trunk")
        assert await registry.get_project_repos("unknown") == []

    def test_from_yaml_empty(self, tmp_path: Path) -> None:
        registry_file = tmp_path / "registry.yaml"
        registry_file.write_text("")
        assert isinstance(StaticWorkspaceRegistry.from_yaml(registry_file), StaticWorkspaceRegistry)
