"""Upgrade of single-repository workspaces from the legacy on-disk layout.

Older workspaces *were* the repository's linked worktree, with
``workspace_dir/.git`` as a file. The current layout nests one worktree per
repository under ``workspace_dir/{repo.name}``. A directory cannot be moved
into its own subdirectory, so the worktree takes a detour through a sibling
temporary path.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

from agentspace.core.logging import get_logger
from agentspace.isolation.worktree import GitWorktreeManager, WorktreeError
from agentspace.workspace.exceptions import MigrationError
from agentspace.workspace.models import Repository

_logger = get_logger("workspace.migration")

MIGRATION_SUFFIX = "-migrating"


def migration_temp_path(workspace_dir: Path) -> Path:
    return workspace_dir.with_name(f"{workspace_dir.name}{MIGRATION_SUFFIX}")


def is_legacy_layout(workspace_dir: Path, repo: Repository) -> bool:
    """Whether ``workspace_dir`` is itself a legacy worktree for ``repo``.

    A ``.git`` *directory* would mean a primary checkout, which is never
    migrated.
    """
    return (
        workspace_dir.is_dir()
        and (workspace_dir / ".git").is_file()
        and not (workspace_dir / repo.name).exists()
    )


async def migrate_legacy_worktree(
    workspace_dir: Path,
    repo: Repository,
    worktrees: GitWorktreeManager,
) -> bool:
    """Move a legacy worktree into ``workspace_dir/{repo.name}``.

    Returns:
        True if a migration was performed, False if none was needed.

    Raises:
        MigrationError: If a move fails. When the final move fails the
            worktree is left at the temporary path, where the orphan sweep
            will find it.
    """
    if not is_legacy_layout(workspace_dir, repo):
        return False

    temp_path = migration_temp_path(workspace_dir)
    target = workspace_dir / repo.name
    _logger.info(
        "legacy_workspace_migration_started",
        workspace_dir=str(workspace_dir),
        repo=repo.name,
        temp_path=str(temp_path),
    )

    if temp_path.exists():
        raise MigrationError(f"Migration temp path already exists: {temp_path}")

    try:
        await worktrees.move_worktree(workspace_dir, temp_path)
    except WorktreeError as e:
        raise MigrationError(f"Failed to move legacy worktree aside: {e}") from e

    await asyncio.to_thread(workspace_dir.mkdir, parents=True, exist_ok=True)

    try:
        await worktrees.move_worktree(temp_path, target)
    except WorktreeError as e:
        _logger.error(
            "legacy_workspace_migration_failed",
            workspace_dir=str(workspace_dir),
            temp_path=str(temp_path),
            error=str(e),
        )
        raise MigrationError(
            f"Failed to move worktree from {temp_path} to {target}: {e}"
        ) from e

    if temp_path.exists():
        await asyncio.to_thread(shutil.rmtree, temp_path)

    _logger.info(
        "legacy_workspace_migrated",
        workspace_dir=str(workspace_dir),
        worktree_path=str(target),
    )
    return True


__all__ = [
    "MIGRATION_SUFFIX",
    "is_legacy_layout",
    "migrate_legacy_worktree",
    "migration_temp_path",
]
