"""Backend selection: explicit kind or on-disk marker detection.

Detection fails closed. A directory with neither marker raises
RepositoryNotFoundError instead of guessing a backend.
"""

from __future__ import annotations

from pathlib import Path

from agentspace.vcs.base import BackendKind, VcsBackend
from agentspace.vcs.errors import RepositoryNotFoundError
from agentspace.vcs.git import GitRepository
from agentspace.vcs.jj import JujutsuRepository
from agentspace.vcs.jj_cli import JujutsuCli

CHANGE_ISOLATION_MARKER = ".jj"
DIRECTORY_ISOLATION_MARKER = ".git"


def detect_backend_kind(path: Path) -> BackendKind:
    """Classify a repository by its metadata marker.

    ``.jj`` is checked first: colocated jj repositories also carry ``.git``.
    ``.git`` may be a directory (primary checkout) or a file (linked worktree).

    Raises:
        RepositoryNotFoundError: If neither marker is present.
    """
    if (path / CHANGE_ISOLATION_MARKER).is_dir():
        return BackendKind.CHANGE_ISOLATION
    if (path / DIRECTORY_ISOLATION_MARKER).exists():
        return BackendKind.DIRECTORY_ISOLATION
    raise RepositoryNotFoundError(path, "no .jj or .git metadata")


async def create_backend(
    kind: BackendKind,
    path: Path,
    *,
    jj_cli: JujutsuCli | None = None,
) -> VcsBackend:
    """Open the backend of ``kind`` rooted at ``path``."""
    if kind is BackendKind.CHANGE_ISOLATION:
        return await JujutsuRepository.open(path, jj_cli)
    return await GitRepository.open(path)


async def auto_detect(path: Path, *, jj_cli: JujutsuCli | None = None) -> VcsBackend:
    """Detect the backend kind at ``path`` and open it."""
    return await create_backend(detect_backend_kind(path), path, jj_cli=jj_cli)


__all__ = [
    "CHANGE_ISOLATION_MARKER",
    "DIRECTORY_ISOLATION_MARKER",
    "auto_detect",
    "create_backend",
    "detect_backend_kind",
]
