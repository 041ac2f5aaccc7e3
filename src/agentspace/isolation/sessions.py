"""Change-isolation sessions on jj.

A session is a logical change created in place in the repository, with no
copied working tree. Several sessions can share one directory because jj
tracks them as distinct changes. This module only asks jj to create, switch
and abandon them; jj does the actual separation.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from agentspace.core.logging import get_logger
from agentspace.vcs.errors import InvalidChangeIdError, RepositoryNotFoundError, VcsError
from agentspace.vcs.jj_cli import JjChange, JujutsuCli
from agentspace.vcs.types import ChangeId

_logger = get_logger("isolation.sessions")

SESSION_MARKER = "agent session"


@dataclass(frozen=True)
class SessionInfo:
    """A change that belongs to an agent session."""

    change_id: ChangeId
    description: str
    is_empty: bool
    has_conflict: bool

    @classmethod
    def from_change(cls, change: JjChange) -> SessionInfo:
        return cls(
            change_id=ChangeId(change.change_id),
            description=change.description,
            is_empty=change.is_empty,
            has_conflict=change.has_conflict,
        )


def session_description(session_id: str, label: str | None = None) -> str:
    """Human-readable change description that embeds the session id."""
    if label:
        return f"{label} (agent session {session_id})"
    return f"Agent session {session_id}"


class ChangeSessionManager:
    """Creates, switches and abandons per-session logical changes."""

    def __init__(self, cli: JujutsuCli | None = None) -> None:
        self._cli = cli or JujutsuCli()

    async def is_available(self) -> bool:
        return await self._cli.is_available()

    def is_change_repo(self, repo_path: Path) -> bool:
        return (repo_path / ".jj").is_dir()

    def _require_repo(self, repo_path: Path) -> None:
        if not self.is_change_repo(repo_path):
            raise RepositoryNotFoundError(repo_path, "not a jj repository")

    async def create_session(
        self,
        repo_path: Path,
        session_id: str,
        base_change: str | None = None,
        label: str | None = None,
    ) -> ChangeId:
        """Start a new change for ``session_id`` on top of ``base_change`` (default: @).

        Returns:
            The new change's stable id.
        """
        self._require_repo(repo_path)
        description = session_description(session_id, label)
        parents = (base_change,) if base_change else ()
        change_id = ChangeId(await self._cli.new_change(repo_path, description, parents))
        _logger.info(
            "change_session_created",
            repo=str(repo_path),
            session_id=session_id,
            change_id=change_id,
            base_change=base_change,
        )
        return change_id

    async def switch_session(self, repo_path: Path, change_id: str) -> None:
        """Make ``change_id`` the working-copy change."""
        self._require_repo(repo_path)
        await self._cli.edit(repo_path, change_id)
        _logger.info("change_session_switched", repo=str(repo_path), change_id=change_id)

    async def cleanup_session(self, repo_path: Path, change_id: str) -> None:
        """Abandon a session's change; a change that is already gone counts as clean."""
        self._require_repo(repo_path)
        try:
            await self._cli.abandon(repo_path, change_id)
        except InvalidChangeIdError as e:
            _logger.warning(
                "change_session_already_gone",
                repo=str(repo_path),
                change_id=change_id,
                error=str(e),
            )
            return
        _logger.info("change_session_abandoned", repo=str(repo_path), change_id=change_id)

    async def list_sessions(self, repo_path: Path, limit: int = 50) -> list[SessionInfo]:
        """Recent changes whose description marks them as agent sessions."""
        self._require_repo(repo_path)
        changes = await self._cli.log(repo_path, "all()", limit=limit)
        return [
            SessionInfo.from_change(c)
            for c in changes
            if SESSION_MARKER in c.description.lower()
        ]

    async def get_session_info(self, repo_path: Path, change_id: str) -> SessionInfo:
        self._require_repo(repo_path)
        changes = await self._cli.log(repo_path, f"present({change_id})", limit=1)
        if not changes:
            raise InvalidChangeIdError(f"Invalid change id: {change_id}")
        return SessionInfo.from_change(changes[0])

    async def batch_cleanup_sessions(self, sessions: Iterable[tuple[Path, str]]) -> int:
        """Abandon many session changes; failures are logged and skipped.

        Returns:
            How many sessions were cleaned up.
        """
        cleaned = 0
        for repo_path, change_id in sessions:
            try:
                await self.cleanup_session(repo_path, change_id)
            except VcsError as e:
                _logger.warning(
                    "change_session_cleanup_failed",
                    repo=str(repo_path),
                    change_id=change_id,
                    error=str(e),
                )
                continue
            cleaned += 1
        return cleaned

    async def current_change_id(self, repo_path: Path) -> ChangeId:
        self._require_repo(repo_path)
        return ChangeId(await self._cli.current_change_id(repo_path))


__all__ = [
    "ChangeSessionManager",
    "SESSION_MARKER",
    "SessionInfo",
    "session_description",
]
