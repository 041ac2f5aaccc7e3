"""Registry collaborator: the platform's record of live workspaces.

The orchestrator only needs two questions answered, captured by the
``WorkspaceRegistry`` protocol. ``StaticWorkspaceRegistry`` is an in-memory
implementation, loadable from YAML, for operators and tests.

Example YAML:
    containers:
      - /tmp/agentspace/worktrees/a1b2-fix-login
    projects:
      web:
        - id: repo-api
          name: api
          path: /srv/src/api
          default_target_branch: main
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, Field

from agentspace.workspace.models import Repository


@runtime_checkable
class WorkspaceRegistry(Protocol):
    async def container_ref_exists(self, path: Path) -> bool:
        """Whether any live session record references workspace container ``path``."""
        ...

    async def get_project_repos(self, project_id: str) -> list[Repository]:
        ...


class RepositoryRecord(BaseModel):
    id: str
    name: str
    path: Path
    default_target_branch: str = "main"

    def to_repository(self) -> Repository:
        return Repository(
            id=self.id,
            name=self.name,
            path=self.path.expanduser(),
            default_target_branch=self.default_target_branch,
        )


class RegistryFile(BaseModel):
    """On-disk layout of a static registry."""

    containers: list[Path] = Field(
        default_factory=list,
        description="Workspace container directories that belong to live sessions",
    )
    projects: dict[str, list[RepositoryRecord]] = Field(
        default_factory=dict,
        description="Repositories per project id",
    )


def _key(path: Path) -> Path:
    return path.expanduser().resolve()


class StaticWorkspaceRegistry:
    """Registry backed by fixed in-memory data."""

    def __init__(
        self,
        containers: list[Path] | None = None,
        projects: dict[str, list[Repository]] | None = None,
    ) -> None:
        self._containers = {_key(p) for p in containers or []}
        self._projects = dict(projects or {})

    @classmethod
    def from_yaml(cls, path: Path) -> StaticWorkspaceRegistry:
        with open(path) as f:
            data = RegistryFile.model_validate(yaml.safe_load(f) or {})
        return cls(
            containers=data.containers,
            projects={
                project_id: [r.to_repository() for r in records]
                for project_id, records in data.projects.items()
            },
        )

    def add_container(self, path: Path) -> None:
        self._containers.add(_key(path))

    def remove_container(self, path: Path) -> None:
        self._containers.discard(_key(path))

    async def container_ref_exists(self, path: Path) -> bool:
        return _key(path) in self._containers

    async def get_project_repos(self, project_id: str) -> list[Repository]:
        return list(self._projects.get(project_id, []))


__all__ = [
    "RegistryFile",
    "RepositoryRecord",
    "StaticWorkspaceRegistry",
    "WorkspaceRegistry",
]
