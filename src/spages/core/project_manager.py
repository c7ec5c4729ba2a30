"""Project lifecycle management."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from spages.core.broadcaster import EventBroadcaster
from spages.core.deploy_manager import DeployManager
from spages.db.store import ProjectStore
from spages.errors import DeploymentInProgressError, ProjectConflictError, ProjectNotFoundError
from spages.models.project import Project, ProjectStatus, ProjectSummary, ProjectType

logger = logging.getLogger(__name__)

MIN_PORT = 1024
MAX_PORT = 65535
FIRST_PROJECT_PORT = 3001

UPDATABLE_FIELDS = frozenset(
    {
        "account_id",
        "repository",
        "owner",
        "repo",
        "branch",
        "port",
        "build_command",
        "output_dir",
        "server_host",
    }
)

REQUIRED_FIELDS = frozenset({"port", "output_dir"})


@dataclass(slots=True)
class CreateProjectInput:
    """Input payload for project creation."""

    name: str
    port: int
    account_id: str | None = None
    repository: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str | None = "main"
    build_command: str | None = "npm run build"
    output_dir: str = "dist"
    server_host: str | None = None


@dataclass(slots=True)
class PortCheck:
    available: bool
    error: str | None = None


class ProjectManager:
    """Manage registered projects."""

    def __init__(
        self,
        store: ProjectStore,
        deploy_manager: DeployManager,
        broadcaster: EventBroadcaster,
        *,
        release_delay: float = 0.5,
    ) -> None:
        self._store = store
        self._deploy_manager = deploy_manager
        self._broadcaster = broadcaster
        self._release_delay = release_delay

    def check_name(self, name: str) -> bool:
        return all(entry.name != name for entry in self._store.read_index().values())

    def check_port(self, port: int, *, exclude: str | None = None) -> PortCheck:
        if port < MIN_PORT or port > MAX_PORT:
            return PortCheck(available=False, error="Invalid port range")
        for project_id, entry in self._store.read_index().items():
            if entry.port == port and project_id != exclude:
                return PortCheck(available=False)
        return PortCheck(available=True)

    def next_available_port(self) -> int:
        used = {entry.port for entry in self._store.read_index().values()}
        port = FIRST_PROJECT_PORT
        while port in used:
            port += 1
        return port

    async def create(self, payload: CreateProjectInput) -> Project:
        if not payload.name or "/" in payload.name or payload.name in {".", ".."}:
            raise ValueError(f"Invalid project name: {payload.name!r}")
        if not self.check_name(payload.name):
            raise ProjectConflictError("Project name already exists")
        port_check = self.check_port(payload.port)
        if not port_check.available:
            raise ProjectConflictError(port_check.error or "Port already in use")

        project = Project(
            name=payload.name,
            port=payload.port,
            account_id=payload.account_id,
            repository=payload.repository,
            owner=payload.owner,
            repo=payload.repo,
            branch=payload.branch,
            build_command=payload.build_command,
            output_dir=payload.output_dir,
            server_host=payload.server_host,
        )
        self._store.create(project)
        logger.info("Created project %s (%s) on port %d", project.name, project.id, project.port)
        self._broadcaster.publish_project_state(
            project.id, self._deploy_manager.project_state(project)
        )
        return project

    async def update(self, project_id: str, updates: dict[str, Any]) -> Project:
        project = self._store.read(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        changes = {key: value for key, value in updates.items() if key in UPDATABLE_FIELDS}
        for key in REQUIRED_FIELDS & changes.keys():
            if changes[key] is None:
                raise ValueError(f"{key} must not be null")
        if "port" in changes and changes["port"] != project.port:
            port_check = self.check_port(changes["port"], exclude=project_id)
            if not port_check.available:
                raise ProjectConflictError(port_check.error or "Port already in use")
        updated = self._deploy_manager.update_state(project_id, **changes)
        if updated is None:
            raise ProjectNotFoundError(project_id)
        return updated

    async def delete(self, project_id: str) -> None:
        project = self._store.read(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        if self._deploy_manager.is_deploying(project_id):
            raise DeploymentInProgressError(project_id)

        if await self._deploy_manager.stop_server(project_id):
            await asyncio.sleep(self._release_delay)
        self._store.remove(project_id)
        self._broadcaster.publish_project_deleted(project_id)
        logger.info("Deleted project %s (%s)", project.name, project_id)

    async def get(self, project_id: str) -> Project | None:
        project = self._store.read(project_id)
        if project is None:
            return None
        status = self._deploy_manager.real_status(project.id, project.status)
        return project.model_copy(update={"status": status})

    async def list(self) -> list[ProjectSummary]:
        return self.summaries()

    def summaries(self) -> list[ProjectSummary]:
        """Index entries with live status, for list views and the all-projects stream."""
        return [
            ProjectSummary(
                id=project_id,
                **entry.model_dump(exclude={"status"}),
                status=self._deploy_manager.real_status(project_id, entry.status),
            )
            for project_id, entry in self._store.read_index().items()
        ]

    async def get_env(self, project_id: str) -> dict[str, str]:
        if self._store.read(project_id) is None:
            raise ProjectNotFoundError(project_id)
        return self._store.read_env(project_id)

    async def set_env(self, project_id: str, env: dict[str, str]) -> dict[str, str]:
        if self._store.read(project_id) is None:
            raise ProjectNotFoundError(project_id)
        self._store.write_env(project_id, env)
        return env

    def ensure_core_project(
        self,
        *,
        project_id: str,
        name: str,
        port: int,
        source_root: Path,
    ) -> Project:
        """Register the managed frontend project when it is missing."""
        existing = self._store.read(project_id)
        if existing is not None:
            return existing
        project = Project(
            id=project_id,
            name=name,
            port=port,
            build_command="npm run build",
            output_dir="dist",
            source_root=source_root,
            status=ProjectStatus.STOPPED,
            type=ProjectType.CORE,
            managed=True,
        )
        self._store.create(project)
        logger.info("System frontend project %s created in index", project_id)
        return project
