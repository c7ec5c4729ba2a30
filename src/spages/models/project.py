"""Project domain models."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    """Lifecycle status for a managed project."""

    PENDING = "pending"
    BUILDING = "building"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class ProjectType(str, Enum):
    """Distinguish user projects from system-managed ones."""

    USER = "user"
    CORE = "core"


def new_project_id() -> str:
    return f"proj_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


class Project(BaseModel):
    """Full project record stored in ``config.json``."""

    id: str = Field(default_factory=new_project_id)
    name: str
    account_id: str | None = None
    repository: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    port: int
    build_command: str | None = None
    output_dir: str = "dist"
    framework: str | None = None
    build_tool: str | None = None
    framework_type: str | None = None
    runtime_version: str | None = None
    status: ProjectStatus = ProjectStatus.PENDING
    server_host: str | None = None
    source_root: Path | None = None
    type: ProjectType = ProjectType.USER
    managed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_deploy: datetime | None = None
    url: str | None = None

    @property
    def is_core(self) -> bool:
        return self.type is ProjectType.CORE and self.managed

    def touch(self) -> None:
        """Update mutation timestamp."""
        self.updated_at = datetime.now(UTC)


class ProjectIndexEntry(BaseModel):
    """Denormalized project summary kept in ``projects-index.json``."""

    name: str
    path: str
    port: int
    status: ProjectStatus = ProjectStatus.STOPPED
    last_deploy: datetime | None = None
    repository: str | None = None
    branch: str | None = None
    url: str | None = None
    updated_at: datetime | None = None
    type: ProjectType = ProjectType.USER
    managed: bool = False


class ProjectSummary(ProjectIndexEntry):
    """Index entry returned by list views, with its id and live status."""

    id: str
