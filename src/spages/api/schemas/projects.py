"""Project API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from spages.models.project import ProjectSummary


class CreateProjectRequest(BaseModel):
    """Payload for registering a project."""

    name: str = Field(min_length=1)
    port: int
    account_id: str | None = None
    repository: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str | None = "main"
    build_command: str | None = "npm run build"
    output_dir: str = "dist"
    server_host: str | None = None


class UpdateProjectRequest(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    account_id: str | None = None
    repository: str | None = None
    owner: str | None = None
    repo: str | None = None
    branch: str | None = None
    port: int | None = None
    build_command: str | None = None
    output_dir: str | None = None
    server_host: str | None = None

    @field_validator("port", "output_dir")
    @classmethod
    def _not_null(cls, value: object) -> object:
        # Omitting a field keeps it; null cannot clear a required one.
        if value is None:
            raise ValueError("must not be null")
        return value


class ProjectsResponse(BaseModel):
    """Collection response for projects."""

    items: list[ProjectSummary]


class NameCheckResponse(BaseModel):
    available: bool


class PortCheckResponse(BaseModel):
    available: bool
    error: str | None = None


class NextPortResponse(BaseModel):
    port: int


class EnvPayload(BaseModel):
    """Environment variables injected into install and build commands."""

    env: dict[str, str] = Field(default_factory=dict)
