"""Project routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from spages.api.deps import get_project_manager, require_token
from spages.api.routes.common import http_error, require_project
from spages.api.schemas.projects import (
    CreateProjectRequest,
    EnvPayload,
    NameCheckResponse,
    NextPortResponse,
    PortCheckResponse,
    ProjectsResponse,
    UpdateProjectRequest,
)
from spages.core.project_manager import CreateProjectInput, ProjectManager
from spages.errors import SpagesError
from spages.models.project import Project

router = APIRouter(
    prefix="/api/projects",
    tags=["projects"],
    dependencies=[Depends(require_token)],
)


@router.get("", response_model=ProjectsResponse)
async def list_projects(manager: ProjectManager = Depends(get_project_manager)) -> ProjectsResponse:
    return ProjectsResponse(items=await manager.list())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Project]:
    try:
        project = await manager.create(CreateProjectInput(**request.model_dump()))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SpagesError as exc:
        raise http_error(exc) from exc
    return {"project": project}


@router.get("/check-name/{name}", response_model=NameCheckResponse)
async def check_name(
    name: str, manager: ProjectManager = Depends(get_project_manager)
) -> NameCheckResponse:
    return NameCheckResponse(available=manager.check_name(name))


@router.get("/check-port/{port}", response_model=PortCheckResponse)
async def check_port(
    port: int, manager: ProjectManager = Depends(get_project_manager)
) -> PortCheckResponse:
    result = manager.check_port(port)
    return PortCheckResponse(available=result.available, error=result.error)


@router.get("/next-available-port", response_model=NextPortResponse)
async def next_available_port(
    manager: ProjectManager = Depends(get_project_manager),
) -> NextPortResponse:
    return NextPortResponse(port=manager.next_available_port())


@router.get("/{project_id}")
async def get_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Project]:
    return {"project": await require_project(project_id, manager)}


@router.put("/{project_id}")
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, Project]:
    try:
        project = await manager.update(project_id, request.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SpagesError as exc:
        raise http_error(exc) from exc
    return {"project": project}


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
) -> None:
    try:
        await manager.delete(project_id)
    except SpagesError as exc:
        raise http_error(exc) from exc


@router.get("/{project_id}/env", response_model=EnvPayload)
async def get_env(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> EnvPayload:
    try:
        return EnvPayload(env=await manager.get_env(project_id))
    except SpagesError as exc:
        raise http_error(exc) from exc


@router.put("/{project_id}/env", response_model=EnvPayload)
async def set_env(
    project_id: str,
    request: EnvPayload,
    manager: ProjectManager = Depends(get_project_manager),
) -> EnvPayload:
    try:
        return EnvPayload(env=await manager.set_env(project_id, request.env))
    except SpagesError as exc:
        raise http_error(exc) from exc
