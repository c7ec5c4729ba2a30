"""Deployment and server lifecycle routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from spages.api.deps import get_deploy_manager, get_project_manager, require_token
from spages.api.routes.common import http_error, require_project
from spages.api.schemas.deploy import (
    DeployAccepted,
    DeploymentsResponse,
    DeployRequest,
    LogsResponse,
    ServerActionResponse,
)
from spages.core.deploy_manager import DeployManager
from spages.core.project_manager import ProjectManager
from spages.errors import SpagesError

router = APIRouter(
    prefix="/api/projects/{project_id}",
    tags=["deploy"],
    dependencies=[Depends(require_token)],
)


@router.post("/deploy", status_code=status.HTTP_202_ACCEPTED, response_model=DeployAccepted)
async def deploy_project(
    project_id: str,
    request: DeployRequest | None = None,
    deploy: DeployManager = Depends(get_deploy_manager),
) -> DeployAccepted:
    trigger = request or DeployRequest()
    try:
        deploy.schedule(project_id, reason=trigger.reason, triggered_by=trigger.triggered_by)
    except SpagesError as exc:
        raise http_error(exc) from exc
    return DeployAccepted(message="Deployment started", project_id=project_id)


@router.post("/start", response_model=ServerActionResponse)
async def start_server(
    project_id: str,
    deploy: DeployManager = Depends(get_deploy_manager),
) -> ServerActionResponse:
    try:
        url = await deploy.start_server(project_id)
    except SpagesError as exc:
        raise http_error(exc) from exc
    return ServerActionResponse(success=True, message="Server started", url=url)


@router.post("/stop", response_model=ServerActionResponse)
async def stop_server(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    deploy: DeployManager = Depends(get_deploy_manager),
) -> ServerActionResponse:
    await require_project(project_id, manager)
    stopped = await deploy.stop_server(project_id)
    message = "Server stopped" if stopped else "Server was not running"
    return ServerActionResponse(success=stopped, message=message)


@router.get("/logs", response_model=LogsResponse)
async def deployment_logs(
    project_id: str,
    deployment_id: str | None = None,
    manager: ProjectManager = Depends(get_project_manager),
    deploy: DeployManager = Depends(get_deploy_manager),
) -> LogsResponse:
    await require_project(project_id, manager)
    try:
        items = deploy.deployment_logs(project_id, deployment_id)
    except SpagesError as exc:
        raise http_error(exc) from exc
    return LogsResponse(items=items)


@router.get("/deployments", response_model=DeploymentsResponse)
async def deployment_history(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    deploy: DeployManager = Depends(get_deploy_manager),
) -> DeploymentsResponse:
    await require_project(project_id, manager)
    return DeploymentsResponse(items=deploy.deployment_history(project_id))
