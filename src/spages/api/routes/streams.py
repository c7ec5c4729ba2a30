"""Server-sent event streams."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from spages.api.deps import (
    get_broadcaster,
    get_deploy_manager,
    get_project_manager,
    require_stream_token,
)
from spages.api.routes.common import require_project
from spages.config import Settings, get_settings
from spages.core.broadcaster import EventBroadcaster, Subscriber
from spages.core.deploy_manager import DeployManager
from spages.core.project_manager import ProjectManager

router = APIRouter(
    prefix="/api/projects",
    tags=["streams"],
    dependencies=[Depends(require_stream_token)],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _frames(broadcaster: EventBroadcaster, subscriber: Subscriber) -> AsyncIterator[str]:
    try:
        async for frame in subscriber.messages():
            yield frame
    finally:
        broadcaster.unsubscribe(subscriber)


def _event_stream(broadcaster: EventBroadcaster, subscriber: Subscriber) -> StreamingResponse:
    return StreamingResponse(
        _frames(broadcaster, subscriber),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/state/stream")
async def all_projects_stream(
    manager: ProjectManager = Depends(get_project_manager),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    snapshot = [summary.model_dump(mode="json") for summary in manager.summaries()]
    return _event_stream(broadcaster, broadcaster.subscribe_all_projects(snapshot))


@router.get("/{project_id}/logs/stream")
async def logs_stream(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    deploy: DeployManager = Depends(get_deploy_manager),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    await require_project(project_id, manager)
    entries = deploy.deployment_logs(project_id)
    snapshot = [entry.model_dump(mode="json") for entry in entries[-settings.log_snapshot_lines :]]
    return _event_stream(broadcaster, broadcaster.subscribe_logs(project_id, snapshot))


@router.get("/{project_id}/state/stream")
async def project_state_stream(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    deploy: DeployManager = Depends(get_deploy_manager),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    project = await require_project(project_id, manager)
    subscriber = broadcaster.subscribe_project_state(project_id, deploy.project_state(project))
    return _event_stream(broadcaster, subscriber)


@router.get("/{project_id}/deployments/stream")
async def deployments_stream(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    await require_project(project_id, manager)
    return _event_stream(broadcaster, broadcaster.subscribe_deployments(project_id))
