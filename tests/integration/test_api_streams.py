from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from spages.core.broadcaster import Domain, EventBroadcaster
from spages.db.store import format_log_line
from spages.models.deployment import Deployment, LogLevel
from spages.models.project import Project
from tests.support.api_helpers import build_api


def _events(body: str) -> list[dict[str, object]]:
    return [
        json.loads(frame.removeprefix("data: "))
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


async def _read_stream(
    app: object,
    url: str,
    broadcaster: EventBroadcaster,
    domain: Domain,
    project_id: str | None,
) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(transport=transport, base_url="http://control.test") as client:
        request = asyncio.create_task(client.get(url))
        while broadcaster.count(domain, project_id) == 0:
            await asyncio.sleep(0.01)
        broadcaster.close_all()
        return await asyncio.wait_for(request, timeout=5)


@pytest.mark.asyncio
async def test_log_stream_sends_recent_lines(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    project = harness.store.create(Project(name="demo", port=3001))
    harness.store.add_deployment(project.id, Deployment(id="deploy_1"))
    lines = [
        format_log_line(f"2024-01-01T00:00:{index:02d}.000Z", LogLevel.INFO, f"line {index}")
        for index in range(15)
    ]
    harness.store.log_path(project.id, "deploy_1").write_text("".join(lines), encoding="utf-8")

    response = await _read_stream(
        harness.app,
        f"/api/projects/{project.id}/logs/stream",
        harness.broadcaster,
        Domain.LOGS,
        project.id,
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
    events = _events(response.text)
    assert events[0] == {"type": "connected", "message": "Log stream connected"}
    assert [event["message"] for event in events[1:]] == [f"line {n}" for n in range(5, 15)]
    assert harness.broadcaster.count(Domain.LOGS, project.id) == 0


@pytest.mark.asyncio
async def test_project_state_stream_sends_derived_state(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    project = harness.store.create(Project(name="demo", port=3001))

    response = await _read_stream(
        harness.app,
        f"/api/projects/{project.id}/state/stream",
        harness.broadcaster,
        Domain.PROJECT_STATE,
        project.id,
    )

    events = _events(response.text)
    assert [event["type"] for event in events] == ["connected", "state"]
    assert events[1]["data"]["status"] == "stopped"  # type: ignore[index]


@pytest.mark.asyncio
async def test_all_projects_stream_sends_snapshot(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    project = harness.store.create(Project(name="demo", port=3001))

    response = await _read_stream(
        harness.app, "/api/projects/state/stream", harness.broadcaster, Domain.ALL_PROJECTS, None
    )

    events = _events(response.text)
    assert events[1]["type"] == "snapshot"
    assert [item["id"] for item in events[1]["data"]] == [project.id]  # type: ignore[index]


@pytest.mark.asyncio
async def test_stream_token_is_read_from_query(tmp_path: Path) -> None:
    harness = build_api(tmp_path, api_token="secret")
    project = harness.store.create(Project(name="demo", port=3001))
    transport = httpx.ASGITransport(app=harness.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://control.test") as client:
        denied = await client.get(f"/api/projects/{project.id}/deployments/stream")
        missing = await client.get("/api/projects/proj_missing/deployments/stream?token=secret")

    assert denied.status_code == 401
    assert missing.status_code == 404

    response = await _read_stream(
        harness.app,
        f"/api/projects/{project.id}/deployments/stream?token=secret",
        harness.broadcaster,
        Domain.DEPLOYMENTS,
        project.id,
    )
    assert _events(response.text) == [
        {"type": "connected", "message": "Deployment history stream connected"}
    ]
