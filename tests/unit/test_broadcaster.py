from __future__ import annotations

import asyncio
import json

import pytest

from spages.core.broadcaster import KEEP_ALIVE, Domain, EventBroadcaster, Subscriber


def _decode(frame: str) -> dict[str, object]:
    return json.loads(frame.removeprefix("data: ").strip())


def test_log_subscriber_receives_snapshot_then_events() -> None:
    broadcaster = EventBroadcaster()
    subscriber = broadcaster.subscribe_logs(
        "proj_1", [{"timestamp": "t0", "type": "info", "message": "earlier"}]
    )

    delivered = broadcaster.publish_log(
        "proj_1", {"timestamp": "t1", "type": "info", "message": "now"}
    )

    assert delivered == 1
    pending = subscriber.pending()
    assert pending[0]["type"] == "connected"
    assert [item.get("message") for item in pending[1:]] == ["earlier", "now"]


def test_closed_subscriber_is_removed_on_next_publish() -> None:
    broadcaster = EventBroadcaster()
    stays = broadcaster.subscribe_logs("proj_1")
    leaves = broadcaster.subscribe_logs("proj_1")
    assert broadcaster.count(Domain.LOGS, "proj_1") == 2

    leaves.close()
    leaves.pending()
    delivered = broadcaster.publish_log("proj_1", {"message": "after close"})

    assert delivered == 1
    assert broadcaster.count(Domain.LOGS, "proj_1") == 1
    assert leaves.pending() == []
    assert stays.pending()[-1] == {"message": "after close"}


def test_unsubscribe_removes_subscriber() -> None:
    broadcaster = EventBroadcaster()
    subscriber = broadcaster.subscribe_logs("proj_1")

    broadcaster.unsubscribe(subscriber)

    assert broadcaster.count(Domain.LOGS, "proj_1") == 0
    assert broadcaster.publish_log("proj_1", {"message": "nobody"}) == 0
    assert subscriber.closed is True


def test_full_queue_drops_oldest() -> None:
    subscriber = Subscriber(Domain.LOGS, "proj_1", maxsize=2)

    for index in range(4):
        assert subscriber.put({"n": index}) is True

    assert subscriber.dropped == 2
    assert subscriber.pending() == [{"n": 2}, {"n": 3}]


def test_state_updates_reach_project_and_all_projects_streams() -> None:
    broadcaster = EventBroadcaster()
    project_stream = broadcaster.subscribe_project_state("proj_1", {"status": "stopped"})
    all_stream = broadcaster.subscribe_all_projects([{"id": "proj_1"}])

    broadcaster.publish_project_state("proj_1", {"status": "building"})

    project_events = project_stream.pending()
    assert [event["type"] for event in project_events] == ["connected", "state", "state"]
    assert project_events[-1]["data"] == {"status": "building"}
    all_events = all_stream.pending()
    assert [event["type"] for event in all_events] == ["connected", "snapshot", "project.update"]
    assert all_events[-1]["project_id"] == "proj_1"


def test_project_deleted_closes_state_streams() -> None:
    broadcaster = EventBroadcaster()
    project_stream = broadcaster.subscribe_project_state("proj_1")
    all_stream = broadcaster.subscribe_all_projects()

    broadcaster.publish_project_deleted("proj_1")

    assert project_stream.closed is True
    assert broadcaster.count(Domain.PROJECT_STATE, "proj_1") == 0
    assert all_stream.pending()[-1] == {"type": "project.deleted", "project_id": "proj_1"}


def test_deployment_stream_has_no_snapshot() -> None:
    broadcaster = EventBroadcaster()
    subscriber = broadcaster.subscribe_deployments("proj_1")

    broadcaster.publish_deployment("proj_1", {"id": "deploy_1", "status": "success"})

    events = subscriber.pending()
    assert [event["type"] for event in events] == ["connected", "deployment.completed"]


@pytest.mark.asyncio
async def test_messages_yield_frames_and_keep_alive() -> None:
    broadcaster = EventBroadcaster(heartbeat_seconds=0.01)
    subscriber = broadcaster.subscribe_deployments("proj_1")
    frames = subscriber.messages()

    first = await anext(frames)
    assert _decode(first)["type"] == "connected"
    assert await anext(frames) == KEEP_ALIVE

    broadcaster.unsubscribe(subscriber)
    with pytest.raises(StopAsyncIteration):
        await anext(frames)


@pytest.mark.asyncio
async def test_close_all_ends_streams() -> None:
    broadcaster = EventBroadcaster()
    subscriber = broadcaster.subscribe_logs("proj_1")

    async def consume() -> list[str]:
        return [frame async for frame in subscriber.messages()]

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    broadcaster.close_all()

    frames = await asyncio.wait_for(task, timeout=1)
    assert len(frames) == 1
    assert broadcaster.count(Domain.LOGS, "proj_1") == 0


@pytest.mark.asyncio
async def test_disconnected_stream_stops_receiving_events() -> None:
    broadcaster = EventBroadcaster()
    subscriber = broadcaster.subscribe_logs("proj_1")
    frames = subscriber.messages()
    await anext(frames)

    await frames.aclose()
    delivered = broadcaster.publish_log("proj_1", {"message": "after disconnect"})

    assert delivered == 0
    assert broadcaster.count(Domain.LOGS, "proj_1") == 0
    assert subscriber.pending() == []
