"""Event payloads pushed to stream subscribers."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Event categories written to server-sent event streams."""

    CONNECTED = "connected"
    SNAPSHOT = "snapshot"
    STATE = "state"
    PROJECT_UPDATE = "project.update"
    PROJECT_DELETED = "project.deleted"
    DEPLOYMENT_COMPLETED = "deployment.completed"


def format_sse(payload: dict[str, Any]) -> str:
    """Serialize one payload as a ``data:`` frame."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


def connected_event(message: str) -> dict[str, Any]:
    return {"type": EventType.CONNECTED.value, "message": message}


def state_event(data: dict[str, Any]) -> dict[str, Any]:
    return {"type": EventType.STATE.value, "data": data}


def project_update_event(project_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"type": EventType.PROJECT_UPDATE.value, "project_id": project_id, "data": data}


def project_deleted_event(project_id: str) -> dict[str, Any]:
    return {"type": EventType.PROJECT_DELETED.value, "project_id": project_id}


def snapshot_event(data: list[dict[str, Any]]) -> dict[str, Any]:
    return {"type": EventType.SNAPSHOT.value, "data": data}


def deployment_event(data: dict[str, Any]) -> dict[str, Any]:
    return {"type": EventType.DEPLOYMENT_COMPLETED.value, "data": data}
