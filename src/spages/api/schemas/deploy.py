"""Deploy API schemas."""

from __future__ import annotations

from pydantic import BaseModel

from spages.models.deployment import Deployment, DeployReason, LogEntry


class DeployRequest(BaseModel):
    """Deploy trigger payload."""

    reason: DeployReason = DeployReason.MANUAL
    triggered_by: str = "admin"


class DeployAccepted(BaseModel):
    message: str
    project_id: str


class ServerActionResponse(BaseModel):
    """Result of a start or stop request."""

    success: bool
    message: str
    url: str | None = None


class LogsResponse(BaseModel):
    items: list[LogEntry]


class DeploymentsResponse(BaseModel):
    items: list[Deployment]
