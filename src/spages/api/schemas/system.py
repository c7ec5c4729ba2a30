"""System API schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class ServerResponse(BaseModel):
    """Live artifact listener."""

    project_id: str
    port: int
    root: str
    started_at: datetime
    connections: int
    type: str


class ServersResponse(BaseModel):
    items: list[ServerResponse]


class NetworkInterfaceResponse(BaseModel):
    """Address an operator can pick as a project's server host."""

    name: str
    address: str
    family: str = "IPv4"
    internal: bool


class NetworkInterfacesResponse(BaseModel):
    interfaces: list[NetworkInterfaceResponse]


class SystemInfoResponse(BaseModel):
    app_version: str
    python_version: str
    node_version: str | None = None
    platform: str
