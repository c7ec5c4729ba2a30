"""System routes."""

from __future__ import annotations

import logging
import platform

from fastapi import APIRouter, Depends

from spages.api.deps import get_registry, get_runtime_manager, require_token
from spages.api.schemas.system import (
    NetworkInterfaceResponse,
    NetworkInterfacesResponse,
    ServerResponse,
    ServersResponse,
    SystemInfoResponse,
)
from spages.config import APP_VERSION
from spages.core.deploy_manager import network_interfaces
from spages.core.process_registry import ProcessRegistry
from spages.core.runtime_manager import RuntimeManager
from spages.errors import RuntimeNotInstalledError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])

_PLATFORM_NAMES = {"Darwin": "macOS", "Linux": "Linux", "Windows": "Windows"}


@router.get("/servers", response_model=ServersResponse, dependencies=[Depends(require_token)])
async def running_servers(registry: ProcessRegistry = Depends(get_registry)) -> ServersResponse:
    return ServersResponse(
        items=[
            ServerResponse(
                project_id=server.project_id,
                port=server.port,
                root=str(server.root),
                started_at=server.started_at,
                connections=server.connections,
                type=server.type,
            )
            for server in registry.running()
        ]
    )


@router.get(
    "/network-interfaces",
    response_model=NetworkInterfacesResponse,
    dependencies=[Depends(require_token)],
)
async def list_network_interfaces() -> NetworkInterfacesResponse:
    """Hosts a project can advertise, ``localhost`` first."""
    interfaces = [NetworkInterfaceResponse(name="localhost", address="localhost", internal=True)]
    interfaces.extend(
        NetworkInterfaceResponse(
            name=interface.name, address=interface.address, internal=interface.internal
        )
        for interface in network_interfaces()
    )
    return NetworkInterfacesResponse(interfaces=interfaces)


@router.get("/info", response_model=SystemInfoResponse)
async def system_info(
    runtime: RuntimeManager = Depends(get_runtime_manager),
) -> SystemInfoResponse:
    system = platform.system()
    try:
        node_version = await runtime.system_version()
    except RuntimeNotInstalledError:
        logger.debug("No system Node.js found")
        node_version = None
    return SystemInfoResponse(
        app_version=APP_VERSION,
        python_version=platform.python_version(),
        node_version=node_version,
        platform=f"{_PLATFORM_NAMES.get(system, system)} ({platform.machine()})",
    )
