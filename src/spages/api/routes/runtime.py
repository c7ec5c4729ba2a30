"""Runtime routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from spages.api.deps import get_runtime_manager, require_token
from spages.api.routes.common import http_error
from spages.api.schemas.runtime import InstallRuntimeRequest, RuntimeResponse, RuntimesResponse
from spages.core.runtime_manager import RuntimeInstallation, RuntimeManager
from spages.errors import RuntimeNotInstalledError, SpagesError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runtimes", tags=["runtime"], dependencies=[Depends(require_token)])


def _runtime_response(installation: RuntimeInstallation) -> RuntimeResponse:
    return RuntimeResponse(
        version=installation.version,
        path=str(installation.path),
        platform=installation.platform,
        arch=installation.arch,
    )


@router.get("", response_model=RuntimesResponse)
async def list_runtimes(runtime: RuntimeManager = Depends(get_runtime_manager)) -> RuntimesResponse:
    try:
        system = await runtime.system_version()
    except RuntimeNotInstalledError:
        logger.debug("No system Node.js found")
        system = None
    return RuntimesResponse(
        items=[_runtime_response(item) for item in runtime.installations()],
        system=system,
    )


@router.post("/install", response_model=RuntimeResponse)
async def install_runtime(
    request: InstallRuntimeRequest,
    runtime: RuntimeManager = Depends(get_runtime_manager),
) -> RuntimeResponse:
    try:
        version = await runtime.install(request.version)
    except SpagesError as exc:
        raise http_error(exc) from exc
    return _runtime_response(runtime.installation(version))
