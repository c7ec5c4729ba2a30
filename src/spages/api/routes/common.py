"""Common route helpers."""

from __future__ import annotations

from fastapi import HTTPException, status

from spages.core.project_manager import ProjectManager
from spages.errors import (
    DeploymentInProgressError,
    DeploymentNotFoundError,
    OutputDirectoryMissingError,
    PortInUseError,
    ProjectConflictError,
    ProjectNotFoundError,
    RuntimeInstallError,
    RuntimeNotInstalledError,
    RuntimeResolutionError,
    SpagesError,
)
from spages.models.project import Project

_ERROR_STATUS: dict[type[SpagesError], int] = {
    ProjectNotFoundError: status.HTTP_404_NOT_FOUND,
    DeploymentNotFoundError: status.HTTP_404_NOT_FOUND,
    ProjectConflictError: status.HTTP_400_BAD_REQUEST,
    OutputDirectoryMissingError: status.HTTP_400_BAD_REQUEST,
    RuntimeResolutionError: status.HTTP_400_BAD_REQUEST,
    DeploymentInProgressError: status.HTTP_409_CONFLICT,
    PortInUseError: status.HTTP_409_CONFLICT,
    RuntimeNotInstalledError: status.HTTP_404_NOT_FOUND,
    RuntimeInstallError: status.HTTP_502_BAD_GATEWAY,
}


async def require_project(project_id: str, manager: ProjectManager) -> Project:
    """Load project or return 404."""
    project = await manager.get(project_id)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def http_error(exc: SpagesError) -> HTTPException:
    """Translate a control-plane error into its HTTP response."""
    for error_type in type(exc).__mro__:
        code = _ERROR_STATUS.get(error_type)
        if code is not None:
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
