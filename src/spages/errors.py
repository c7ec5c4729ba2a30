"""Exception hierarchy shared across spages components."""

from __future__ import annotations


class SpagesError(Exception):
    """Base class for control-plane errors."""


class ProjectNotFoundError(SpagesError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class ProjectConflictError(SpagesError):
    """Raised when a project name or port is already taken."""


class DeploymentInProgressError(SpagesError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Deployment already in progress for project: {project_id}")
        self.project_id = project_id


class GitError(SpagesError):
    """Raised when a git command fails."""


class CloneError(GitError):
    """Raised when the source repository cannot be cloned."""


class CommandError(SpagesError):
    """Raised when a shell command exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, output_tail: str = "") -> None:
        super().__init__(f"Command failed with exit code {returncode}: {command}")
        self.command = command
        self.returncode = returncode
        self.output_tail = output_tail


class RuntimeResolutionError(SpagesError):
    """Raised when a runtime version constraint cannot be resolved."""


class RuntimeNotInstalledError(SpagesError):
    """Raised when no runtime version is installed."""


class RuntimeInstallError(SpagesError):
    """Raised when downloading or extracting a runtime fails."""


class OutputDirectoryMissingError(SpagesError):
    def __init__(self, output_dir: str) -> None:
        super().__init__(
            f"Build directory not found: {output_dir}. Please deploy the project first."
        )
        self.output_dir = output_dir


class PortInUseError(SpagesError):
    def __init__(self, port: int) -> None:
        super().__init__(f"Port {port} is already in use")
        self.port = port


class DeploymentNotFoundError(SpagesError):
    def __init__(self, deployment_id: str) -> None:
        super().__init__(f"Deployment not found: {deployment_id}")
        self.deployment_id = deployment_id
