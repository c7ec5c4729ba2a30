"""Deployment pipeline and server lifecycle for managed projects."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psutil

from spages.core.broadcaster import EventBroadcaster
from spages.core.deploy_logs import DeploymentLogger
from spages.core.framework_detector import (
    DEFAULT_BUILD_COMMAND,
    FrameworkInfo,
    detect_framework,
    read_manifest,
)
from spages.core.git_manager import GitManager
from spages.core.process_registry import ProcessRegistry
from spages.core.runtime_manager import SYSTEM_RUNTIME, RuntimeManager
from spages.db.accounts import AccountStore
from spages.db.store import ProjectStore
from spages.errors import (
    CloneError,
    DeploymentInProgressError,
    GitError,
    OutputDirectoryMissingError,
    ProjectNotFoundError,
    RuntimeInstallError,
    RuntimeNotInstalledError,
    RuntimeResolutionError,
    SpagesError,
)
from spages.models.deployment import (
    Deployment,
    DeploymentStatus,
    DeployReason,
    LogEntry,
)
from spages.models.project import Project, ProjectStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NetworkInterface:
    name: str
    address: str
    internal: bool


def network_interfaces() -> list[NetworkInterface]:
    """IPv4 addresses of every host interface, loopback included."""
    found: list[NetworkInterface] = []
    for name, addresses in psutil.net_if_addrs().items():
        for address in addresses:
            if address.family != socket.AF_INET:
                continue
            loopback = ipaddress.ip_address(address.address).is_loopback
            found.append(NetworkInterface(name=name, address=address.address, internal=loopback))
    return found


def resolve_server_host(project: Project | None = None, override: str | None = None) -> str:
    """Host for reported URLs.

    Order: project ``server_host``, configured override, first non-loopback
    IPv4 address, ``localhost``.
    """
    if project is not None and project.server_host:
        return project.server_host
    if override:
        return override
    for interface in network_interfaces():
        if not interface.internal:
            return interface.address
    return "localhost"


class DeployManager:
    """Run deployments and own the deploying markers and artifact listeners."""

    def __init__(
        self,
        store: ProjectStore,
        runtime_manager: RuntimeManager,
        git_manager: GitManager,
        broadcaster: EventBroadcaster,
        registry: ProcessRegistry,
        accounts: AccountStore,
        *,
        server_host: str | None = None,
        port_release_delay: float = 0.5,
        fallback_runtime_version: str = "24.11.0",
    ) -> None:
        self._store = store
        self._runtime = runtime_manager
        self._git = git_manager
        self._broadcaster = broadcaster
        self._registry = registry
        self._accounts = accounts
        self._server_host = server_host
        self._port_release_delay = port_release_delay
        self._fallback_runtime_version = fallback_runtime_version
        self._deploying: set[str] = set()
        self._tasks: set[asyncio.Task[Deployment]] = set()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    # -- status ------------------------------------------------------------

    def is_deploying(self, project_id: str) -> bool:
        return project_id in self._deploying

    def real_status(self, project_id: str, stored: ProjectStatus) -> ProjectStatus:
        """Live status: deploying marker, listener, stored failure, else stopped."""
        if project_id in self._deploying:
            return ProjectStatus.BUILDING
        if self._registry.is_running(project_id):
            return ProjectStatus.RUNNING
        if stored is ProjectStatus.FAILED:
            return ProjectStatus.FAILED
        return ProjectStatus.STOPPED

    def project_state(self, project: Project) -> dict[str, Any]:
        state = project.model_dump(mode="json")
        state["status"] = self.real_status(project.id, project.status).value
        return state

    def update_state(self, project_id: str, **updates: Any) -> Project | None:
        """Persist ``updates`` and broadcast the new project state."""
        project = self._store.update(project_id, **updates)
        if project is None:
            logger.error("Project not found while updating state: %s", project_id)
            return None
        self._store.update_index(project_id, **updates)
        self._broadcaster.publish_project_state(project_id, self.project_state(project))
        return project

    def server_url(self, project: Project) -> str:
        return f"http://{resolve_server_host(project, self._server_host)}:{project.port}"

    # -- deployments -------------------------------------------------------

    def _claim(self, project_id: str) -> Project:
        project = self._store.read(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        if project_id in self._deploying:
            raise DeploymentInProgressError(project_id)
        self._deploying.add(project_id)
        return project

    async def deploy(
        self,
        project_id: str,
        *,
        reason: DeployReason = DeployReason.MANUAL,
        triggered_by: str = "admin",
    ) -> Deployment:
        """Run the full pipeline and return the finished deployment record.

        Raises ``DeploymentInProgressError`` when the project is already deploying;
        any step failure is recorded and re-raised.
        """
        project = self._claim(project_id)
        return await self._deploy_claimed(project, reason, triggered_by)

    def schedule(
        self,
        project_id: str,
        *,
        reason: DeployReason = DeployReason.MANUAL,
        triggered_by: str = "admin",
    ) -> asyncio.Task[Deployment]:
        """Start a deployment in the background; failures only surface as state."""
        project = self._claim(project_id)
        task = asyncio.create_task(
            self._deploy_claimed(project, reason, triggered_by),
            name=f"deploy-{project_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Deployment]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background deployment %s failed: %s", task.get_name(), exc)

    async def _deploy_claimed(
        self, project: Project, reason: DeployReason, triggered_by: str
    ) -> Deployment:
        try:
            return await self._run_pipeline(project, reason, triggered_by)
        finally:
            self._deploying.discard(project.id)

    async def _run_pipeline(
        self, project: Project, reason: DeployReason, triggered_by: str
    ) -> Deployment:
        paths = self._store.paths(project)
        paths.init()
        deployment = Deployment(branch=project.branch, reason=reason, triggered_by=triggered_by)
        self._store.add_deployment(project.id, deployment)

        log = DeploymentLogger(
            project.id, project.name, paths.logs / deployment.log_file, self._broadcaster
        )
        log.info(f"Starting deployment for project: {project.name}")
        self.update_state(project.id, status=ProjectStatus.BUILDING)
        self._broadcaster.publish_deployment(project.id, deployment.model_dump(mode="json"))

        try:
            await self._checkout(project, paths.source, log)
            await self._record_commit(project.id, deployment.id, paths.source, log)
            framework = self._detect(project.id, paths.source, log)
            runtime_version = await self._resolve_runtime(project, paths.source, framework, log)
            env = self._store.read_env(project.id)
            await self._install_dependencies(paths.source, framework, runtime_version, env, log)
            await self._build(project, paths.source, framework, runtime_version, env, log)
            await self._start_listener(project, paths.source, framework, log)
        except asyncio.CancelledError:
            self._record_failure(project.id, deployment, log, "cancelled")
            raise
        except Exception as exc:
            self._record_failure(project.id, deployment, log, str(exc) or exc.__class__.__name__)
            raise

        url = self.server_url(self._store.read(project.id) or project)
        duration = deployment.elapsed_ms()
        self._deploying.discard(project.id)
        self.update_state(
            project.id,
            status=ProjectStatus.RUNNING,
            last_deploy=datetime.now(UTC),
            url=url,
            runtime_version=runtime_version,
        )
        completed = self._store.update_deployment(
            project.id,
            deployment.id,
            status=DeploymentStatus.SUCCESS,
            duration=duration,
            url=url,
            runtime_version=runtime_version,
        )
        log.success("Deployment completed successfully!")
        log.close()
        result = completed or deployment
        self._broadcaster.publish_deployment(project.id, result.model_dump(mode="json"))
        return result

    def _record_failure(
        self, project_id: str, deployment: Deployment, log: DeploymentLogger, message: str
    ) -> None:
        log.error(f"Deployment failed: {message}")
        log.close()
        self._deploying.discard(project_id)
        self.update_state(project_id, status=ProjectStatus.FAILED)
        failed = self._store.update_deployment(
            project_id,
            deployment.id,
            status=DeploymentStatus.FAILED,
            duration=deployment.elapsed_ms(),
            error=message,
        )
        if failed is not None:
            self._broadcaster.publish_deployment(project_id, failed.model_dump(mode="json"))

    async def _checkout(self, project: Project, source: Path, log: DeploymentLogger) -> None:
        if project.is_core:
            log.info("Core frontend detected, skip cloning repository")
            return
        log.info("Step 1/6: Cloning repository...")
        if not project.repository:
            raise CloneError("Project has no repository configured")
        await self._git.sync(
            project.repository,
            project.branch or "main",
            source,
            self._accounts.token_for(project.account_id),
            on_output=log.info,
        )
        log.success("Repository cloned successfully")

    async def _record_commit(
        self, project_id: str, deployment_id: str, source: Path, log: DeploymentLogger
    ) -> None:
        log.info("Getting commit information...")
        try:
            commit = await self._git.latest_commit(source)
        except GitError as exc:
            log.warn(f"Failed to get commit info: {exc}")
            return
        if commit is None:
            return
        log.info(f"Commit: {commit.hash} - {commit.message}")
        log.info(f"Author: {commit.author}")
        self._store.update_deployment(
            project_id,
            deployment_id,
            commit=commit.short_hash,
            commit_hash=commit.hash,
            commit_message=commit.message,
            commit_author=commit.author,
        )

    def _detect(self, project_id: str, source: Path, log: DeploymentLogger) -> FrameworkInfo:
        log.info("Step 2/6: Detecting framework...")
        framework = detect_framework(source)
        log.info(f"Detected framework: {framework.name}")
        log.info(f"Build required: {framework.needs_build}")
        log.info(f"Output directory: {framework.output_dir}")
        self._store.update(
            project_id,
            framework=framework.framework,
            build_tool=framework.build_tool,
            framework_type=framework.type,
            output_dir=framework.output_dir,
        )
        return framework

    async def _resolve_runtime(
        self,
        project: Project,
        source: Path,
        framework: FrameworkInfo,
        log: DeploymentLogger,
    ) -> str:
        log.info("Step 3/6: Resolving Node.js runtime...")
        if not framework.needs_build:
            try:
                version = self._runtime.preferred_version()
            except RuntimeNotInstalledError:
                log.info("Static project: no runtime installed, using system Node")
                return SYSTEM_RUNTIME
            log.info(f"Static project: using runtime Node v{version}")
            return version

        required = self._runtime.detect_required_version(source)
        log.info(f"Detected Node version requirement: {required}")
        try:
            if required != SYSTEM_RUNTIME:
                version = await self._runtime.install(required, on_progress=log.info)
                log.success(f"Runtime Node v{version} is ready")
                return version

            try:
                version = self._runtime.preferred_version()
                log.info(f"Using preferred runtime Node version: v{version}")
            except RuntimeNotInstalledError:
                fallback = self._fallback_runtime_version
                log.warn(f"No runtime Node versions found, installing default v{fallback}...")
                version = await self._runtime.install(fallback, on_progress=log.info)
                log.success(f"Runtime Node v{version} installed")
            self._pin_runtime(project, source, version, log)
            return version
        except (RuntimeResolutionError, RuntimeInstallError) as exc:
            log.error(f"Failed to resolve/install Node ({required}): {exc}")
            version = self._runtime.preferred_version()
            log.warn(f"Falling back to preferred runtime Node v{version}")
            return version

    def _pin_runtime(
        self, project: Project, source: Path, version: str, log: DeploymentLogger
    ) -> None:
        try:
            written = self._runtime.pin_version(source, version, engines=project.is_core)
        except (OSError, ValueError) as exc:
            log.warn(f"Failed to pin Node version: {exc}")
            return
        for filename in written:
            log.info(f"Pinned Node version {version} in {filename}")

    async def _run_logged(
        self,
        command: str,
        version: str,
        cwd: Path,
        env: dict[str, str],
        log: DeploymentLogger,
    ) -> None:
        async for chunk in self._runtime.stream(command, version, cwd, env=env):
            log.output(chunk.text)

    async def _install_dependencies(
        self,
        source: Path,
        framework: FrameworkInfo,
        version: str,
        env: dict[str, str],
        log: DeploymentLogger,
    ) -> None:
        if not framework.install_deps:
            log.info("Step 4/6: Skipping dependency installation (not required)")
            return
        log.info("Step 4/6: Installing dependencies...")
        if not (source / "package.json").exists():
            log.warn("No package.json found, skipping dependency installation")
            return
        await self._run_logged("npm install", version, source, env, log)
        log.success("Dependencies installed successfully")

    async def _build(
        self,
        project: Project,
        source: Path,
        framework: FrameworkInfo,
        version: str,
        env: dict[str, str],
        log: DeploymentLogger,
    ) -> None:
        if not framework.needs_build:
            log.info("Step 5/6: Skipping build (static project)")
            return
        log.info("Step 5/6: Building project...")
        manifest = read_manifest(source) or {}
        script = (manifest.get("scripts") or {}).get("build")
        command = framework.build_command or project.build_command or script
        if not command:
            log.info("No build script found, skipping build")
            return
        log.info(f"Build command: {command}")
        executable = DEFAULT_BUILD_COMMAND if script and command == script else command
        await self._run_logged(executable, version, source, env, log)
        log.success("Build completed successfully")

    async def _start_listener(
        self,
        project: Project,
        source: Path,
        framework: FrameworkInfo,
        log: DeploymentLogger,
    ) -> None:
        log.info("Step 6/6: Starting server...")
        output_dir = framework.output_dir or project.output_dir or "dist"
        root = source / output_dir
        if not root.exists():
            raise OutputDirectoryMissingError(output_dir)

        if self._registry.get(project.id) is not None:
            log.info("Stopping existing server before starting new one...")
            await self._registry.stop(project.id)
            await asyncio.sleep(self._port_release_delay)
            log.info("Old server stopped, port released")

        log.info(f"Serving from: {root}")
        log.info(f"Port: {project.port}")
        await self._registry.start(project.id, project.port, root)
        log.success(f"Server started on port {project.port}")

    # -- server lifecycle --------------------------------------------------

    async def start_server(self, project_id: str) -> str:
        """Serve the existing build output without redeploying; returns the URL."""
        project = self._store.read(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        if self._registry.is_running(project_id):
            return project.url or self.server_url(project)

        output_dir = project.output_dir or "dist"
        root = self._store.paths(project).source / output_dir
        if not root.exists():
            raise OutputDirectoryMissingError(output_dir)
        await self._registry.start(project_id, project.port, root)
        url = self.server_url(project)
        self.update_state(project_id, status=ProjectStatus.RUNNING, url=url)
        logger.info("Project %s accessible at %s", project.name, url)
        return url

    async def stop_server(self, project_id: str) -> bool:
        stopped = await self._registry.stop(project_id)
        if not stopped:
            logger.warning("No running server for project: %s", project_id)
            return False
        if self._store.read(project_id) is not None:
            self.update_state(project_id, status=ProjectStatus.STOPPED, url=None)
        return True

    async def restore_servers(self) -> list[str]:
        """Restart listeners for projects stored as running."""
        restored: list[str] = []
        for project in self._store.list_projects():
            if project.status is not ProjectStatus.RUNNING:
                continue
            try:
                await self.start_server(project.id)
            except (SpagesError, OSError) as exc:
                logger.warning("Could not restore server for %s: %s", project.name, exc)
                self.update_state(project.id, status=ProjectStatus.STOPPED, url=None)
                continue
            restored.append(project.id)
        if restored:
            logger.info("Restored %d running servers", len(restored))
        return restored

    # -- history -----------------------------------------------------------

    def deployment_logs(self, project_id: str, deployment_id: str | None = None) -> list[LogEntry]:
        if self._store.read(project_id) is None:
            return []
        return self._store.read_logs(project_id, deployment_id)

    def deployment_history(self, project_id: str) -> list[Deployment]:
        if self._store.read(project_id) is None:
            return []
        return self._store.read_history(project_id).history

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._registry.stop_all()
