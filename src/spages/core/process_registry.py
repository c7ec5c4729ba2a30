"""Registry of live artifact listeners keyed by project id."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from spages.core.static_server import ArtifactServer, RunningServer

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Own every artifact listener; at most one per project."""

    def __init__(
        self,
        *,
        host: str = "0.0.0.0",
        api_upstream: str = "http://127.0.0.1:3000",
        api_prefix: str = "/api/",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host
        self._api_upstream = api_upstream
        self._api_prefix = api_prefix
        self._transport = transport
        self._servers: dict[str, ArtifactServer] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    async def start(self, project_id: str, port: int, root: Path) -> ArtifactServer:
        """Start a listener, replacing any listener already registered for the project."""
        async with self._lock(project_id):
            await self._stop_unlocked(project_id)
            server = ArtifactServer(
                project_id,
                port,
                root,
                host=self._host,
                api_upstream=self._api_upstream,
                api_prefix=self._api_prefix,
                transport=self._transport,
            )
            await server.start()
            self._servers[project_id] = server
            return server

    async def stop(self, project_id: str) -> bool:
        async with self._lock(project_id):
            return await self._stop_unlocked(project_id)

    async def _stop_unlocked(self, project_id: str) -> bool:
        server = self._servers.pop(project_id, None)
        if server is None:
            return False
        logger.info("Stopping HTTP server for project: %s", project_id)
        await server.stop()
        return True

    def get(self, project_id: str) -> ArtifactServer | None:
        return self._servers.get(project_id)

    def is_running(self, project_id: str) -> bool:
        server = self._servers.get(project_id)
        return server is not None and server.running

    def running(self) -> list[RunningServer]:
        return [server.info() for server in self._servers.values() if server.running]

    async def stop_all(self) -> None:
        for project_id in list(self._servers):
            await self.stop(project_id)
