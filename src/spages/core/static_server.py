"""Per-project HTTP listener for built artifacts."""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import os
import socket
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import (
    FileResponse,
    JSONResponse,
    PlainTextResponse,
    Response,
    StreamingResponse,
)
from starlette.background import BackgroundTask

from spages.errors import PortInUseError

logger = logging.getLogger(__name__)

MIME_TYPES: dict[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".xml": "application/xml; charset=utf-8",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
    ".otf": "font/otf",
    ".txt": "text/plain; charset=utf-8",
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".wasm": "application/wasm",
}
DEFAULT_MIME_TYPE = "application/octet-stream"
STATIC_CACHE_CONTROL = "public, max-age=3600"

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "host",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def content_type_for(path: Path) -> str:
    return MIME_TYPES.get(path.suffix.lower(), DEFAULT_MIME_TYPE)


def resolve_artifact_path(root: Path, url_path: str) -> Path:
    """Map a request path onto a file under ``root``.

    Order: exact file, directory ``index.html``, root ``index.html``.
    Raises ``PermissionError`` for paths escaping ``root`` and
    ``FileNotFoundError`` when not even the root ``index.html`` exists.
    """
    base = Path(os.path.normpath(root.absolute()))
    relative = url_path.lstrip("/") or "index.html"
    candidate = Path(os.path.normpath(base / relative))
    if candidate != base and not candidate.is_relative_to(base):
        raise PermissionError(url_path)

    if candidate.is_file():
        return candidate
    if candidate.is_dir() and (candidate / "index.html").is_file():
        return candidate / "index.html"
    fallback = base / "index.html"
    if fallback.is_file():
        return fallback
    raise FileNotFoundError(url_path)


def create_artifact_app(
    root: Path, client: httpx.AsyncClient, api_prefix: str = "/api/"
) -> FastAPI:
    """Build the ASGI app serving ``root`` and proxying ``api_prefix`` upstream."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    async def proxy(request: Request) -> Response:
        raw_path = request.scope.get("raw_path") or request.url.path.encode()
        target = raw_path.decode("latin-1")
        if request.url.query:
            target = f"{target}?{request.url.query}"
        headers = [
            (name, value)
            for name, value in request.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        has_body = "content-length" in request.headers or "transfer-encoding" in request.headers
        upstream_request = client.build_request(
            request.method,
            target,
            headers=headers,
            content=request.stream() if has_body else None,
        )
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("API proxy error for %s: %s", target, exc)
            return JSONResponse(
                {"error": "Bad gateway", "detail": str(exc)},
                status_code=502,
            )

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [
            (name, value)
            for name, value in upstream.headers.raw
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
        return response

    @app.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def serve(request: Request, full_path: str) -> Response:
        del full_path
        path = request.scope["path"]
        if path.startswith(api_prefix):
            return await proxy(request)

        try:
            file_path = resolve_artifact_path(root, path)
        except PermissionError:
            logger.warning("Path traversal attempt blocked: %s", path)
            return PlainTextResponse("403 Forbidden", status_code=403)
        except FileNotFoundError:
            return PlainTextResponse("404 Not Found", status_code=404)

        headers = {}
        if file_path.suffix.lower() != ".html":
            headers["Cache-Control"] = STATIC_CACHE_CONTROL
        return FileResponse(file_path, media_type=content_type_for(file_path), headers=headers)

    return app


class _EmbeddedServer(uvicorn.Server):
    """Uvicorn server that leaves process signal handling to the host."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:
        return None


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    if os.name != "nt":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        if exc.errno in {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}:
            raise PortInUseError(port) from exc
        raise
    sock.setblocking(False)
    return sock


@dataclass(slots=True)
class RunningServer:
    """Summary of a live artifact listener."""

    project_id: str
    port: int
    root: Path
    started_at: datetime
    connections: int
    type: str = "http_server"


class ArtifactServer:
    """One artifact listener hosted on an embedded uvicorn server."""

    def __init__(
        self,
        project_id: str,
        port: int,
        root: Path,
        *,
        host: str = "0.0.0.0",
        api_upstream: str = "http://127.0.0.1:3000",
        api_prefix: str = "/api/",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.project_id = project_id
        self.port = port
        self.root = root
        self.host = host
        self.started_at: datetime | None = None
        self._api_upstream = api_upstream
        self._api_prefix = api_prefix
        self._transport = transport
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None
        self._client: httpx.AsyncClient | None = None

    @property
    def running(self) -> bool:
        return (
            self._server is not None
            and self._task is not None
            and not self._task.done()
            and self._server.started
        )

    @property
    def connection_count(self) -> int:
        if self._server is None:
            return 0
        return len(self._server.server_state.connections)

    async def start(self) -> None:
        sock = bind_socket(self.host, self.port)
        self.port = sock.getsockname()[1]
        self._client = httpx.AsyncClient(
            base_url=self._api_upstream,
            timeout=httpx.Timeout(None),
            transport=self._transport,
        )
        app = create_artifact_app(self.root, self._client, self._api_prefix)
        config = uvicorn.Config(
            app,
            log_config=None,
            access_log=False,
            lifespan="off",
            http="h11",
            ws="none",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                sock.close()
                await self._client.aclose()
                self._task.result()
                raise OSError(f"Artifact server on port {self.port} exited during startup")
            await asyncio.sleep(0.01)

        self.started_at = datetime.now(UTC)
        logger.info("Static server started on port %d serving %s", self.port, self.root)

    async def stop(self) -> None:
        """Abort open connections, then close the listener."""
        server, task = self._server, self._task
        if server is None or task is None:
            return
        connections = list(server.server_state.connections)
        if connections:
            logger.info("Destroying %d active connections on port %d", len(connections), self.port)
        for connection in connections:
            transport = getattr(connection, "transport", None)
            if transport is not None:
                transport.abort()
        server.should_exit = True
        server.force_exit = True
        await task
        if self._client is not None:
            await self._client.aclose()
        self._server = None
        self._task = None
        self._client = None
        logger.info("Static server on port %d stopped", self.port)

    def info(self) -> RunningServer:
        return RunningServer(
            project_id=self.project_id,
            port=self.port,
            root=self.root,
            started_at=self.started_at or datetime.now(UTC),
            connections=self.connection_count,
        )
