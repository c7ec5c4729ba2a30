"""FastAPI app entrypoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI

from spages.api.deps import (
    get_broadcaster,
    get_deploy_manager,
    get_project_manager,
    get_store,
)
from spages.api.routes.deploy import router as deploy_router
from spages.api.routes.projects import router as projects_router
from spages.api.routes.runtime import router as runtime_router
from spages.api.routes.streams import router as streams_router
from spages.api.routes.system import router as system_router
from spages.config import APP_VERSION, get_settings
from spages.log_config import configure_logging

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    store = get_store()
    deploy_manager = get_deploy_manager()

    store.sync()
    sync_task = asyncio.create_task(store.sync_forever(settings.index_sync_interval))
    if settings.core_frontend_enabled:
        get_project_manager().ensure_core_project(
            project_id=settings.core_frontend_id,
            name=settings.core_frontend_name,
            port=settings.core_frontend_port,
            source_root=settings.core_frontend_source,
        )
    if settings.restore_running:
        await deploy_manager.restore_servers()
    logger.info("Control plane ready on %s", settings.api_base_url)
    try:
        yield
    finally:
        sync_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sync_task
        await deploy_manager.shutdown()
        get_broadcaster().close_all()


def create_app() -> FastAPI:
    app = FastAPI(title="spages API", version=APP_VERSION, lifespan=lifespan)
    app.include_router(streams_router)
    app.include_router(projects_router)
    app.include_router(deploy_router)
    app.include_router(runtime_router)
    app.include_router(system_router)

    @app.get("/api/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "spages.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_config=None,
    )
