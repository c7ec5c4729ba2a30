"""Shared API dependency providers."""

from __future__ import annotations

import secrets
from functools import lru_cache

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from spages.config import Settings, get_settings
from spages.core.broadcaster import EventBroadcaster
from spages.core.deploy_manager import DeployManager
from spages.core.git_manager import GitManager
from spages.core.process_registry import ProcessRegistry
from spages.core.project_manager import ProjectManager
from spages.core.runtime_manager import RuntimeManager
from spages.db.accounts import AccountStore
from spages.db.store import ProjectStore

_BEARER = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def get_store() -> ProjectStore:
    settings = get_settings()
    return ProjectStore(
        settings.resolved_projects_dir,
        settings.resolved_index_path,
        history_limit=settings.history_limit,
    )


@lru_cache(maxsize=1)
def get_accounts() -> AccountStore:
    return AccountStore(get_settings().resolved_accounts_path)


@lru_cache(maxsize=1)
def get_broadcaster() -> EventBroadcaster:
    settings = get_settings()
    return EventBroadcaster(
        queue_size=settings.subscriber_queue_size,
        heartbeat_seconds=settings.sse_heartbeat_seconds,
    )


@lru_cache(maxsize=1)
def get_runtime_manager() -> RuntimeManager:
    settings = get_settings()
    return RuntimeManager(settings.runtime_dir, dist_url=settings.runtime_dist_url)


@lru_cache(maxsize=1)
def get_git_manager() -> GitManager:
    return GitManager()


@lru_cache(maxsize=1)
def get_registry() -> ProcessRegistry:
    settings = get_settings()
    return ProcessRegistry(
        host=settings.listen_host,
        api_upstream=settings.api_base_url,
        api_prefix=settings.api_prefix,
    )


@lru_cache(maxsize=1)
def get_deploy_manager() -> DeployManager:
    settings = get_settings()
    return DeployManager(
        get_store(),
        get_runtime_manager(),
        get_git_manager(),
        get_broadcaster(),
        get_registry(),
        get_accounts(),
        server_host=settings.server_host,
        port_release_delay=settings.port_release_delay,
        fallback_runtime_version=settings.fallback_runtime_version,
    )


@lru_cache(maxsize=1)
def get_project_manager() -> ProjectManager:
    return ProjectManager(
        get_store(),
        get_deploy_manager(),
        get_broadcaster(),
        release_delay=get_settings().port_release_delay,
    )


def _check_token(expected: str | None, supplied: str | None) -> None:
    if expected is None:
        return
    if supplied is None or not secrets.compare_digest(supplied, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def require_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_BEARER),
    settings: Settings = Depends(get_settings),
) -> None:
    """Bearer token check for regular routes; open when no token is configured."""
    _check_token(settings.api_token, credentials.credentials if credentials else None)


def require_stream_token(
    token: str | None = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Event streams carry the token as a query parameter."""
    _check_token(settings.api_token, token)
