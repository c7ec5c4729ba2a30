"""Runtime configuration for the control plane."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Settings loaded from ``SPAGES_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="SPAGES_", extra="ignore", populate_by_name=True)

    data_dir: Path = Path("data")
    projects_dir: Path | None = None
    index_path: Path | None = None
    accounts_path: Path | None = None

    runtime_dir: Path = Path("runtime/node-versions")
    runtime_dist_url: str = "https://nodejs.org/dist"
    fallback_runtime_version: str = "24.11.0"

    api_host: str = "127.0.0.1"
    api_port: int = 3000
    api_prefix: str = "/api/"
    api_token: str | None = None
    server_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SPAGES_SERVER_HOST", "SERVER_HOST"),
    )
    listen_host: str = "0.0.0.0"

    history_limit: int = 50
    log_snapshot_lines: int = 10
    subscriber_queue_size: int = 256
    sse_heartbeat_seconds: float = 15.0
    port_release_delay: float = 0.5
    index_sync_interval: float = 30.0

    core_frontend_enabled: bool = True
    core_frontend_id: str = "proj_spages_frontend"
    core_frontend_name: str = "spages-frontend"
    core_frontend_port: int = 5173
    core_frontend_source: Path = Path("../frontend")
    restore_running: bool = True

    log_level: str = "INFO"

    @property
    def resolved_projects_dir(self) -> Path:
        return self.projects_dir or self.data_dir / "projects"

    @property
    def resolved_index_path(self) -> Path:
        return self.index_path or self.data_dir / "projects-index.json"

    @property
    def resolved_accounts_path(self) -> Path:
        return self.accounts_path or self.data_dir / "github-accounts.json"

    @property
    def api_base_url(self) -> str:
        return f"http://{self.api_host}:{self.api_port}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
