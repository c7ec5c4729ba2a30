"""Deployment records and log entries."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class DeploymentStatus(str, Enum):
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"


class DeployReason(str, Enum):
    """Why a deployment was triggered."""

    MANUAL = "manual"
    PUSH = "push"
    AUTO = "auto"
    INITIAL = "initial"


class LogLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARN = "warn"
    ERROR = "error"


def new_deployment_id() -> str:
    return f"deploy_{time.time_ns() // 1000}"


class Deployment(BaseModel):
    """One execution of the deployment pipeline."""

    id: str = Field(default_factory=new_deployment_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status: DeploymentStatus = DeploymentStatus.BUILDING
    commit: str | None = None
    commit_hash: str | None = None
    commit_message: str | None = None
    commit_author: str | None = None
    branch: str | None = None
    reason: DeployReason = DeployReason.MANUAL
    triggered_by: str = "admin"
    log_file: str = ""
    start_time: int = Field(default_factory=lambda: int(time.time() * 1000))
    duration: int = 0
    error: str | None = None
    url: str | None = None
    runtime_version: str | None = None

    def model_post_init(self, __context: object) -> None:
        if not self.log_file:
            self.log_file = f"{self.id}.log"

    def elapsed_ms(self) -> int:
        return int(time.time() * 1000) - self.start_time


class DeploymentHistory(BaseModel):
    """Contents of ``deployments.json``; newest deployment first."""

    current: str | None = None
    history: list[Deployment] = Field(default_factory=list)


class LogEntry(BaseModel):
    """One parsed deployment log line."""

    timestamp: str
    type: LogLevel
    message: str
