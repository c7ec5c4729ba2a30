"""Runtime API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class InstallRuntimeRequest(BaseModel):
    """Version or range to install, e.g. ``20`` or ``>=22.12.0``."""

    version: str = Field(min_length=1)


class RuntimeResponse(BaseModel):
    version: str
    path: str
    platform: str
    arch: str


class RuntimesResponse(BaseModel):
    items: list[RuntimeResponse]
    system: str | None = None
