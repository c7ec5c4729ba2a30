from __future__ import annotations

import asyncio
import io
import json
import os
import tarfile
from pathlib import Path

import httpx
import pytest

from spages.core.runtime_manager import (
    SYSTEM_RUNTIME,
    OutputChunk,
    RuntimeManager,
    parse_version_range,
)
from spages.errors import (
    CommandError,
    RuntimeInstallError,
    RuntimeNotInstalledError,
    RuntimeResolutionError,
)


def _node_archive(version: str) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as bundle:
        payload = b"#!/bin/sh\necho v" + version.encode() + b"\n"
        info = tarfile.TarInfo(f"node-v{version}-linux-x64/bin/node")
        info.size = len(payload)
        info.mode = 0o755
        bundle.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def _install_version(runtime_dir: Path, version: str) -> None:
    (runtime_dir / f"node-v{version}" / "bin").mkdir(parents=True)


class _FakeProcess:
    def __init__(self, stdout: bytes, stderr: bytes = b"", returncode: int = 0) -> None:
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.returncode: int | None = None
        self._exit_code = returncode
        self.killed = False

    async def wait(self) -> int:
        self.returncode = self._exit_code
        return self._exit_code

    def kill(self) -> None:
        self.killed = True
        self._exit_code = -9


def test_parse_version_range_picks_highest_literal() -> None:
    assert parse_version_range("^20.19.0 || >=22.12.0") == "22.12.0"
    assert parse_version_range(">=18.0.0 <21.0.0") == "21.0.0"
    assert parse_version_range("v20.10.1") == "20.10.1"
    assert parse_version_range("20") == "20.0.0"
    assert parse_version_range(">=18") == "18.0.0"
    assert parse_version_range("lts/*") is None


def test_detect_required_version(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    assert manager.detect_required_version(tmp_path) == SYSTEM_RUNTIME

    (tmp_path / ".nvmrc").write_text("20.11.0\n", encoding="utf-8")
    assert manager.detect_required_version(tmp_path) == "20.11.0"

    (tmp_path / "package.json").write_text(
        json.dumps({"engines": {"node": ">=22.12.0"}}), encoding="utf-8"
    )
    assert manager.detect_required_version(tmp_path) == ">=22.12.0"


def test_installed_versions_sorted_and_preferred(tmp_path: Path) -> None:
    runtime_dir = tmp_path / "runtimes"
    manager = RuntimeManager(runtime_dir)
    with pytest.raises(RuntimeNotInstalledError):
        manager.preferred_version()

    for version in ("20.9.0", "22.12.0", "20.10.0"):
        _install_version(runtime_dir, version)
    (runtime_dir / ".node-v18.0.0.partial").mkdir()

    assert manager.installed_versions() == ["20.9.0", "20.10.0", "22.12.0"]
    assert manager.preferred_version() == "22.12.0"
    assert [item.version for item in manager.installations()] == manager.installed_versions()


def test_pin_version_only_writes_missing_files(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    (tmp_path / "package.json").write_text(json.dumps({"name": "ui"}), encoding="utf-8")

    assert manager.pin_version(tmp_path, "24.11.0", engines=True) == [".nvmrc", "package.json"]
    assert (tmp_path / ".nvmrc").read_text(encoding="utf-8").strip() == "24.11.0"
    manifest = json.loads((tmp_path / "package.json").read_text(encoding="utf-8"))
    assert manifest["engines"]["node"] == "24.11.0"

    assert manager.pin_version(tmp_path, "22.0.0", engines=True) == []


def test_rewrite_command_targets_selected_runtime(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    rewritten = manager.rewrite_command("npm run build", "22.12.0")

    assert rewritten.endswith(" run build")
    assert str(tmp_path / "runtimes" / "node-v22.12.0") in rewritten
    assert manager.rewrite_command("npm run build", SYSTEM_RUNTIME) == "npm run build"
    assert manager.rewrite_command("vite build", "22.12.0") == "vite build"


def test_command_env_prefixes_path(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    env = manager.command_env("22.12.0", tmp_path, {"API_URL": "https://example.com"})

    entries = env["PATH"].split(os.pathsep)
    assert entries[0] == str(tmp_path / "runtimes" / "node-v22.12.0" / "bin")
    assert entries[1] == str(tmp_path / "node_modules" / ".bin")
    assert env["API_URL"] == "https://example.com"


@pytest.mark.asyncio
async def test_install_downloads_and_extracts(tmp_path: Path) -> None:
    requested: list[str] = []
    archive = _node_archive("22.12.0")

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=archive)

    manager = RuntimeManager(
        tmp_path / "runtimes",
        dist_url="https://dist.example.com",
        transport=httpx.MockTransport(handler),
    )
    messages: list[str] = []

    version = await manager.install("^20.19.0 || >=22.12.0", messages.append)

    assert version == "22.12.0"
    assert requested[0].startswith("https://dist.example.com/v22.12.0/node-v22.12.0-")
    assert (tmp_path / "runtimes" / "node-v22.12.0" / "bin" / "node").is_file()
    assert "Downloading: 100%" in messages
    assert messages[-1] == "Node.js v22.12.0 installed successfully"
    assert not list((tmp_path / "runtimes").glob("*.tar.gz"))

    await manager.install("22.12.0", messages.append)
    assert len(requested) == 1
    assert messages[-1] == "Node.js v22.12.0 already installed"


@pytest.mark.asyncio
async def test_install_failure_cleans_up(tmp_path: Path) -> None:
    manager = RuntimeManager(
        tmp_path / "runtimes",
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )

    with pytest.raises(RuntimeInstallError):
        await manager.install("21.0.0")

    assert manager.installed_versions() == []
    assert list((tmp_path / "runtimes").iterdir()) == []


@pytest.mark.asyncio
async def test_install_rejects_unparseable_constraint(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    with pytest.raises(RuntimeResolutionError):
        await manager.install("latest")


@pytest.mark.asyncio
async def test_run_streams_output(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[tuple[str, dict[str, object]]] = []

    async def fake_shell(command: str, **kwargs: object) -> _FakeProcess:
        calls.append((command, kwargs))
        return _FakeProcess(b"added 12 packages\n", b"npm warn deprecated\n")

    monkeypatch.setattr(
        "spages.core.runtime_manager.asyncio.create_subprocess_shell", fake_shell
    )
    manager = RuntimeManager(tmp_path / "runtimes")
    chunks: list[OutputChunk] = []

    result = await manager.run(
        "npm install", SYSTEM_RUNTIME, tmp_path, chunks.append, env={"CI": "1"}
    )

    assert result.returncode == 0
    assert {chunk.stream for chunk in chunks} == {"stdout", "stderr"}
    assert "added 12 packages" in result.output_tail
    command, kwargs = calls[0]
    assert command == "npm install"
    assert kwargs["cwd"] == tmp_path
    assert kwargs["env"]["CI"] == "1"  # type: ignore[index]


@pytest.mark.asyncio
async def test_run_raises_command_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def fake_shell(command: str, **kwargs: object) -> _FakeProcess:
        del command, kwargs
        return _FakeProcess(b"", b"Error: build failed\n", returncode=2)

    monkeypatch.setattr(
        "spages.core.runtime_manager.asyncio.create_subprocess_shell", fake_shell
    )
    manager = RuntimeManager(tmp_path / "runtimes")

    with pytest.raises(CommandError) as excinfo:
        await manager.run("npm run build", SYSTEM_RUNTIME, tmp_path)

    assert excinfo.value.returncode == 2
    assert "build failed" in excinfo.value.output_tail


@pytest.mark.asyncio
async def test_stream_requires_existing_directory(tmp_path: Path) -> None:
    manager = RuntimeManager(tmp_path / "runtimes")
    with pytest.raises(NotADirectoryError):
        async for _chunk in manager.stream("npm install", SYSTEM_RUNTIME, tmp_path / "missing"):
            pass
