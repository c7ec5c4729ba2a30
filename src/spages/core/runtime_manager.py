"""Node.js runtime provisioning and runtime-bound command execution."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import platform
import re
import shlex
import shutil
import sys
import tarfile
import zipfile
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from spages.errors import (
    CommandError,
    RuntimeInstallError,
    RuntimeNotInstalledError,
    RuntimeResolutionError,
)

logger = logging.getLogger(__name__)

SYSTEM_RUNTIME = "system"
VERSION_DIR_PREFIX = "node-v"
PIN_FILE = ".nvmrc"

_TRIPLE = re.compile(r"\d+\.\d+\.\d+")
_MAJOR = re.compile(r"\d+")
_RUNTIME_BINARY = re.compile(r"^(node|npm|npx)(?=\s|$)")
_READ_SIZE = 4096


def version_key(version: str) -> tuple[int, int, int]:
    major, minor, patch = (int(part) for part in version.split(".")[:3])
    return major, minor, patch


def parse_version_range(constraint: str) -> str | None:
    """Reduce a version constraint to one concrete version.

    This is token extraction, not range evaluation: the highest literal
    ``x.y.z`` wins, otherwise the first bare integer becomes ``N.0.0``.
    """
    triples = _TRIPLE.findall(constraint)
    if triples:
        return max(triples, key=version_key)
    major = _MAJOR.search(constraint)
    if major:
        return f"{int(major.group(0))}.0.0"
    return None


def platform_name() -> str:
    if sys.platform == "win32":
        return "win"
    return sys.platform


def arch_name() -> str:
    machine = platform.machine().lower()
    if machine in {"x86_64", "amd64"}:
        return "x64"
    if machine in {"arm64", "aarch64"}:
        return "arm64"
    return "x86"


@dataclass(slots=True)
class RuntimeInstallation:
    """One extracted runtime version."""

    version: str
    path: Path
    platform: str
    arch: str


@dataclass(slots=True)
class OutputChunk:
    """A piece of subprocess output as it arrived."""

    stream: str
    text: str


@dataclass(slots=True)
class CommandResult:
    """Result from running a command to completion."""

    command: str
    returncode: int
    output_tail: str


ProgressCallback = Callable[[str], None]


class RuntimeManager:
    """Install Node.js versions on demand and run commands against them."""

    def __init__(
        self,
        runtime_dir: Path,
        *,
        dist_url: str = "https://nodejs.org/dist",
        transport: httpx.AsyncBaseTransport | None = None,
        output_tail_chars: int = 4000,
    ) -> None:
        self._runtime_dir = runtime_dir
        self._dist_url = dist_url.rstrip("/")
        self._transport = transport
        self._output_tail_chars = output_tail_chars
        self._windows = platform_name() == "win"

    @property
    def runtime_dir(self) -> Path:
        return self._runtime_dir

    # -- version discovery -------------------------------------------------

    def detect_required_version(self, project_path: Path) -> str:
        """Return the declared constraint, or ``"system"`` when none is declared."""
        manifest_path = project_path / "package.json"
        if manifest_path.exists():
            try:
                manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                logger.warning("Cannot read %s for engine constraint", manifest_path)
                manifest = {}
            engines = manifest.get("engines") if isinstance(manifest, dict) else None
            if isinstance(engines, dict) and engines.get("node"):
                return str(engines["node"])

        pin_path = project_path / PIN_FILE
        if pin_path.exists():
            pinned = pin_path.read_text(encoding="utf-8").strip()
            if pinned:
                return pinned
        return SYSTEM_RUNTIME

    def version_dir(self, version: str) -> Path:
        return self._runtime_dir / f"{VERSION_DIR_PREFIX}{version}"

    def installed_versions(self) -> list[str]:
        if not self._runtime_dir.exists():
            return []
        versions = [
            entry.name.removeprefix(VERSION_DIR_PREFIX)
            for entry in self._runtime_dir.iterdir()
            if entry.is_dir() and entry.name.startswith(VERSION_DIR_PREFIX)
        ]
        return sorted((v for v in versions if _TRIPLE.fullmatch(v)), key=version_key)

    def is_installed(self, version: str) -> bool:
        return self.version_dir(version).is_dir()

    def preferred_version(self) -> str:
        """Highest installed version."""
        versions = self.installed_versions()
        if not versions:
            msg = f"No Node.js runtime installed under {self._runtime_dir}"
            raise RuntimeNotInstalledError(msg)
        return versions[-1]

    def installation(self, version: str) -> RuntimeInstallation:
        if not self.is_installed(version):
            raise RuntimeNotInstalledError(f"Node.js v{version} is not installed")
        return RuntimeInstallation(
            version=version,
            path=self.version_dir(version),
            platform=platform_name(),
            arch=arch_name(),
        )

    def installations(self) -> list[RuntimeInstallation]:
        return [self.installation(version) for version in self.installed_versions()]

    def pin_version(self, project_path: Path, version: str, *, engines: bool = False) -> list[str]:
        """Write ``.nvmrc`` (and optionally ``engines.node``) when not already present.

        Returns the names of the files that were written.
        """
        written: list[str] = []
        pin_path = project_path / PIN_FILE
        if not pin_path.exists():
            pin_path.write_text(f"{version}\n", encoding="utf-8")
            written.append(PIN_FILE)

        manifest_path = project_path / "package.json"
        if engines and manifest_path.exists():
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            manifest_engines = manifest.setdefault("engines", {})
            if not manifest_engines.get("node"):
                manifest_engines["node"] = version
                manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
                written.append("package.json")
        return written

    # -- installation ------------------------------------------------------

    def archive_name(self, version: str) -> str:
        extension = "zip" if self._windows else "tar.gz"
        return f"node-v{version}-{platform_name()}-{arch_name()}.{extension}"

    def archive_url(self, version: str) -> str:
        return f"{self._dist_url}/v{version}/{self.archive_name(version)}"

    async def install(self, constraint: str, on_progress: ProgressCallback | None = None) -> str:
        """Ensure a version satisfying ``constraint`` is installed and return it."""
        version = parse_version_range(constraint)
        if version is None:
            raise RuntimeResolutionError(f"Cannot parse version from: {constraint}")

        notify = on_progress or (lambda _message: None)
        if self.is_installed(version):
            notify(f"Node.js v{version} already installed")
            return version

        self._runtime_dir.mkdir(parents=True, exist_ok=True)
        url = self.archive_url(version)
        archive = self._runtime_dir / self.archive_name(version)
        staging = self._runtime_dir / f".{VERSION_DIR_PREFIX}{version}.partial"
        target = self.version_dir(version)

        logger.info("Installing Node.js v%s from %s", version, url)
        notify(f"Downloading Node.js v{version} from {url}...")
        try:
            await self._download(url, archive, notify)
            notify(f"Extracting Node.js v{version}...")
            await asyncio.to_thread(_extract_archive, archive, staging)
            staging.rename(target)
        except (httpx.HTTPError, OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
            logger.error("Failed to install Node.js v%s: %s", version, exc)
            shutil.rmtree(staging, ignore_errors=True)
            shutil.rmtree(target, ignore_errors=True)
            raise RuntimeInstallError(f"Failed to install Node.js v{version}: {exc}") from exc
        finally:
            archive.unlink(missing_ok=True)

        notify(f"Node.js v{version} installed successfully")
        return version

    async def _download(self, url: str, destination: Path, notify: ProgressCallback) -> None:
        async with httpx.AsyncClient(
            follow_redirects=True,
            transport=self._transport,
            timeout=httpx.Timeout(30.0, read=None),
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length") or 0)
                received = 0
                last_percent = -1
                with destination.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
                        received += len(chunk)
                        if total:
                            percent = round(received * 100 / total)
                            if percent != last_percent:
                                last_percent = percent
                                notify(f"Downloading: {percent}%")

    # -- execution ---------------------------------------------------------

    def bin_dir(self, version: str) -> Path | None:
        if version == SYSTEM_RUNTIME:
            return None
        root = self.version_dir(version)
        return root if self._windows else root / "bin"

    def _executable(self, version: str, name: str) -> str:
        bin_dir = self.bin_dir(version)
        if bin_dir is None:
            return name
        if self._windows:
            return str(bin_dir / (f"{name}.exe" if name == "node" else f"{name}.cmd"))
        return str(bin_dir / name)

    def node_executable(self, version: str) -> str:
        return self._executable(version, "node")

    def npm_executable(self, version: str) -> str:
        return self._executable(version, "npm")

    def npx_executable(self, version: str) -> str:
        return self._executable(version, "npx")

    def rewrite_command(self, command: str, version: str) -> str:
        """Point a leading ``node``/``npm``/``npx`` at the selected runtime."""
        if version == SYSTEM_RUNTIME:
            return command

        def replace(match: re.Match[str]) -> str:
            executable = self._executable(version, match.group(1))
            return f'"{executable}"' if self._windows else shlex.quote(executable)

        return _RUNTIME_BINARY.sub(replace, command, count=1)

    def command_env(
        self, version: str, cwd: Path, extra: dict[str, str] | None = None
    ) -> dict[str, str]:
        env = {**os.environ, **(extra or {})}
        path_entries = [str(cwd / "node_modules" / ".bin")]
        bin_dir = self.bin_dir(version)
        if bin_dir is not None:
            path_entries.insert(0, str(bin_dir))
        if env.get("PATH"):
            path_entries.append(env["PATH"])
        env["PATH"] = os.pathsep.join(path_entries)
        return env

    async def stream(
        self,
        command: str,
        version: str,
        cwd: Path,
        env: dict[str, str] | None = None,
    ) -> AsyncIterator[OutputChunk]:
        """Yield output chunks as the command produces them.

        Raises ``CommandError`` once the command exits non-zero.
        """
        if not cwd.is_dir():
            raise NotADirectoryError(f"Working directory does not exist: {cwd}")

        resolved = self.rewrite_command(command, version)
        logger.debug("Running %r in %s (runtime %s)", resolved, cwd, version)
        process = await asyncio.create_subprocess_shell(
            resolved,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self.command_env(version, cwd, env),
        )
        queue: asyncio.Queue[OutputChunk | None] = asyncio.Queue()
        readers = [
            asyncio.create_task(_pump(process.stdout, "stdout", queue)),
            asyncio.create_task(_pump(process.stderr, "stderr", queue)),
        ]
        tail = ""
        try:
            open_streams = len(readers)
            while open_streams:
                chunk = await queue.get()
                if chunk is None:
                    open_streams -= 1
                    continue
                tail = (tail + chunk.text)[-self._output_tail_chars :]
                yield chunk
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            for reader in readers:
                reader.cancel()

        if returncode != 0:
            raise CommandError(command, returncode, tail)

    async def run(
        self,
        command: str,
        version: str,
        cwd: Path,
        on_output: Callable[[OutputChunk], None] | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        tail = ""
        async for chunk in self.stream(command, version, cwd, env=env):
            tail = (tail + chunk.text)[-self._output_tail_chars :]
            if on_output is not None:
                on_output(chunk)
        return CommandResult(command=command, returncode=0, output_tail=tail)

    async def system_version(self) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                "node",
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RuntimeNotInstalledError("Node.js not found in system PATH") from exc
        stdout, _stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeNotInstalledError("Node.js not found in system PATH")
        return stdout.decode("utf-8", errors="replace").strip().removeprefix("v")


async def _pump(
    reader: asyncio.StreamReader | None,
    name: str,
    queue: asyncio.Queue[OutputChunk | None],
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        if reader is None:
            return
        while True:
            data = await reader.read(_READ_SIZE)
            text = decoder.decode(data, final=not data)
            if text:
                await queue.put(OutputChunk(stream=name, text=text))
            if not data:
                return
    finally:
        await queue.put(None)


def _extract_archive(archive: Path, target: Path) -> None:
    """Extract ``archive`` into ``target`` and lift a single top-level directory."""
    shutil.rmtree(target, ignore_errors=True)
    target.mkdir(parents=True)
    if archive.name.endswith(".zip"):
        with zipfile.ZipFile(archive) as bundle:
            bundle.extractall(target)
    else:
        with tarfile.open(archive, "r:gz") as bundle:
            bundle.extractall(target, filter="data")

    entries = list(target.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        nested = entries[0]
        for child in nested.iterdir():
            child.rename(target / child.name)
        nested.rmdir()
