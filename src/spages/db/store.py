"""JSON-file persistence for projects, deployments, and environment variables.

Every project owns one directory under ``projects_dir``::

    <name>/config.json        full project record
    <name>/deployments.json   {"current": ..., "history": [...]}, newest first
    <name>/env.json           flat string map
    <name>/logs/<id>.log      one file per deployment
    <name>/source/            checked-out sources (unless ``source_root`` is set)

A separate ``projects-index.json`` caches a summary of every project keyed by id.
All mutations rewrite whole files and never suspend between read and write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from spages.errors import DeploymentNotFoundError, ProjectNotFoundError
from spages.models.deployment import Deployment, DeploymentHistory, LogEntry, LogLevel
from spages.models.project import Project, ProjectIndexEntry

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
DEPLOYMENTS_FILE = "deployments.json"
ENV_FILE = "env.json"
LOGS_DIR = "logs"
SOURCE_DIR = "source"

_LOG_LINE = re.compile(r"^\[(.*?)\] \[([A-Z]+)\] (.*)$")


def format_log_line(timestamp: str, level: LogLevel, message: str) -> str:
    return f"[{timestamp}] [{level.value.upper()}] {message}\n"


def parse_log_file(path: Path) -> list[LogEntry]:
    """Parse a deployment log, folding un-prefixed lines into the previous entry."""
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []

    entries: list[LogEntry] = []
    for raw_line in content.split("\n"):
        if not raw_line:
            continue
        line = raw_line.removesuffix("\r")
        match = _LOG_LINE.match(line)
        if match:
            try:
                level = LogLevel(match.group(2).lower())
            except ValueError:
                level = LogLevel.INFO
            entries.append(
                LogEntry(timestamp=match.group(1), type=level, message=match.group(3))
            )
        elif entries:
            entries[-1].message += "\n" + line
    return entries


def _read_json(path: Path) -> Any | None:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except json.JSONDecodeError:
        logger.error("Corrupt JSON file ignored: %s", path)
        return None


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    os.replace(tmp, path)


class ProjectPaths:
    """Filesystem locations for one project."""

    def __init__(self, projects_dir: Path, name: str, source_root: Path | None = None) -> None:
        self.name = name
        self.root = projects_dir / name
        self.config = self.root / CONFIG_FILE
        self.deployments = self.root / DEPLOYMENTS_FILE
        self.env = self.root / ENV_FILE
        self.logs = self.root / LOGS_DIR
        if source_root is None:
            self.source = self.root / SOURCE_DIR
        elif source_root.is_absolute():
            self.source = source_root
        else:
            self.source = Path.cwd() / source_root

    def init(self) -> None:
        """Create the directory scaffold and empty state files."""
        self.logs.mkdir(parents=True, exist_ok=True)
        self.source.mkdir(parents=True, exist_ok=True)
        if not self.config.exists():
            _write_json(self.config, {})
        if not self.deployments.exists():
            _write_json(self.deployments, DeploymentHistory().model_dump(mode="json"))
        if not self.env.exists():
            _write_json(self.env, {})

    def exists(self) -> bool:
        return self.config.exists()

    def remove(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)


class ProjectStore:
    """Data access layer for per-project state and the project index."""

    def __init__(self, projects_dir: Path, index_path: Path, *, history_limit: int = 50) -> None:
        self._projects_dir = projects_dir
        self._index_path = index_path
        self._history_limit = history_limit
        self._projects_dir.mkdir(parents=True, exist_ok=True)
        self._index_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def projects_dir(self) -> Path:
        return self._projects_dir

    # -- index -------------------------------------------------------------

    def read_index(self) -> dict[str, ProjectIndexEntry]:
        raw = _read_json(self._index_path)
        if not isinstance(raw, dict):
            return {}
        entries: dict[str, ProjectIndexEntry] = {}
        for project_id, value in raw.items():
            try:
                entries[project_id] = ProjectIndexEntry.model_validate(value)
            except ValidationError:
                logger.warning("Skipping malformed index entry: %s", project_id)
        return entries

    def _write_index(self, entries: dict[str, ProjectIndexEntry]) -> None:
        _write_json(
            self._index_path,
            {project_id: entry.model_dump(mode="json") for project_id, entry in entries.items()},
        )

    def _index_entry(self, project: Project) -> ProjectIndexEntry:
        return ProjectIndexEntry(
            name=project.name,
            path=f"{self._projects_dir.name}/{project.name}",
            port=project.port,
            status=project.status,
            last_deploy=project.last_deploy,
            repository=project.repository,
            branch=project.branch,
            url=project.url,
            updated_at=project.updated_at,
            type=project.type,
            managed=project.managed,
        )

    def update_index(self, project_id: str, **fields: Any) -> None:
        entries = self.read_index()
        current = entries.get(project_id)
        if current is None:
            project = self.read(project_id)
            if project is None:
                return
            current = self._index_entry(project)
        data = current.model_dump()
        data.update({key: value for key, value in fields.items() if key in data})
        data["updated_at"] = datetime.now(UTC)
        entries[project_id] = ProjectIndexEntry.model_validate(data)
        self._write_index(entries)

    def delete_index(self, project_id: str) -> None:
        entries = self.read_index()
        if entries.pop(project_id, None) is not None:
            self._write_index(entries)

    def sync(self) -> dict[str, ProjectIndexEntry]:
        """Rebuild the index by scanning every project directory."""
        entries = {project.id: self._index_entry(project) for project in self.list_projects()}
        self._write_index(entries)
        logger.debug("Synced %d projects into index", len(entries))
        return entries

    async def sync_forever(self, interval: float) -> None:
        while True:
            try:
                self.sync()
            except OSError:
                logger.exception("Project index sync failed")
            await asyncio.sleep(interval)

    # -- projects ----------------------------------------------------------

    def _scan_configs(self) -> list[Project]:
        projects: list[Project] = []
        if not self._projects_dir.exists():
            return projects
        for directory in sorted(self._projects_dir.iterdir()):
            config = directory / CONFIG_FILE
            if not directory.is_dir() or not config.exists():
                continue
            raw = _read_json(config)
            if not raw:
                continue
            try:
                projects.append(Project.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping project with invalid config: %s", directory.name)
        return projects

    def list_projects(self) -> list[Project]:
        return self._scan_configs()

    def resolve_name(self, project_id: str) -> str | None:
        """Map a project id to its directory name via the index, then a full scan."""
        entry = self.read_index().get(project_id)
        if entry is not None and (self._projects_dir / entry.name / CONFIG_FILE).exists():
            return entry.name
        for project in self._scan_configs():
            if project.id == project_id:
                return project.name
        return None

    def paths(self, project: Project) -> ProjectPaths:
        return ProjectPaths(self._projects_dir, project.name, project.source_root)

    def _require_paths(self, project_id: str) -> ProjectPaths:
        project = self.read(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return self.paths(project)

    def read_by_name(self, name: str) -> Project | None:
        raw = _read_json(self._projects_dir / name / CONFIG_FILE)
        if not raw:
            return None
        return Project.model_validate(raw)

    def read(self, project_id: str) -> Project | None:
        name = self.resolve_name(project_id)
        if name is None:
            return None
        return self.read_by_name(name)

    def create(self, project: Project) -> Project:
        paths = self.paths(project)
        paths.init()
        self.write(project)
        self.update_index(project.id, **self._index_entry(project).model_dump())
        return project

    def write(self, project: Project) -> None:
        project.touch()
        paths = ProjectPaths(self._projects_dir, project.name)
        _write_json(paths.config, project.model_dump(mode="json"))

    def update(self, project_id: str, **updates: Any) -> Project | None:
        project = self.read(project_id)
        if project is None:
            return None
        updated = Project.model_validate({**project.model_dump(), **updates})
        self.write(updated)
        return updated

    def remove(self, project_id: str) -> None:
        project = self.read(project_id)
        if project is not None:
            ProjectPaths(self._projects_dir, project.name).remove()
        self.delete_index(project_id)

    # -- deployment history ------------------------------------------------

    def read_history(self, project_id: str) -> DeploymentHistory:
        paths = self._require_paths(project_id)
        raw = _read_json(paths.deployments)
        if not raw:
            return DeploymentHistory()
        return DeploymentHistory.model_validate(raw)

    def _write_history(self, project_id: str, history: DeploymentHistory) -> None:
        paths = self._require_paths(project_id)
        _write_json(paths.deployments, history.model_dump(mode="json"))

    def add_deployment(self, project_id: str, deployment: Deployment) -> None:
        history = self.read_history(project_id)
        history.history.insert(0, deployment)
        history.current = deployment.id
        del history.history[self._history_limit :]
        self._write_history(project_id, history)

    def update_deployment(
        self, project_id: str, deployment_id: str, **updates: Any
    ) -> Deployment | None:
        history = self.read_history(project_id)
        for index, deployment in enumerate(history.history):
            if deployment.id == deployment_id:
                updated = Deployment.model_validate({**deployment.model_dump(), **updates})
                history.history[index] = updated
                self._write_history(project_id, history)
                return updated
        return None

    def latest_deployment(self, project_id: str) -> Deployment | None:
        history = self.read_history(project_id).history
        return history[0] if history else None

    # -- environment variables ---------------------------------------------

    def read_env(self, project_id: str) -> dict[str, str]:
        raw = _read_json(self._require_paths(project_id).env)
        if not isinstance(raw, dict):
            return {}
        return {str(key): str(value) for key, value in raw.items()}

    def write_env(self, project_id: str, env: dict[str, str]) -> None:
        _write_json(self._require_paths(project_id).env, env)

    def set_env(self, project_id: str, key: str, value: str) -> None:
        env = self.read_env(project_id)
        env[key] = value
        self.write_env(project_id, env)

    def delete_env(self, project_id: str, key: str) -> None:
        env = self.read_env(project_id)
        if env.pop(key, None) is not None:
            self.write_env(project_id, env)

    # -- logs --------------------------------------------------------------

    def log_path(self, project_id: str, deployment_id: str) -> Path:
        """Log file of a deployment; ids that leave the logs directory are unknown."""
        logs = self._require_paths(project_id).logs
        path = logs / f"{deployment_id}.log"
        if path.resolve().parent != logs.resolve():
            raise DeploymentNotFoundError(deployment_id)
        return path

    def read_logs(self, project_id: str, deployment_id: str | None = None) -> list[LogEntry]:
        paths = self._require_paths(project_id)
        if deployment_id is not None:
            return parse_log_file(self.log_path(project_id, deployment_id))
        latest = self.latest_deployment(project_id)
        if latest is None:
            return []
        return parse_log_file(paths.logs / latest.log_file)
