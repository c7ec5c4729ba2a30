"""Framework detection for checked-out project sources."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MANIFEST_FILE = "package.json"
DEFAULT_BUILD_COMMAND = "npm run build"
VITE_CONFIG_FILES = ("vite.config.js", "vite.config.ts")

_VITE_OUT_DIR = re.compile(r"""outDir:\s*['"]([^'"]+)['"]""")


@dataclass(slots=True)
class FrameworkInfo:
    """Build descriptor for a project source tree."""

    name: str
    type: str
    build_command: str | None
    start_command: str | None
    output_dir: str
    needs_build: bool
    install_deps: bool
    framework: str
    build_tool: str | None
    is_ssr: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, frozen=True)
class _Signature:
    name: str
    type: str
    framework: str
    build_tool: str
    matches: Callable[[dict[str, str]], bool]
    output_candidates: tuple[str, ...] = ("dist", "build")
    fixed_output: str | None = None
    is_ssr: bool = False


_SIGNATURES: tuple[_Signature, ...] = (
    _Signature(
        name="Vue 3 (Vite)",
        type="vue-vite",
        framework="vue",
        build_tool="vite",
        matches=lambda deps: "vue" in deps and "vite" in deps,
    ),
    _Signature(
        name="Vue 2 (Vue CLI)",
        type="vue-cli",
        framework="vue",
        build_tool="webpack",
        matches=lambda deps: "vue" in deps and ("@vue/cli-service" in deps or "vue-cli" in deps),
    ),
    _Signature(
        name="React (Vite)",
        type="react-vite",
        framework="react",
        build_tool="vite",
        matches=lambda deps: "react" in deps and "vite" in deps,
    ),
    _Signature(
        name="React (Create React App)",
        type="create-react-app",
        framework="react",
        build_tool="webpack",
        matches=lambda deps: "react" in deps and "react-scripts" in deps,
        output_candidates=("build", "dist"),
    ),
    _Signature(
        name="Next.js",
        type="nextjs",
        framework="react",
        build_tool="webpack",
        matches=lambda deps: "next" in deps,
        fixed_output=".next",
        is_ssr=True,
    ),
    _Signature(
        name="Nuxt.js",
        type="nuxtjs",
        framework="vue",
        build_tool="webpack",
        matches=lambda deps: "nuxt" in deps,
        fixed_output=".nuxt",
        is_ssr=True,
    ),
    _Signature(
        name="Svelte (Vite)",
        type="svelte-vite",
        framework="svelte",
        build_tool="vite",
        matches=lambda deps: "svelte" in deps and "vite" in deps,
        output_candidates=("dist", "build", "public/build"),
    ),
    _Signature(
        name="Angular",
        type="angular",
        framework="angular",
        build_tool="angular-cli",
        matches=lambda deps: "@angular/core" in deps,
        output_candidates=("dist", "dist/browser"),
    ),
    _Signature(
        name="Vite",
        type="vite",
        framework="vanilla",
        build_tool="vite",
        matches=lambda deps: "vite" in deps,
    ),
    _Signature(
        name="Webpack",
        type="webpack",
        framework="vanilla",
        build_tool="webpack",
        matches=lambda deps: "webpack" in deps,
    ),
)


def detect_framework(project_path: Path) -> FrameworkInfo:
    """Classify the source tree at ``project_path``.

    Manifest dependencies are matched against an ordered signature table and the
    first hit wins. Trees without a readable manifest are checked for static HTML.
    """
    manifest = read_manifest(project_path)
    if manifest is None:
        info = _detect_static(project_path)
    else:
        info = _identify(manifest, project_path)
    logger.info("Detected framework %s for %s", info.name, project_path)
    return info


def read_manifest(project_path: Path) -> dict[str, Any] | None:
    path = project_path / MANIFEST_FILE
    if not path.exists():
        return None
    try:
        manifest = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Unreadable %s in %s", MANIFEST_FILE, project_path)
        return None
    return manifest if isinstance(manifest, dict) else None


def _identify(manifest: dict[str, Any], project_path: Path) -> FrameworkInfo:
    deps: dict[str, str] = {
        **(manifest.get("dependencies") or {}),
        **(manifest.get("devDependencies") or {}),
    }
    scripts: dict[str, str] = manifest.get("scripts") or {}

    for signature in _SIGNATURES:
        if not signature.matches(deps):
            continue
        if signature.fixed_output is not None:
            output_dir = signature.fixed_output
        else:
            output_dir = detect_output_dir(project_path, signature.output_candidates)
        return FrameworkInfo(
            name=signature.name,
            type=signature.type,
            build_command=scripts.get("build") or DEFAULT_BUILD_COMMAND,
            start_command=(scripts.get("start") or "npm start") if signature.is_ssr else None,
            output_dir=output_dir,
            needs_build=True,
            install_deps=True,
            framework=signature.framework,
            build_tool=signature.build_tool,
            is_ssr=signature.is_ssr,
        )

    if scripts.get("build"):
        return FrameworkInfo(
            name="Custom Build",
            type="custom",
            build_command=scripts["build"],
            start_command=scripts.get("start"),
            output_dir=detect_output_dir(project_path, ("dist", "build", "public", "out")),
            needs_build=True,
            install_deps=True,
            framework="unknown",
            build_tool="custom",
        )

    return FrameworkInfo(
        name="Node.js Project",
        type="nodejs",
        build_command=None,
        start_command=scripts.get("start") or "node index.js",
        output_dir=".",
        needs_build=False,
        install_deps=True,
        framework="nodejs",
        build_tool=None,
    )


def _detect_static(project_path: Path) -> FrameworkInfo:
    if (project_path / "index.html").exists() or (project_path / "index.htm").exists():
        return _static("Static HTML", ".")
    if (project_path / "public" / "index.html").exists():
        return _static("Static HTML (public)", "public")
    return FrameworkInfo(
        name="Unknown",
        type="unknown",
        build_command=None,
        start_command=None,
        output_dir=".",
        needs_build=False,
        install_deps=False,
        framework="unknown",
        build_tool=None,
    )


def _static(name: str, output_dir: str) -> FrameworkInfo:
    return FrameworkInfo(
        name=name,
        type="static-html",
        build_command=None,
        start_command=None,
        output_dir=output_dir,
        needs_build=False,
        install_deps=False,
        framework="static",
        build_tool=None,
    )


def detect_output_dir(project_path: Path, candidates: tuple[str, ...]) -> str:
    """Pick the build output directory.

    An ``outDir`` literal in a Vite config wins, then the first existing candidate,
    then the first candidate.
    """
    for filename in VITE_CONFIG_FILES:
        config = project_path / filename
        if not config.exists():
            continue
        try:
            match = _VITE_OUT_DIR.search(config.read_text(encoding="utf-8"))
        except OSError:
            logger.warning("Unreadable bundler config: %s", config)
            match = None
        if match:
            return match.group(1)
        break

    for candidate in candidates:
        if (project_path / candidate).exists():
            return candidate
    return candidates[0]
