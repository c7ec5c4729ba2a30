from __future__ import annotations

import json
from pathlib import Path

from spages.core.framework_detector import detect_framework, detect_output_dir


def _manifest(path: Path, **content: object) -> None:
    (path / "package.json").write_text(json.dumps(content), encoding="utf-8")


def test_vue_vite_project(tmp_path: Path) -> None:
    _manifest(
        tmp_path,
        dependencies={"vue": "^3.4.0"},
        devDependencies={"vite": "^5.0.0"},
        scripts={"build": "vite build"},
    )

    info = detect_framework(tmp_path)

    assert info.type == "vue-vite"
    assert info.framework == "vue"
    assert info.needs_build is True
    assert info.install_deps is True
    assert info.output_dir == "dist"
    assert info.build_command == "vite build"


def test_vue_vite_prefers_existing_build_dir(tmp_path: Path) -> None:
    _manifest(tmp_path, dependencies={"vue": "3", "vite": "5"})
    (tmp_path / "build").mkdir()

    assert detect_framework(tmp_path).output_dir == "build"


def test_vite_config_out_dir_wins(tmp_path: Path) -> None:
    _manifest(tmp_path, dependencies={"react": "18", "vite": "5"})
    (tmp_path / "dist").mkdir()
    (tmp_path / "vite.config.ts").write_text(
        "export default defineConfig({ build: { outDir: 'public/app' } })\n",
        encoding="utf-8",
    )

    info = detect_framework(tmp_path)
    assert info.type == "react-vite"
    assert info.output_dir == "public/app"


def test_static_html_without_manifest(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("<h1>hi</h1>", encoding="utf-8")

    info = detect_framework(tmp_path)

    assert info.type == "static-html"
    assert info.needs_build is False
    assert info.install_deps is False
    assert info.output_dir == "."


def test_static_html_in_public(tmp_path: Path) -> None:
    (tmp_path / "public").mkdir()
    (tmp_path / "public" / "index.html").write_text("<h1>hi</h1>", encoding="utf-8")

    assert detect_framework(tmp_path).output_dir == "public"


def test_create_react_app_defaults_to_build(tmp_path: Path) -> None:
    _manifest(tmp_path, dependencies={"react": "18", "react-scripts": "5"})

    info = detect_framework(tmp_path)
    assert info.type == "create-react-app"
    assert info.output_dir == "build"
    assert info.build_command == "npm run build"


def test_nextjs_is_ssr(tmp_path: Path) -> None:
    _manifest(tmp_path, dependencies={"next": "14", "react": "18"})

    info = detect_framework(tmp_path)
    assert info.type == "nextjs"
    assert info.is_ssr is True
    assert info.output_dir == ".next"
    assert info.start_command == "npm start"


def test_custom_build_script(tmp_path: Path) -> None:
    _manifest(tmp_path, scripts={"build": "make site"})
    (tmp_path / "out").mkdir()

    info = detect_framework(tmp_path)
    assert info.type == "custom"
    assert info.build_command == "make site"
    assert info.output_dir == "out"


def test_plain_node_project(tmp_path: Path) -> None:
    _manifest(tmp_path, dependencies={"express": "4"})

    info = detect_framework(tmp_path)
    assert info.type == "nodejs"
    assert info.needs_build is False
    assert info.install_deps is True


def test_unreadable_manifest_falls_back_to_static_detection(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text("{broken", encoding="utf-8")

    info = detect_framework(tmp_path)
    assert info.type == "unknown"
    assert info.needs_build is False


def test_detect_output_dir_defaults_to_first_candidate(tmp_path: Path) -> None:
    assert detect_output_dir(tmp_path, ("dist", "build")) == "dist"
