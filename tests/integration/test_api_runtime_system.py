from __future__ import annotations

import socket
from pathlib import Path
from types import SimpleNamespace

import psutil
import pytest
from fastapi.testclient import TestClient

from spages.errors import RuntimeNotInstalledError
from tests.support.api_helpers import build_api


def test_list_runtimes(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    (tmp_path / "runtimes" / "node-v20.11.0" / "bin").mkdir(parents=True)
    (tmp_path / "runtimes" / "node-v22.12.0" / "bin").mkdir(parents=True)

    async def no_system_node() -> str:
        raise RuntimeNotInstalledError("Node.js not found in system PATH")

    monkeypatch.setattr(harness.runtime, "system_version", no_system_node)
    client = TestClient(harness.app)

    response = client.get("/api/runtimes")

    assert response.status_code == 200
    body = response.json()
    assert [item["version"] for item in body["items"]] == ["20.11.0", "22.12.0"]
    assert body["system"] is None


def test_install_runtime_rejects_unparseable_version(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    client = TestClient(harness.app)

    response = client.post("/api/runtimes/install", json={"version": "latest"})

    assert response.status_code == 400
    assert "Cannot parse version" in response.json()["detail"]


def test_install_runtime_already_present(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    (tmp_path / "runtimes" / "node-v22.12.0" / "bin").mkdir(parents=True)
    client = TestClient(harness.app)

    response = client.post("/api/runtimes/install", json={"version": ">=22.12.0"})

    assert response.status_code == 200
    assert response.json()["version"] == "22.12.0"


def test_system_servers_empty(tmp_path: Path) -> None:
    harness = build_api(tmp_path)
    client = TestClient(harness.app)

    response = client.get("/api/system/servers")

    assert response.status_code == 200
    assert response.json() == {"items": []}


def test_system_network_interfaces(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    harness = build_api(tmp_path, api_token="secret")
    monkeypatch.setattr(
        psutil,
        "net_if_addrs",
        lambda: {"eth0": [SimpleNamespace(family=socket.AF_INET, address="10.0.0.5")]},
    )
    client = TestClient(harness.app)

    assert client.get("/api/system/network-interfaces").status_code == 401
    response = client.get(
        "/api/system/network-interfaces", headers={"Authorization": "Bearer secret"}
    )

    assert response.status_code == 200
    assert response.json()["interfaces"] == [
        {"name": "localhost", "address": "localhost", "family": "IPv4", "internal": True},
        {"name": "eth0", "address": "10.0.0.5", "family": "IPv4", "internal": False},
    ]


def test_system_info_is_public(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    harness = build_api(tmp_path, api_token="secret")

    async def system_node() -> str:
        return "20.11.0"

    monkeypatch.setattr(harness.runtime, "system_version", system_node)
    client = TestClient(harness.app)

    response = client.get("/api/system/info")

    assert response.status_code == 200
    body = response.json()
    assert body["app_version"] == "0.1.0"
    assert body["node_version"] == "20.11.0"
    assert body["python_version"].count(".") == 2
    assert body["platform"].endswith(")")
