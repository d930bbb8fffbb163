"""Pytest fixtures for n8n harness tests."""

import os
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from aiodocker.exceptions import DockerError

from n8n_harness.core.config import Settings, get_settings
from n8n_harness.models.container import ContainerConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep N8N_* variables and config files of the host out of the tests."""
    for name in list(os.environ):
        if name.startswith("N8N_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for tests: no waiting between retries, generous rate limit."""
    return Settings(
        api_url="http://n8n.test/api/v1",
        api_key="test-api-key",
        max_retries=3,
        retry_initial_delay=0,
        rate_limit_max_requests=1000,
        rate_limit_interval=60,
    )


@pytest.fixture
def container_config(tmp_path) -> ContainerConfig:
    return ContainerConfig(
        api_key="test-api-key",
        container_name="test-n8n",
        image="n8nio/n8n:test",
        port=5678,
        data_dir=str(tmp_path / "n8n_data"),
        health_check_timeout=1,
    )


class FakeContainer:
    """Stand-in for aiodocker's DockerContainer."""

    def __init__(
        self,
        name: str,
        container_id: str = "0123456789abcdef0123",
        status: str = "running",
        health: Optional[str] = None,
    ):
        self.name = name
        self.id = container_id
        self._container = {"Id": container_id, "Names": [f"/{name}"]}
        state: Dict = {"Status": status, "Running": status == "running"}
        if health:
            state["Health"] = {"Status": health}
        self.info = {
            "Id": container_id,
            "Name": f"/{name}",
            "Created": "2024-01-01T00:00:00Z",
            "State": state,
            "Config": {"Image": "n8nio/n8n:test"},
            "NetworkSettings": {
                "Ports": {"5678/tcp": [{"HostIp": "0.0.0.0", "HostPort": "5678"}]}
            },
            "Mounts": [{"Source": "/data/n8n", "Destination": "/home/node/.n8n"}],
        }
        self.start = AsyncMock()
        self.delete = AsyncMock()
        self.log = AsyncMock(return_value=["booting n8n\n", "fatal: database locked\n"])

    def __getitem__(self, key):
        return self._container[key]

    async def show(self) -> Dict:
        return self.info


class FakeDocker:
    """Minimal in-memory Docker daemon exposing the aiodocker calls we use."""

    def __init__(self, containers: Optional[List[FakeContainer]] = None):
        self.by_name: Dict[str, FakeContainer] = {c.name: c for c in containers or []}
        self.published: List[FakeContainer] = []
        self.next_container: Optional[FakeContainer] = None

        self.containers = MagicMock()
        self.containers.get = AsyncMock(side_effect=self._get)
        self.containers.list = AsyncMock(side_effect=self._list)
        self.containers.create = AsyncMock(side_effect=self._create)
        self.images = MagicMock()
        self.images.inspect = AsyncMock(return_value={"Id": "sha256:test"})
        self.images.pull = AsyncMock()
        self.close = AsyncMock()

        for container in self.by_name.values():
            self._track_delete(container)

    def add(self, container: FakeContainer) -> FakeContainer:
        self.by_name[container.name] = container
        self._track_delete(container)
        return container

    def _track_delete(self, container: FakeContainer) -> None:
        def remove(**kwargs):
            self.by_name.pop(container.name, None)

        container.delete.side_effect = remove

    async def _get(self, name: str) -> FakeContainer:
        if name in self.by_name:
            return self.by_name[name]
        raise DockerError(404, {"message": f"No such container: {name}"})

    async def _list(self, **kwargs) -> List[FakeContainer]:
        filters = kwargs.get("filters") or {}
        if "publish" in filters:
            return list(self.published)
        wanted = (filters.get("name") or [""])[0]
        return [c for c in self.by_name.values() if wanted in c.name]

    async def _create(self, config: Dict, name: str) -> FakeContainer:
        container = self.next_container or FakeContainer(name, container_id="fedcba9876543210fedc")
        container.name = name
        container.created_with = config
        self.by_name[name] = container
        self._track_delete(container)
        return container


class FakeService:
    """Controls whether the fake n8n answers its health probe."""

    def __init__(self, healthy: bool = False):
        self.healthy = healthy
        self.probes = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.probes += 1
        if self.healthy:
            return httpx.Response(200, json={"status": "ok"})
        raise httpx.ConnectError("Connection refused", request=request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()



@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def make_container():
    """Factory for fake containers."""
    return FakeContainer
