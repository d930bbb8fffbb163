"""End-to-end harness lifespan tests against fake Docker and API."""

import httpx
import pytest

from n8n_harness.core.exceptions import ContainerError
from n8n_harness.harness import lifespan
from n8n_harness.models.container import ContainerConfig
from n8n_harness.services.container import ContainerManager


def api_handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("X-N8N-API-KEY") != "test-api-key":
        return httpx.Response(401, json={"message": "unauthorized"})
    if request.url.path == "/api/v1/workflows":
        return httpx.Response(200, json={"data": [{"id": "1", "name": "Smoke"}]})
    return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def manager(test_settings, fake_docker, fake_service, tmp_path, monkeypatch):
    monkeypatch.setattr(ContainerManager, "_find_port_owner", staticmethod(lambda port: None))
    config = ContainerConfig.from_settings(
        test_settings, data_dir=str(tmp_path / "data"), health_check_timeout=1
    )
    manager = ContainerManager(config, docker=fake_docker, http=fake_service.client())
    manager.POLL_INTERVAL = 0.1
    return manager


class TestLifespan:
    """Tests for lifespan."""

    @pytest.mark.asyncio
    async def test_reuses_running_service(self, test_settings, manager, fake_docker, fake_service):
        """Test a running n8n is used as is and left running."""
        fake_service.healthy = True

        async with lifespan(
            test_settings, manager, transport=httpx.MockTransport(api_handler)
        ) as client:
            assert client.is_connected
            assert client.api_url == "http://n8n.test/api/v1"
            workflows = await client.get("/workflows")
            assert workflows["data"][0]["name"] == "Smoke"

        assert not client.is_connected
        fake_docker.containers.create.assert_not_awaited()
        fake_docker.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launches_and_removes_container(
        self, test_settings, manager, fake_docker, fake_service, make_container
    ):
        """Test a container started by the lifespan is removed afterwards."""
        container = make_container("n8n", container_id="fedcba9876543210fedc")

        def boot():
            fake_service.healthy = True

        container.start.side_effect = boot
        fake_docker.next_container = container

        async with lifespan(
            test_settings, manager, transport=httpx.MockTransport(api_handler)
        ) as client:
            assert client.is_connected
            fake_docker.containers.create.assert_awaited_once()

        container.delete.assert_awaited_once_with(force=True)
        fake_docker.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_failure(self, test_settings, manager, fake_docker, make_container):
        """Test a container that cannot start raises and still cleans up."""
        fake_docker.published.append(make_container("other-app"))

        with pytest.raises(ContainerError):
            async with lifespan(test_settings, manager):
                pass

        fake_docker.close.assert_awaited_once()
