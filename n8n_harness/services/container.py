"""Container lifecycle management for the n8n service using aiodocker."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiodocker
import httpx
import psutil

from n8n_harness.core.exceptions import ContainerError
from n8n_harness.models.container import (
    ContainerConfig,
    ContainerStatus,
    LifecycleState,
    ServiceHandle,
)

logger = logging.getLogger(__name__)


class ContainerManager:
    """
    Manages the Docker container backing one n8n instance.

    Lifecycle operations report success as a boolean and log diagnostics
    instead of raising. One manager should drive one container name; start
    and stop on the same name must not race.
    """

    POLL_INTERVAL = 2.0
    PROBE_TIMEOUT = 2.0
    MIN_PROBE_TIMEOUT = 0.1
    LOG_TAIL = 50
    CONTAINER_PORT = 5678
    CONTAINER_DATA_DIR = "/home/node/.n8n"
    LABEL = "n8n-harness.managed"

    def __init__(
        self,
        config: ContainerConfig,
        docker: Optional[aiodocker.Docker] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.state = LifecycleState.ABSENT
        self._docker = docker
        self._http = http
        self._handle: Optional[ServiceHandle] = None
        self.last_error: Optional[str] = None

    @property
    def handle(self) -> Optional[ServiceHandle]:
        """Handle recorded by the last successful start()."""
        return self._handle

    async def _get_docker(self) -> aiodocker.Docker:
        """Get or create Docker client."""
        if self._docker is None:
            self._docker = aiodocker.Docker()
        return self._docker

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.PROBE_TIMEOUT)
        return self._http

    async def close(self) -> None:
        """Close Docker and HTTP clients."""
        if self._docker:
            await self._docker.close()
            self._docker = None
        if self._http:
            await self._http.aclose()
            self._http = None

    # Probing

    async def is_running(self, timeout: Optional[float] = None) -> bool:
        """
        Check whether n8n answers its health probe. Never raises.

        Args:
            timeout: Total time for both probe requests, capped at PROBE_TIMEOUT
        """
        budget = self.PROBE_TIMEOUT
        if timeout is not None:
            budget = min(max(timeout, self.MIN_PROBE_TIMEOUT), self.PROBE_TIMEOUT)

        http = self._get_http()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        for url in (f"{self.config.root_url}/healthz", self.config.root_url):
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                response = await http.get(url, timeout=remaining)
                if response.status_code == 200:
                    return True
            except httpx.HTTPError:
                continue
        return False

    async def _find_container(self):
        """Find the container by exact name, then by name prefix."""
        docker = await self._get_docker()
        name = self.config.container_name
        try:
            return await docker.containers.get(name)
        except aiodocker.exceptions.DockerError as e:
            if e.status != 404:
                raise

        candidates = await docker.containers.list(all=True, filters={"name": [name]})
        for container in candidates:
            names = [n.lstrip("/") for n in container["Names"] or []]
            if any(n.startswith(name) for n in names):
                logger.debug(f"Matched container {names} by name prefix '{name}'")
                return container
        return None

    async def _container_state(self) -> Tuple[Optional[str], Optional[str]]:
        """Return (state, health) of the container, or (None, None)."""
        container = await self._find_container()
        if container is None:
            return None, None
        info = await container.show()
        state = info.get("State") or {}
        health = (state.get("Health") or {}).get("Status")
        return state.get("Status"), health

    async def port_conflict(self) -> Optional[str]:
        """Describe whatever else holds the configured port, if anything."""
        port = self.config.port
        docker = await self._get_docker()
        containers = await docker.containers.list(filters={"publish": [str(port)]})
        for container in containers:
            names = [n.lstrip("/") for n in container["Names"] or []]
            if self.config.container_name not in names:
                return f"container '{', '.join(names)}' ({container.id[:12]})"

        return await asyncio.to_thread(self._find_port_owner, port)

    @staticmethod
    def _find_port_owner(port: int) -> Optional[str]:
        """Find a host process listening on ``port``."""
        try:
            connections = psutil.net_connections(kind="inet")
        except psutil.AccessDenied:
            logger.debug("Not allowed to list host sockets, skipping port owner lookup")
            return None

        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if conn.laddr.port != port:
                continue
            if not conn.pid:
                return "an unknown process"
            try:
                name = psutil.Process(conn.pid).name()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                name = "unknown"
            return f"process '{name}' (pid {conn.pid})"
        return None

    # Lifecycle

    async def start(self) -> bool:
        """
        Start the n8n container and wait for it to become healthy.

        Returns:
            True if n8n is reachable when this returns
        """
        name = self.config.container_name
        self.last_error = None
        try:
            if await self.is_running():
                logger.info(f"n8n is already running at {self.config.api_url}")
                try:
                    existing = await self._find_container()
                except Exception as e:
                    logger.debug(f"Could not look up the running n8n container: {e}")
                    existing = None
                self._handle = self._make_handle(existing.id if existing else None, owned=False)
                self.state = LifecycleState.RUNNING_HEALTHY
                return True

            existing = await self._find_container()
            if existing is not None:
                logger.warning(
                    f"Container '{name}' exists but n8n is not reachable, removing it"
                )
                await existing.delete(force=True)

            conflict = await self.port_conflict()
            if conflict:
                self.last_error = f"Port {self.config.port} is already in use by {conflict}"
                logger.error(f"{self.last_error}; not starting '{name}'")
                return False

            self._ensure_data_dir()
            await self._ensure_image()

            self.state = LifecycleState.STARTING
            container = await self._create_container()
            await container.start()
            logger.info(f"Started container '{name}' ({container.id[:12]})")
            self._handle = self._make_handle(container.id, owned=True)
        except Exception as e:
            self.last_error = f"Error starting n8n container '{name}': {e}"
            logger.error(self.last_error)
            return False

        return await self.wait_for_health(self.config.health_check_timeout)

    async def wait_for_health(self, timeout: Optional[float] = None) -> bool:
        """
        Poll until n8n is healthy, the container fails, or time runs out.

        Args:
            timeout: Maximum wait in seconds (defaults to the configured one)

        Returns:
            True if n8n became healthy within the timeout
        """
        timeout = timeout if timeout is not None else self.config.health_check_timeout
        logger.info(f"Waiting for n8n to be healthy (timeout: {timeout}s)...")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if await self.is_running(timeout=deadline - loop.time()):
                logger.info("n8n is healthy")
                self.state = LifecycleState.RUNNING_HEALTHY
                return True

            try:
                state, health = await self._container_state()
            except Exception as e:
                logger.debug(f"Could not inspect container during health wait: {e}")
                state, health = None, None

            if health == "unhealthy" or state in ("exited", "dead"):
                self.state = LifecycleState.RUNNING_UNHEALTHY
                self.last_error = f"n8n container is {health or state}"
                logs = await self.get_logs()
                logger.error(f"{self.last_error}. Recent logs:\n{logs}")
                return False

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.POLL_INTERVAL, remaining))

        if self.state == LifecycleState.STARTING:
            self.state = LifecycleState.RUNNING_UNHEALTHY
        self.last_error = f"n8n did not become healthy within {timeout} seconds"
        logs = await self.get_logs()
        logger.error(f"{self.last_error}. Recent logs:\n{logs}")
        return False

    async def stop(self) -> bool:
        """Stop and remove the container. Stopping an absent container succeeds."""
        name = self.config.container_name
        try:
            container = await self._find_container()
            if container is None:
                logger.info(f"n8n container '{name}' is not running")
            else:
                await container.delete(force=True)
                logger.info(f"Removed n8n container '{name}'")
        except Exception as e:
            self.last_error = f"Error stopping n8n container '{name}': {e}"
            logger.error(self.last_error)
            return False

        self.state = LifecycleState.STOPPED
        self._handle = None
        return True

    async def restart(self) -> bool:
        """Stop, then start the container."""
        logger.info(f"Restarting n8n container '{self.config.container_name}'")
        if not await self.stop():
            return False
        return await self.start()

    async def status(self) -> ContainerStatus:
        """Snapshot the container state. Never raises."""
        try:
            container = await self._find_container()
            if container is None:
                return ContainerStatus(running=False)

            info = await container.show()
            state = info.get("State") or {}
            return ContainerStatus(
                running=state.get("Status") == "running",
                id=(info.get("Id") or "")[:12] or None,
                name=(info.get("Name") or "").lstrip("/") or None,
                created=info.get("Created"),
                status=state.get("Status"),
                health=(state.get("Health") or {}).get("Status"),
                image=(info.get("Config") or {}).get("Image"),
                ports=self._describe_ports(info),
                volumes=self._describe_mounts(info),
                api_accessible=await self.is_running(),
            )
        except Exception as e:
            logger.error(f"Error getting n8n container status: {e}")
            return ContainerStatus(running=False)

    async def get_logs(self, tail: Optional[int] = None) -> str:
        """Get recent container logs."""
        try:
            container = await self._find_container()
            if container is None:
                return ""
            logs = await container.log(stdout=True, stderr=True, tail=tail or self.LOG_TAIL)
            return "".join(logs)
        except Exception as e:
            logger.debug(f"Could not read n8n container logs: {e}")
            return ""

    @asynccontextmanager
    async def session(self) -> AsyncIterator[ServiceHandle]:
        """
        Start the container for the duration of the block.

        The container is removed on exit only if this session launched it.

        Raises:
            ContainerError: If the container could not be started
        """
        if not await self.start():
            raise ContainerError(
                f"Failed to start n8n container '{self.config.container_name}'",
                context={
                    "container_name": self.config.container_name,
                    "api_url": self.config.api_url,
                    "reason": self.last_error or "unknown",
                },
            )
        handle = self._handle
        try:
            yield handle
        finally:
            if handle.owned:
                await self.stop()

    # Helpers

    def _make_handle(self, container_id: Optional[str], owned: bool) -> ServiceHandle:
        return ServiceHandle(
            container_id=container_id,
            container_name=self.config.container_name,
            api_url=self.config.api_url,
            api_key=self.config.api_key,
            owned=owned,
        )

    def _ensure_data_dir(self) -> Path:
        """Create the data directory, writable by the container's node user."""
        data_dir = Path(self.config.data_dir).expanduser().resolve()
        if not data_dir.exists():
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created n8n data directory {data_dir}")
        try:
            os.chmod(data_dir, 0o777)
        except PermissionError:
            logger.warning(f"Could not set permissions on {data_dir}")
        return data_dir

    async def _ensure_image(self) -> None:
        """Pull the image if it is not available locally."""
        docker = await self._get_docker()
        try:
            await docker.images.inspect(self.config.image)
        except aiodocker.exceptions.DockerError as e:
            if e.status != 404:
                raise
            logger.info(f"Pulling image {self.config.image}...")
            await docker.images.pull(self.config.image)

    def build_environment(self) -> Dict[str, str]:
        """Default container environment with the configured overrides on top."""
        env = {
            "N8N_API_KEY": self.config.api_key,
            "N8N_API_ENABLED": "true",
            "N8N_PORT": str(self.CONTAINER_PORT),
        }
        env.update(self.config.env)
        return env

    def build_container_config(self) -> Dict[str, Any]:
        """Docker Engine create payload for the n8n container."""
        container_port = f"{self.CONTAINER_PORT}/tcp"
        data_dir = Path(self.config.data_dir).expanduser().resolve()
        binds: List[str] = [f"{data_dir}:{self.CONTAINER_DATA_DIR}"]
        binds.extend(self.config.volumes)

        return {
            "Image": self.config.image,
            "Env": [f"{k}={v}" for k, v in self.build_environment().items()],
            "ExposedPorts": {container_port: {}},
            "Labels": {
                self.LABEL: "true",
                "n8n-harness.created_at": datetime.now(timezone.utc).isoformat(),
            },
            "HostConfig": {
                "PortBindings": {container_port: [{"HostPort": str(self.config.port)}]},
                "Binds": binds,
            },
        }

    async def _create_container(self):
        docker = await self._get_docker()
        logger.info(
            f"Creating container '{self.config.container_name}' from {self.config.image}"
        )
        return await docker.containers.create(
            config=self.build_container_config(),
            name=self.config.container_name,
        )

    @staticmethod
    def _describe_ports(info: Dict[str, Any]) -> Optional[str]:
        ports = (info.get("NetworkSettings") or {}).get("Ports") or {}
        mappings = []
        for container_port, bindings in ports.items():
            for binding in bindings or []:
                if binding.get("HostPort"):
                    mappings.append(f"{binding['HostPort']}->{container_port}")
        return ", ".join(mappings) or None

    @staticmethod
    def _describe_mounts(info: Dict[str, Any]) -> Optional[str]:
        mounts = info.get("Mounts") or []
        return ", ".join(f"{m.get('Source')}:{m.get('Destination')}" for m in mounts) or None


def create_container_manager(config: ContainerConfig) -> ContainerManager:
    """Create a container manager for the given configuration."""
    return ContainerManager(config)
