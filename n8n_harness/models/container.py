"""Container-related models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from n8n_harness.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from n8n_harness.core.config import Settings
    from n8n_harness.services.client import ApiClient


class LifecycleState(str, Enum):
    """Lifecycle state of the managed container."""

    ABSENT = "absent"
    STARTING = "starting"
    RUNNING_HEALTHY = "running_healthy"
    RUNNING_UNHEALTHY = "running_unhealthy"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ContainerConfig:
    """Configuration for the n8n container. Immutable once built."""

    api_key: str
    container_name: str = "n8n"
    image: str = "n8nio/n8n"
    port: Union[int, str] = 5678
    api_url: Optional[str] = None
    data_dir: str = "./n8n_data"
    env: Mapping[str, str] = field(default_factory=dict)
    volumes: Tuple[str, ...] = ()
    health_check_timeout: int = 60

    def __post_init__(self):
        if not self.api_key:
            raise ConfigurationError(
                "API key is required",
                context={"field": "api_key"},
            )
        if not self.container_name:
            raise ConfigurationError(
                "Container name must not be empty",
                context={"field": "container_name"},
            )

        port = self._parse_port(self.port)
        object.__setattr__(self, "port", port)
        if not self.api_url:
            object.__setattr__(self, "api_url", f"http://localhost:{port}/api/v1")
        object.__setattr__(self, "env", dict(self.env))
        object.__setattr__(self, "volumes", tuple(self.volumes))

        if self.health_check_timeout <= 0:
            raise ConfigurationError(
                f"Health check timeout must be positive, got {self.health_check_timeout}",
                context={"field": "health_check_timeout"},
            )
        for volume in self.volumes:
            if ":" not in volume:
                raise ConfigurationError(
                    f"Invalid volume '{volume}', expected host_path:container_path",
                    context={"field": "volumes"},
                )

    @staticmethod
    def _parse_port(value: Union[int, str]) -> int:
        """Normalise a port given as int or numeric string."""
        if isinstance(value, bool):
            raise ConfigurationError(
                f"Invalid port {value!r}", context={"field": "port"}
            )
        try:
            port = int(str(value).strip())
        except ValueError:
            raise ConfigurationError(
                f"Port must be numeric, got {value!r}", context={"field": "port"}
            ) from None
        if port <= 0 or port > 65535:
            raise ConfigurationError(
                f"Port must be between 1 and 65535, got {port}",
                context={"field": "port"},
            )
        return port

    @property
    def root_url(self) -> str:
        """Service root URL, i.e. the API URL without the /api/v1 suffix."""
        url = self.api_url.rstrip("/")
        if url.endswith("/api/v1"):
            url = url[: -len("/api/v1")]
        return url

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "ContainerConfig":
        """Create config from settings, with keyword overrides on top."""
        values: Dict[str, Any] = {
            "api_key": settings.api_key,
            "container_name": settings.container_name,
            "image": settings.image,
            "port": settings.port,
            "data_dir": settings.data_dir,
            "health_check_timeout": settings.health_check_timeout,
        }
        # The default API URL is derived from the port instead
        if "api_url" in settings.model_fields_set:
            values["api_url"] = settings.api_url
        values.update(overrides)
        return cls(**values)


class ContainerStatus(BaseModel):
    """Point-in-time snapshot of the container. Never cached."""

    running: bool = False
    id: Optional[str] = None
    name: Optional[str] = None
    created: Optional[str] = None
    status: Optional[str] = None
    health: Optional[str] = None
    image: Optional[str] = None
    ports: Optional[str] = None
    volumes: Optional[str] = None
    api_accessible: bool = False


@dataclass(frozen=True)
class ServiceHandle:
    """Handle to a started container, threaded from start to stop."""

    container_id: Optional[str]
    container_name: str
    api_url: str
    api_key: str = field(repr=False)
    owned: bool = True

    def client(self, **kwargs: Any) -> "ApiClient":
        """Create an API client pointed at this service."""
        from n8n_harness.services.client import ApiClient

        return ApiClient(api_url=self.api_url, api_key=self.api_key, **kwargs)
