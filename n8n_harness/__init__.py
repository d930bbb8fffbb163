"""
n8n harness

Brings up an n8n container, waits for it to become healthy, and talks to its
REST API through a rate-limited, retrying client.
"""

from n8n_harness.core.config import Settings, get_settings, load_settings
from n8n_harness.core.exceptions import (
    ApiConnectionError,
    ApiError,
    ConfigurationError,
    ConnectionError,
    ContainerError,
    HarnessError,
    OperationTimeoutError,
)
from n8n_harness.harness import lifespan
from n8n_harness.models.container import (
    ContainerConfig,
    ContainerStatus,
    LifecycleState,
    ServiceHandle,
)
from n8n_harness.services.client import ApiClient
from n8n_harness.services import workflows
from n8n_harness.services.container import ContainerManager, create_container_manager
from n8n_harness.services.rate_limiter import RateLimiter
from n8n_harness.services.retry import RetryPolicy, with_retry

__version__ = "1.0.0"

__all__ = [
    "ApiClient",
    "ApiConnectionError",
    "ApiError",
    "ConfigurationError",
    "ConnectionError",
    "ContainerConfig",
    "ContainerError",
    "ContainerManager",
    "ContainerStatus",
    "HarnessError",
    "LifecycleState",
    "OperationTimeoutError",
    "RateLimiter",
    "RetryPolicy",
    "ServiceHandle",
    "Settings",
    "create_container_manager",
    "get_settings",
    "lifespan",
    "load_settings",
    "with_retry",
    "workflows",
]
