"""Bring up n8n, connect a client, and tear both down again."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from n8n_harness.core.config import Settings, get_settings
from n8n_harness.core.logging import configure_logging
from n8n_harness.models.container import ContainerConfig
from n8n_harness.services.client import ApiClient
from n8n_harness.services.container import ContainerManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(
    settings: Optional[Settings] = None,
    manager: Optional[ContainerManager] = None,
    **client_options: Any,
) -> AsyncIterator[ApiClient]:
    """
    Run a connected API client against a managed n8n container.

    Example:
        async with lifespan() as client:
            await client.get("/workflows")

    Raises:
        ContainerError: If the container does not come up healthy
        ConnectionError: If the client cannot connect
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    manager = manager or ContainerManager(ContainerConfig.from_settings(settings))
    logger.info("Starting n8n harness...")

    try:
        async with manager.session() as handle:
            client = handle.client(settings=settings, **client_options)
            async with client:
                yield client
            logger.info("Shutting down n8n harness...")
    finally:
        await manager.close()
