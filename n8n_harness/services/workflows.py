"""Workflow and execution helpers built on the client verbs."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from n8n_harness.core.exceptions import OperationTimeoutError
from n8n_harness.services.client import ApiClient

logger = logging.getLogger(__name__)


def _unwrap(response: Any) -> Any:
    """n8n wraps collections and some entities in a ``data`` key."""
    if isinstance(response, dict) and "data" in response:
        return response["data"]
    return response


async def list_workflows(client: ApiClient, active: Optional[bool] = None) -> List[Dict]:
    """List workflows, optionally filtered by active flag."""
    params: Dict[str, Any] = {}
    if active is not None:
        params["active"] = str(active).lower()
    return _unwrap(await client.get("/workflows", params or None)) or []


async def get_workflow(client: ApiClient, workflow_id: str) -> Dict:
    return _unwrap(await client.get(f"/workflows/{workflow_id}"))


async def create_workflow(client: ApiClient, workflow: Dict) -> Dict:
    return _unwrap(await client.post("/workflows", workflow))


async def update_workflow(client: ApiClient, workflow_id: str, workflow: Dict) -> Dict:
    return _unwrap(await client.put(f"/workflows/{workflow_id}", workflow))


async def delete_workflow(client: ApiClient, workflow_id: str) -> bool:
    await client.delete(f"/workflows/{workflow_id}")
    return True


async def activate_workflow(client: ApiClient, workflow_id: str) -> Dict:
    return _unwrap(await client.post(f"/workflows/{workflow_id}/activate", {}))


async def deactivate_workflow(client: ApiClient, workflow_id: str) -> Dict:
    return _unwrap(await client.post(f"/workflows/{workflow_id}/deactivate", {}))


async def get_execution(client: ApiClient, execution_id: str) -> Dict:
    return _unwrap(await client.get(f"/executions/{execution_id}"))


async def wait_for_execution(
    client: ApiClient,
    execution_id: str,
    timeout: float = 30.0,
    interval: float = 1.0,
) -> Dict:
    """
    Poll an execution until n8n marks it finished.

    Raises:
        OperationTimeoutError: If it does not finish within ``timeout`` seconds
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        execution = await get_execution(client, execution_id)
        if execution.get("finished"):
            return execution
        if loop.time() >= deadline:
            raise OperationTimeoutError(
                f"wait for execution {execution_id}",
                timeout,
                context={"execution_id": execution_id},
            )
        logger.debug(f"Execution {execution_id} not finished yet")
        await asyncio.sleep(interval)
