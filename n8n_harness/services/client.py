"""
Resilient async client for the n8n REST API
"""

import logging
from typing import Any, Dict, Optional

import httpx

from n8n_harness.core.config import Settings, get_settings
from n8n_harness.core.exceptions import (
    ApiError,
    ConfigurationError,
    ConnectionError,
    HarnessError,
    extract_error_message,
)
from n8n_harness.core.metrics import API_REQUESTS
from n8n_harness.services.rate_limiter import RateLimiter
from n8n_harness.services.retry import RetryCallback, RetryPolicy, default_is_retryable

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-N8N-API-KEY"

# Cheap call used to verify the connection; allowed while connecting
VERIFY_ENDPOINT = "/workflows"


class ApiClient:
    """
    Async client for the n8n REST API

    Every physical request takes one rate limiter permit and runs inside the
    retry policy, so retried attempts are rate limited too. Failures leave the
    client only as ConfigurationError, ConnectionError or ApiError.

    Example:
        async with ApiClient("http://localhost:5678/api/v1", "secret") as client:
            workflows = await client.get("/workflows")
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        max_requests: Optional[int] = None,
        interval: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
        retry_client_errors: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client. Explicit arguments win over settings.

        Args:
            api_url: n8n API base URL (e.g., "http://localhost:5678/api/v1")
            api_key: n8n API key
            settings: Layered settings; defaults to get_settings()
            max_requests: Rate limit permits per interval
            interval: Rate limit window in seconds
            max_retries: Retries after the first failed attempt
            initial_delay: First backoff delay in seconds
            timeout: Per-request timeout in seconds
            on_retry: Called with (error, attempt) before each retry
            retry_client_errors: Retry 4xx responses like any other failure
            transport: httpx transport override (tests, proxies)

        Raises:
            ConfigurationError: If no API URL or API key resolves
        """
        settings = settings or get_settings()

        self.api_url = (api_url or settings.api_url or "").rstrip("/")
        self.api_key = api_key or settings.api_key

        if not self.api_url:
            raise ConfigurationError(
                "n8n API URL is required",
                context={"field": "api_url"},
            )
        if not self.api_key:
            raise ConfigurationError(
                "n8n API key is required",
                context={"field": "api_key"},
            )

        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._transport = transport

        self.rate_limiter = RateLimiter(
            max_requests=(
                max_requests if max_requests is not None else settings.rate_limit_max_requests
            ),
            interval=interval if interval is not None else settings.rate_limit_interval,
        )
        self.retry_policy = RetryPolicy(
            max_retries=max_retries if max_retries is not None else settings.max_retries,
            initial_delay=(
                initial_delay if initial_delay is not None else settings.retry_initial_delay
            ),
            on_retry=on_retry,
            is_retryable=None if retry_client_errors else self._is_retryable_server_error,
        )

        self._client: Optional[httpx.AsyncClient] = None
        self._connected = False
        self._connecting = False

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @staticmethod
    def _is_retryable_server_error(error: BaseException) -> bool:
        if isinstance(error, ApiError) and 400 <= error.status_code < 500:
            return False
        return default_is_retryable(error)

    # Connection

    async def connect(self) -> None:
        """
        Open the HTTP session and verify the API answers.

        Raises:
            ConnectionError: If the verification call fails after retries
        """
        if self._connected:
            return

        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Content-Type": "application/json",
                API_KEY_HEADER: self.api_key,
            },
            timeout=self.timeout,
            transport=self._transport,
        )

        self._connecting = True
        try:
            await self.get(VERIFY_ENDPOINT)
        except HarnessError as e:
            await self._close_transport()
            raise ConnectionError(
                f"Unable to connect to n8n at {self.api_url}",
                context={"api_url": self.api_url, "error": e.message},
            ) from e
        finally:
            self._connecting = False

        self._connected = True
        logger.info(f"Connected to n8n API at {self.api_url}")

    async def disconnect(self) -> None:
        """Close the HTTP session. Safe to call when not connected."""
        await self._close_transport()
        if self._connected:
            logger.info(f"Disconnected from n8n API at {self.api_url}")
        self._connected = False

    async def _close_transport(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    def _ensure_connected(self, endpoint: str) -> httpx.AsyncClient:
        """Return the live HTTP client or raise ConnectionError."""
        if self._connecting and endpoint == VERIFY_ENDPOINT:
            if self._client is None:
                raise ConnectionError(
                    "Client not initialized", context={"api_url": self.api_url}
                )
            return self._client
        if not self._connected or self._client is None:
            raise ConnectionError(
                "Not connected to n8n API. Call connect() first.",
                context={"api_url": self.api_url},
            )
        return self._client

    # Verbs

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a resource."""
        return await self._request("GET", endpoint, params=params)

    async def post(
        self,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """POST data. Retried like every other verb, see RetryPolicy."""
        return await self._request("POST", endpoint, data=data, params=params)

    async def put(
        self,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """PUT data."""
        return await self._request("PUT", endpoint, data=data, params=params)

    async def delete(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """DELETE a resource."""
        return await self._request("DELETE", endpoint, params=params)

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        self._ensure_connected(endpoint)

        async def attempt() -> Any:
            await self.rate_limiter.acquire()
            # disconnect() may have run during a backoff sleep
            client = self._ensure_connected(endpoint)
            return await self._send(client, method, endpoint, data, params)

        return await self.retry_policy.run(attempt)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        data: Any,
        params: Optional[Dict[str, Any]],
    ) -> Any:
        """Send one request and classify any failure."""
        try:
            response = await client.request(method, endpoint, json=data, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            API_REQUESTS.labels(method=method, outcome="api_error").inc()
            raise self._api_error(e, method, endpoint, data) from e
        except httpx.HTTPError as e:
            API_REQUESTS.labels(method=method, outcome="connection_error").inc()
            raise ConnectionError(
                f"{method} {endpoint} failed: {str(e) or type(e).__name__}",
                context={
                    "method": method,
                    "endpoint": endpoint,
                    "api_url": self.api_url,
                    "error": str(e),
                },
            ) from e

        API_REQUESTS.labels(method=method, outcome="success").inc()
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _api_error(
        self, error: httpx.HTTPStatusError, method: str, endpoint: str, data: Any
    ) -> ApiError:
        response = error.response
        body = self._decode(response)
        headers = dict(error.request.headers)
        for key in list(headers):
            if key.lower() == API_KEY_HEADER.lower():
                headers[key] = "***"
        return ApiError(
            response.status_code,
            response.reason_phrase,
            extract_error_message(body, method, endpoint),
            context={
                "method": method,
                "endpoint": endpoint,
                "request": {"headers": headers, "data": data},
                "response": body,
            },
        )
