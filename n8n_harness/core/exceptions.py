"""Error taxonomy shared by the API client and the container manager."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class HarnessError(Exception):
    """Base exception for all harness errors."""

    prefix = ""

    def __init__(
        self,
        message: str,
        recovery_hint: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.recovery_hint = recovery_hint
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with scalar context and recovery hint."""
        parts = [f"{self.prefix}{self.message}"]
        scalars = {
            k: v
            for k, v in self.context.items()
            if isinstance(v, (str, int, float, bool))
        }
        if scalars:
            parts.append("[" + ", ".join(f"{k}={v}" for k, v in scalars.items()) + "]")
        if self.recovery_hint:
            parts.append(f"Hint: {self.recovery_hint}")
        return " ".join(parts)


class ConfigurationError(HarnessError):
    """Raised when caller-supplied configuration is missing or invalid.

    Never retried.
    """

    prefix = "Configuration error: "

    def __init__(
        self,
        message: str,
        recovery_hint: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        default_hint = (
            "Pass the value explicitly, add it to n8n-harness.json "
            "or set the matching N8N_* environment variable."
        )
        super().__init__(message, recovery_hint or default_hint, context)


class ConnectionError(HarnessError):
    """Raised when no usable response was obtained from the service."""

    prefix = "Connection failed: "

    def __init__(
        self,
        message: str,
        recovery_hint: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        default_hint = "Check the n8n URL is correct and the service is running."
        super().__init__(message, recovery_hint or default_hint, context)


# Alias for callers that do not want to shadow the builtin.
ApiConnectionError = ConnectionError


class ApiError(HarnessError):
    """Raised when the service answered with an error response."""

    def __init__(
        self,
        status_code: int,
        status_text: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.status_text = status_text
        context = dict(context or {})
        context.setdefault("status_code", status_code)
        super().__init__(message, "", context)

    def _format_message(self) -> str:
        method = self.context.get("method")
        endpoint = self.context.get("endpoint")
        text = f"API error ({self.status_code}): {self.message}"
        if method and endpoint:
            text += f" [{method} {endpoint}]"
        return text


class OperationTimeoutError(HarnessError):
    """Raised when a bounded wait runs out of time."""

    def __init__(
        self,
        operation: str,
        timeout: float,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.timeout = timeout
        context = dict(context or {})
        context.setdefault("timeout", timeout)
        super().__init__(
            f"Operation '{operation}' timed out after {timeout}s", "", context
        )


class ContainerError(HarnessError):
    """Raised when the backing container cannot be brought up."""

    prefix = "Container error: "

    def __init__(
        self,
        message: str,
        recovery_hint: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        default_hint = "Check the Docker daemon is running and inspect the container logs."
        super().__init__(message, recovery_hint or default_hint, context)


def extract_error_message(body: Any, method: str, endpoint: str) -> str:
    """Pick the most useful message out of an error response body."""
    if isinstance(body, dict):
        if body.get("message"):
            return str(body["message"])
        if body.get("error"):
            return str(body["error"])
    elif isinstance(body, str) and body.strip():
        return body
    return f"{method} {endpoint} failed"
