"""Prometheus metrics for outbound API traffic."""

from prometheus_client import Counter

API_REQUESTS = Counter(
    "n8n_harness_api_requests_total",
    "Physical HTTP requests sent to the n8n API",
    ["method", "outcome"],
)

API_RETRIES = Counter(
    "n8n_harness_api_retries_total",
    "Retry attempts scheduled by the retry policy",
)

RATE_LIMIT_WAITS = Counter(
    "n8n_harness_rate_limit_waits_total",
    "Times a caller was suspended waiting for a rate limiter permit",
)
